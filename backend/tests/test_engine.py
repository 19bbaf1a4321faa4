from concurrent.futures import ThreadPoolExecutor

import pytest

from exemptcheck.catalogue import CatalogueLoadError, build_catalogue
from exemptcheck.config import DEFAULT_RULES_PATH
from exemptcheck.engine import EXEMPT_REASONING, NOT_EXEMPT_REASONING, AssessmentEngine, build_context
from exemptcheck.models import PropertyDetails, Proposal

SHED_RULES = {
    "shed": {
        "r1": {"condition": "height <= 3", "clause": "Cl.1.1"},
        "r2": {"condition": "floorArea <= 20", "clause": "Cl.1.2"},
    }
}

PROPERTY = {"type": "urban", "lotSize": 600}


@pytest.fixture
def engine():
    return AssessmentEngine(build_catalogue(SHED_RULES))


def _proposal(**overrides):
    proposal = {"structureType": "shed", "height": 2.5, "floorArea": 15, "distanceFromBoundary": 1}
    proposal.update(overrides)
    return proposal


def test_end_to_end_example(engine):
    result = engine.assess_proposal(PROPERTY, _proposal(floorArea=25))

    assert result.recommendation == "not_exempt"
    assert result.reasoning == NOT_EXEMPT_REASONING
    assert result.clauses == ["Cl.1.1"]
    assert result.conditions == ["✓ Structure height (2.5m) meets height limit"]
    assert result.failed_conditions == ["✗ Floor area (25m²) exceeds area limit"]


def test_all_rules_passing_is_exempt(engine):
    result = engine.assess_proposal(PROPERTY, _proposal())

    assert result.recommendation == "exempt"
    assert result.is_exempt
    assert result.reasoning == EXEMPT_REASONING
    assert result.clauses == ["Cl.1.1", "Cl.1.2"]
    assert result.failed_conditions == []


def test_flipping_one_condition_flips_recommendation(engine):
    passing = engine.assess_proposal(PROPERTY, _proposal())
    failing = engine.assess_proposal(PROPERTY, _proposal(height=3.5))

    assert passing.recommendation == "exempt"
    assert failing.recommendation == "not_exempt"
    assert len(failing.failed_conditions) == len(passing.failed_conditions) + 1
    assert failing.clauses == ["Cl.1.2"]


def test_unknown_structure_type(engine):
    result = engine.assess_proposal(PROPERTY, _proposal(structureType="igloo"))

    assert result.recommendation == "not_exempt"
    assert result.reasoning == "No rules found for structure type: igloo"
    assert result.clauses == []
    assert result.conditions == []
    assert result.failed_conditions == ["Unsupported structure type: igloo"]


def test_structure_type_lookup_is_case_insensitive(engine):
    upper = engine.assess_proposal(PROPERTY, _proposal(structureType="Shed"))
    lower = engine.assess_proposal(PROPERTY, _proposal(structureType="shed"))

    assert upper == lower
    assert upper.recommendation == "exempt"


def test_boundary_values():
    engine = AssessmentEngine(build_catalogue({
        "shed": {
            "height": {"condition": "height <= 3", "clause": "H"},
            "setback": {"condition": "distanceFromBoundary >= 0.9", "clause": "S"},
        }
    }))

    assert engine.assess("shed", {"height": 3, "distanceFromBoundary": 0.9}).recommendation == "exempt"
    assert engine.assess("shed", {"height": 3.0000001, "distanceFromBoundary": 0.9}).recommendation == "not_exempt"


def test_missing_variable_becomes_failed_condition():
    engine = AssessmentEngine(build_catalogue({
        "shed": {
            "r1": {"condition": "height <= 3", "clause": "Cl.1.1"},
            "r2": {"condition": "eaveHeight <= 2.4", "clause": "Cl.1.3"},
        }
    }))

    result = engine.assess("shed", {"height": 2})

    assert result.recommendation == "not_exempt"
    assert result.clauses == ["Cl.1.1"]
    assert result.failed_conditions == [
        "✗ Error evaluating condition: eaveHeight <= 2.4 (unknown variable 'eaveHeight')"
    ]


def test_type_mismatch_becomes_failed_condition():
    engine = AssessmentEngine(build_catalogue({"shed": {"r1": {"condition": "zoning > 2", "clause": "Z"}}}))

    result = engine.assess("shed", {"zoning": "R2"})

    assert result.recommendation == "not_exempt"
    assert result.failed_conditions[0].startswith("✗ Error evaluating condition: zoning > 2")


def test_any_context_variable_can_be_used():
    engine = AssessmentEngine(build_catalogue({
        "carport": {"lot": {"condition": "lotSize >= 200 & !heritageOverlay", "clause": "L", "field": "lotSize"}}
    }))

    ok = engine.assess_proposal(
        {"type": "urban", "lotSize": 250, "heritageOverlay": False},
        _proposal(structureType="carport"),
    )
    blocked = engine.assess_proposal(
        {"type": "urban", "lotSize": 250, "heritageOverlay": True},
        _proposal(structureType="carport"),
    )

    assert ok.conditions == ["✓ Lot size (250m²) meets minimum requirement"]
    assert blocked.failed_conditions == ["✗ Lot size (250m²) fails minimum requirement"]


def test_assessment_is_deterministic(engine):
    results = [engine.assess_proposal(PROPERTY, _proposal(floorArea=22)) for _ in range(5)]
    assert all(result == results[0] for result in results)


def test_build_context_accepts_models_and_proposal_wins():
    property_details = PropertyDetails(type="rural", lot_size=5000, zoning="RU1")
    proposal = Proposal(structure_type="shed", height=2.8, floor_area=40, distance_from_boundary=5)

    context = build_context(property_details, proposal)

    assert context["lotSize"] == 5000
    assert context["floorArea"] == 40
    assert context["structureType"] == "shed"
    assert "address" not in context
    assert build_context({"height": 1}, {"height": 2})["height"] == 2


def test_bundled_rules_rural_shed_allowance():
    engine = AssessmentEngine.from_path(DEFAULT_RULES_PATH)
    proposal = Proposal(structure_type="shed", height=2.8, floor_area=40, distance_from_boundary=5)

    rural = engine.assess_proposal(PropertyDetails(type="rural", lot_size=5000), proposal)
    urban = engine.assess_proposal(PropertyDetails(type="urban", lot_size=600), proposal)

    assert rural.recommendation == "exempt"
    assert urban.recommendation == "not_exempt"
    assert urban.failed_conditions == ["✗ Floor area (40m²) exceeds area limit"]


def test_reload_replaces_catalogue(engine):
    new_rules = {"deck": {"r1": {"condition": "height <= 1", "clause": "D"}}}

    catalogue = engine.reload_rules(new_rules)

    assert engine.get_rules() is catalogue
    assert catalogue.structure_types == ["deck"]
    assert engine.assess("shed", {"height": 1}).failed_conditions == ["Unsupported structure type: shed"]


def test_failed_reload_keeps_previous_catalogue(engine):
    before = engine.get_rules()

    with pytest.raises(CatalogueLoadError):
        engine.reload_rules({"shed": {"r1": {"condition": "height <=< 3", "clause": "X"}}})

    assert engine.get_rules() is before


def test_reload_from_loader(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("shed:\n  r1:\n    condition: height <= 3\n    clause: Cl.1\n")
    engine = AssessmentEngine.from_path(str(path))

    path.write_text("shed:\n  r1:\n    condition: height <= 2\n    clause: Cl.2\n")
    engine.reload_rules()
    assert engine.assess("shed", {"height": 2.5}).recommendation == "not_exempt"

    path.write_text("shed:\n  r1:\n    condition: height <=\n    clause: Cl.3\n")
    with pytest.raises(CatalogueLoadError, match=r"shed\.r1"):
        engine.reload_rules()
    assert engine.get_rules().get("shed")[0].clause == "Cl.2"


def test_reload_without_source_fails(engine):
    with pytest.raises(CatalogueLoadError, match="No rule catalogue source"):
        engine.reload_rules()


def test_concurrent_assessments_see_whole_catalogues():
    # old catalogue: every rule passes; new catalogue: every rule fails
    old_rules = {"shed": {f"r{i}": {"condition": "height <= 3", "clause": f"old-{i}"} for i in range(20)}}
    new_rules = {"shed": {f"r{i}": {"condition": "height <= 1", "clause": f"new-{i}"} for i in range(20)}}
    engine = AssessmentEngine(build_catalogue(old_rules))

    def assess(_):
        return engine.assess("shed", {"height": 2})

    def reload(i):
        engine.reload_rules(new_rules if i % 2 == 0 else old_rules)

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(assess, i) for i in range(200)]
        futures += [pool.submit(reload, i) for i in range(20)]
        results = [f.result() for f in futures[:200]]
        for f in futures[200:]:
            f.result()

    for result in results:
        if result.recommendation == "exempt":
            assert len(result.clauses) == 20
            assert all(clause.startswith("old-") for clause in result.clauses)
        else:
            assert result.clauses == []
            assert len(result.failed_conditions) == 20


def test_reload_with_superscript_digit_keeps_previous_catalogue(engine):
    before = engine.get_rules()

    with pytest.raises(CatalogueLoadError, match=r"shed\.r1"):
        engine.reload_rules({"shed": {"r1": {"condition": "floorArea <= 20²", "clause": "Cl.1"}}})

    assert engine.get_rules() is before
