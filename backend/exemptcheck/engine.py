import logging
import threading
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from .catalogue import CatalogueLoader, CatalogueLoadError, CompiledRule, RuleCatalogue, build_catalogue
from .descriptions import describe_condition, describe_error
from .expressions import ExpressionError
from .models import AssessmentResult, ConditionResult

logger = logging.getLogger(__name__)

EXEMPT_REASONING = "Proposal meets all SEPP Part 2 criteria for exempt development"
NOT_EXEMPT_REASONING = "Proposal does not meet SEPP Part 2 criteria for exempt development"

Fields = Union[BaseModel, Mapping[str, Any]]


def _as_mapping(fields: Fields) -> Dict[str, Any]:
    if isinstance(fields, BaseModel):
        return fields.model_dump(by_alias=True, exclude_none=True)
    return dict(fields)


def build_context(property: Fields, proposal: Fields) -> Dict[str, Any]:
    """Merge property and proposal fields; proposal values win on a clash."""
    context = _as_mapping(property)
    context.update(_as_mapping(proposal))
    return context


class AssessmentEngine:
    def __init__(self, catalogue: RuleCatalogue, loader: Optional[CatalogueLoader] = None):
        self._catalogue = catalogue
        self._loader = loader
        self._reload_lock = threading.Lock()

    @classmethod
    def from_path(cls, rules_path: str) -> "AssessmentEngine":
        loader = CatalogueLoader(rules_path)
        return cls(loader.load(), loader)

    def get_rules(self) -> RuleCatalogue:
        return self._catalogue

    def reload_rules(self, data: Optional[Mapping[str, Any]] = None) -> RuleCatalogue:
        """Rebuild the catalogue and publish it in one step.

        ``data`` replaces the catalogue with an in-memory mapping; otherwise
        the configured loader is read again. On ``CatalogueLoadError`` the
        current catalogue stays active.
        """
        with self._reload_lock:
            if data is not None:
                catalogue = build_catalogue(data)
            elif self._loader is not None:
                catalogue = self._loader.load()
            else:
                raise CatalogueLoadError("No rule catalogue source configured for reload")
            self._catalogue = catalogue
        logger.info("Rule catalogue reloaded: %s", ", ".join(catalogue.structure_types))
        return catalogue

    def assess_proposal(self, property: Fields, proposal: Fields) -> AssessmentResult:
        context = build_context(property, proposal)
        return self.assess(str(context.get("structureType", "")), context)

    def assess(self, structure_type: str, context: Mapping[str, Any]) -> AssessmentResult:
        # one read of the shared reference; a concurrent reload cannot mix catalogues
        catalogue = self._catalogue
        rules = catalogue.get(structure_type)
        if rules is None:
            logger.info("No rules for structure type %r", structure_type)
            return AssessmentResult(
                recommendation="not_exempt",
                reasoning=f"No rules found for structure type: {structure_type}",
                clauses=[],
                conditions=[],
                failed_conditions=[f"Unsupported structure type: {structure_type}"],
            )

        clauses = []
        conditions = []
        failed_conditions = []
        for rule in rules:
            result = self.evaluate_rule(rule, context)
            if result.passed:
                conditions.append(result.description)
                clauses.append(rule.clause)
            else:
                failed_conditions.append(result.description)

        exempt = not failed_conditions
        logger.info(
            "Assessed %s: %s (%d passed, %d failed)",
            structure_type,
            "exempt" if exempt else "not_exempt",
            len(conditions),
            len(failed_conditions),
        )
        return AssessmentResult(
            recommendation="exempt" if exempt else "not_exempt",
            reasoning=EXEMPT_REASONING if exempt else NOT_EXEMPT_REASONING,
            clauses=clauses,
            conditions=conditions,
            failed_conditions=failed_conditions,
        )

    @staticmethod
    def evaluate_rule(rule: CompiledRule, context: Mapping[str, Any]) -> ConditionResult:
        try:
            passed = rule.expression.evaluate(context)
        except ExpressionError as e:
            logger.warning("Error evaluating condition %r for rule %s: %s", rule.condition, rule.key, e)
            return ConditionResult(passed=False, description=describe_error(rule.condition, str(e)))
        return ConditionResult(
            passed=passed,
            description=describe_condition(rule.condition, context, passed, rule.field),
        )
