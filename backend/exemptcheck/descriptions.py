from typing import Dict, FrozenSet, Mapping, NamedTuple, Optional

PASS_MARK = "✓"
FAIL_MARK = "✗"


class FieldTemplate(NamedTuple):
    label: str
    unit: str
    pass_verb: str
    fail_verb: str
    limit: str


FIELD_TEMPLATES: Dict[str, FieldTemplate] = {
    "height": FieldTemplate("Structure height", "m", "meets", "exceeds", "height limit"),
    "floorArea": FieldTemplate("Floor area", "m²", "meets", "exceeds", "area limit"),
    "distanceFromBoundary": FieldTemplate("Boundary setback", "m", "meets", "fails", "minimum requirement"),
    "lotSize": FieldTemplate("Lot size", "m²", "meets", "fails", "minimum requirement"),
}


def infer_field(variables: FrozenSet[str]) -> Optional[str]:
    """Pick the described field from the variables a condition references.

    Only unambiguous conditions get a field: exactly one referenced variable
    must have a template.
    """
    described = [name for name in variables if name in FIELD_TEMPLATES]
    if len(described) == 1:
        return described[0]
    return None


def format_value(value: object) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def describe_condition(
    condition: str,
    context: Mapping[str, object],
    passed: bool,
    field: Optional[str] = None,
) -> str:
    mark = PASS_MARK if passed else FAIL_MARK
    template = FIELD_TEMPLATES.get(field) if field else None
    if template is None or field not in context:
        return f"{mark} {condition} - {'Passed' if passed else 'Failed'}"

    verb = template.pass_verb if passed else template.fail_verb
    value = format_value(context[field])
    return f"{mark} {template.label} ({value}{template.unit}) {verb} {template.limit}"


def describe_error(condition: str, reason: str) -> str:
    return f"{FAIL_MARK} Error evaluating condition: {condition} ({reason})"
