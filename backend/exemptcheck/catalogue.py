import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from .descriptions import infer_field
from .expressions import CompiledExpression, ExpressionSyntaxError, parse
from .models import RuleDefinition

logger = logging.getLogger(__name__)

RULE_FILE_EXTENSIONS = (".json", ".yaml", ".yml")


class CatalogueLoadError(Exception):
    """The rule catalogue could not be built; nothing was published."""


@dataclass(frozen=True)
class CompiledRule:
    key: str
    definition: RuleDefinition
    expression: CompiledExpression
    field: Optional[str]

    @property
    def condition(self) -> str:
        return self.definition.condition

    @property
    def clause(self) -> str:
        return self.definition.clause


class RuleCatalogue:
    """Read-only snapshot of every structure type's rules.

    A catalogue is never modified after construction; reloading builds a new
    one and swaps the reference.
    """

    def __init__(self, rule_sets: Mapping[str, Tuple[CompiledRule, ...]]):
        self._rule_sets: Dict[str, Tuple[CompiledRule, ...]] = dict(rule_sets)

    def get(self, structure_type: str) -> Optional[Tuple[CompiledRule, ...]]:
        return self._rule_sets.get(structure_type.strip().lower())

    def __contains__(self, structure_type: object) -> bool:
        return isinstance(structure_type, str) and self.get(structure_type) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self._rule_sets)

    def __len__(self) -> int:
        return len(self._rule_sets)

    @property
    def structure_types(self) -> List[str]:
        return list(self._rule_sets)

    def rule_set_dict(self, structure_type: str) -> Optional[Dict[str, RuleDefinition]]:
        rules = self.get(structure_type)
        if rules is None:
            return None
        return {rule.key: rule.definition for rule in rules}

    def to_dict(self) -> Dict[str, Dict[str, RuleDefinition]]:
        return {
            structure_type: {rule.key: rule.definition for rule in rules}
            for structure_type, rules in self._rule_sets.items()
        }


def build_catalogue(data: Mapping[str, Any], source: str = "<memory>") -> RuleCatalogue:
    rule_sets: Dict[str, Tuple[CompiledRule, ...]] = {}
    _collect_rule_sets(data, source, rule_sets)
    return RuleCatalogue(rule_sets)


def _collect_rule_sets(
    data: Any,
    source: str,
    rule_sets: Dict[str, Tuple[CompiledRule, ...]],
) -> None:
    if not isinstance(data, Mapping):
        raise CatalogueLoadError(f"{source}: catalogue must map structure types to rule sets")

    for raw_type, raw_rules in data.items():
        structure_type = str(raw_type).strip().lower()
        if not structure_type:
            raise CatalogueLoadError(f"{source}: empty structure type name")
        if structure_type in rule_sets:
            raise CatalogueLoadError(f"{source}: duplicate structure type: {raw_type}")
        if not isinstance(raw_rules, Mapping):
            raise CatalogueLoadError(f"{source}: rules for '{raw_type}' must be a mapping of rule keys")

        compiled: List[CompiledRule] = []
        for rule_key, rule_data in raw_rules.items():
            compiled.append(_compile_rule(source, structure_type, str(rule_key), rule_data))
        rule_sets[structure_type] = tuple(compiled)


def _compile_rule(source: str, structure_type: str, rule_key: str, rule_data: Any) -> CompiledRule:
    where = f"{source}: {structure_type}.{rule_key}"
    if not isinstance(rule_data, Mapping):
        raise CatalogueLoadError(f"{where}: rule must be a mapping with 'condition' and 'clause'")
    bad_keys = [key for key in rule_data if not isinstance(key, str)]
    if bad_keys:
        raise CatalogueLoadError(f"{where}: invalid rule definition: non-string keys {bad_keys!r}")
    try:
        definition = RuleDefinition.model_validate(dict(rule_data))
    except ValidationError as e:
        raise CatalogueLoadError(f"{where}: invalid rule definition: {e}") from e
    try:
        expression = parse(definition.condition)
    except ExpressionSyntaxError as e:
        raise CatalogueLoadError(f"{where}: invalid condition {definition.condition!r}: {e}") from e

    field = definition.field or infer_field(expression.variables)
    return CompiledRule(key=rule_key, definition=definition, expression=expression, field=field)


class CatalogueLoader:
    """Reads rule catalogue files from a single file or a directory tree."""

    def __init__(self, rules_path: str):
        self.rules_path = rules_path

    def load(self) -> RuleCatalogue:
        rule_sets: Dict[str, Tuple[CompiledRule, ...]] = {}
        for path in self._rule_files():
            data = self._read(path)
            if not data:
                continue
            _collect_rule_sets(data, path, rule_sets)

        catalogue = RuleCatalogue(rule_sets)
        logger.info(
            "Loaded %d structure types (%d rules) from %s",
            len(catalogue),
            sum(len(rules) for rules in rule_sets.values()),
            self.rules_path,
        )
        return catalogue

    def _rule_files(self) -> List[str]:
        if os.path.isfile(self.rules_path):
            return [self.rules_path]
        if not os.path.isdir(self.rules_path):
            raise CatalogueLoadError(f"Rule catalogue not found: {self.rules_path}")

        paths: List[str] = []
        for root, _, files in os.walk(self.rules_path):
            for file in files:
                if file.endswith(RULE_FILE_EXTENSIONS):
                    paths.append(os.path.join(root, file))
        return sorted(paths)

    def _read(self, path: str) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f)
        except OSError as e:
            raise CatalogueLoadError(f"{path}: cannot read rule catalogue: {e}") from e
        except yaml.YAMLError as e:
            raise CatalogueLoadError(f"{path}: malformed rule catalogue: {e}") from e


def render_rules_table(catalogue: RuleCatalogue) -> str:
    lines = [
        "| Structure | Rule | Condition | Field | Clause |",
        "| :--- | :--- | :--- | :--- | :--- |",
    ]
    for structure_type in catalogue:
        for rule in catalogue.get(structure_type) or ():
            # pipes inside a cell would split the column
            condition = rule.condition.replace("|", "\\|")
            lines.append(
                f"| {structure_type} | {rule.key} | `{condition}` | {rule.field or ''} | {rule.clause} |"
            )
    return "\n".join(lines)
