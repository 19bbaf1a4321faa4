from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

PropertyType = Literal["urban", "rural"]
Recommendation = Literal["exempt", "not_exempt"]

STRUCTURE_TYPES = ("shed", "patio", "pergola", "carport", "deck")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RuleDefinition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    condition: str = Field(min_length=1)
    clause: str = Field(min_length=1)
    field: Optional[str] = None  # which measurement the description should talk about


class Coordinates(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lat: Optional[float] = None
    lng: Optional[float] = None


class PropertyDetails(CamelModel):
    model_config = ConfigDict(extra="forbid")

    type: PropertyType
    lot_size: float = Field(gt=0)
    zoning: Optional[str] = None
    address: Optional[str] = None
    heritage_overlay: Optional[bool] = None
    flood_overlay: Optional[bool] = None
    bushfire_prone: Optional[bool] = None
    has_environmental_overlay: Optional[bool] = None
    has_restrictions: Optional[bool] = None
    restriction_summary: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Proposal(CamelModel):
    model_config = ConfigDict(extra="forbid")

    structure_type: str
    height: float = Field(gt=0)
    floor_area: float = Field(gt=0)
    distance_from_boundary: float = Field(ge=0)

    @field_validator("structure_type")
    @classmethod
    def known_structure_type(cls, value: str) -> str:
        if value.lower() not in STRUCTURE_TYPES:
            raise ValueError(f"structureType must be one of: {', '.join(STRUCTURE_TYPES)}")
        return value


class AssessmentRequest(CamelModel):
    model_config = ConfigDict(extra="forbid")

    property: PropertyDetails
    proposal: Proposal


class ConditionResult(BaseModel):
    passed: bool
    description: str


class AssessmentResult(CamelModel):
    recommendation: Recommendation
    reasoning: str
    clauses: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    failed_conditions: List[str] = Field(default_factory=list)

    @property
    def is_exempt(self) -> bool:
        return self.recommendation == "exempt"


class AssessmentMetadata(CamelModel):
    timestamp: str
    structure_type: str
    property_type: str


class AssessmentResponse(CamelModel):
    success: bool = True
    assessment: AssessmentResult
    metadata: AssessmentMetadata


class RulesMetadata(CamelModel):
    timestamp: str
    structure_types: List[str] = Field(default_factory=list)
    version: Optional[str] = None
    rule_count: Optional[int] = None


class CatalogueResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    rules: Dict[str, Dict[str, RuleDefinition]] = Field(default_factory=dict)
    metadata: RulesMetadata


class RuleSetResponse(CamelModel):
    success: bool = True
    structure_type: str
    rules: Dict[str, RuleDefinition] = Field(default_factory=dict)
    metadata: RulesMetadata
