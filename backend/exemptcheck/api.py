import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .catalogue import CatalogueLoadError
from .config import get_settings
from .engine import AssessmentEngine
from .models import (
    AssessmentMetadata,
    AssessmentRequest,
    AssessmentResponse,
    CatalogueResponse,
    RulesMetadata,
    RuleSetResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

settings = get_settings()
engine = AssessmentEngine.from_path(settings.rules_path)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def validation_details(error: ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in item["loc"]), "message": item["msg"]}
        for item in error.errors()
    ]


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "version": settings.app_version,
        "structureTypes": engine.get_rules().structure_types,
    }


@router.post("/assess", response_model=AssessmentResponse)
async def assess(request: AssessmentRequest):
    try:
        assessment = engine.assess_proposal(request.property, request.proposal)
    except Exception as e:
        logger.exception("Assessment failed")
        raise HTTPException(status_code=500, detail=f"Unable to process development proposal: {e}")

    return AssessmentResponse(
        assessment=assessment,
        metadata=AssessmentMetadata(
            timestamp=_timestamp(),
            structure_type=request.proposal.structure_type,
            property_type=request.property.type,
        ),
    )


@router.post("/assess/validate")
async def validate_assessment(payload: Dict[str, Any] = Body(...)):
    try:
        request = AssessmentRequest.model_validate(payload)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"valid": False, "errors": validation_details(e)})
    return {"valid": True, "data": request.model_dump(by_alias=True, exclude_none=True)}


@router.get("/rules", response_model=CatalogueResponse)
async def get_rules():
    catalogue = engine.get_rules()
    return CatalogueResponse(
        rules=catalogue.to_dict(),
        metadata=RulesMetadata(
            timestamp=_timestamp(),
            structure_types=catalogue.structure_types,
            version=settings.app_version,
        ),
    )


@router.get("/rules/{structure_type}", response_model=RuleSetResponse)
async def get_structure_rules(structure_type: str):
    catalogue = engine.get_rules()
    rules = catalogue.rule_set_dict(structure_type)
    if rules is None:
        return JSONResponse(
            status_code=404,
            content={
                "error": "Structure type not found",
                "message": f"No rules found for structure type: {structure_type}",
                "availableTypes": catalogue.structure_types,
            },
        )
    return RuleSetResponse(
        structure_type=structure_type,
        rules=rules,
        metadata=RulesMetadata(timestamp=_timestamp(), rule_count=len(rules)),
    )


@router.post("/rules/reload", response_model=CatalogueResponse)
async def reload_rules():
    try:
        catalogue = engine.reload_rules()
    except CatalogueLoadError as e:
        logger.error("Rule reload failed, keeping previous catalogue: %s", e)
        raise HTTPException(status_code=500, detail=f"Unable to reload rules: {e}")

    return CatalogueResponse(
        message="Rules reloaded successfully",
        rules=catalogue.to_dict(),
        metadata=RulesMetadata(timestamp=_timestamp(), structure_types=catalogue.structure_types),
    )
