from fastapi import APIRouter

from app.models.templates import TemplateValidateRequest, TemplateValidateResponse
from app.services.template_validators import validate_template

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.post("/validate", response_model=TemplateValidateResponse)
async def validate(body: TemplateValidateRequest) -> TemplateValidateResponse:
    errors = validate_template(body.template)
    return TemplateValidateResponse(valid=not errors, errors=errors)
