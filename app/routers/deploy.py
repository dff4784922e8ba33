import logging

from fastapi import APIRouter

from app.models.deployments import DeploymentResult, DeployRequest
from app.services import clickup, deploy_service, template_registry
from app.services.template_validators import parse_template

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/deploy", tags=["deploy"])


@router.post("", response_model=DeploymentResult)
async def deploy(body: DeployRequest) -> DeploymentResult:
    api_token = clickup.resolve_api_token(body.api_token)
    template = parse_template(body.template, require_meta=False)

    async with clickup.build_client(api_token) as client:
        result = await deploy_service.deploy_template(
            template,
            api_token,
            body.options,
            client=client,
        )
        if body.selected_template_id:
            reported = await template_registry.report_template_deployment(
                client,
                body.selected_template_id,
                result,
            )
            if not reported:
                logger.warning(
                    "Deployment report for template %s was not recorded",
                    body.selected_template_id,
                )

    logger.info(
        "Deployment of %s finished: success=%s list=%s",
        template.meta.slug,
        result.success,
        result.list_id,
    )
    return result
