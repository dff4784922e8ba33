import logging
from datetime import datetime, timezone

from fastapi import FastAPI

from app.config import settings
from app.routers.chat_flow import router as chat_flow_router
from app.routers.deploy import router as deploy_router
from app.routers.directory import router as directory_router
from app.routers.templates import router as templates_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="clickup-deployer",
    description="Deploys project templates into ClickUp as phases, actions and checklists",
)

app.include_router(deploy_router)
app.include_router(templates_router)
app.include_router(directory_router)
app.include_router(chat_flow_router)


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
