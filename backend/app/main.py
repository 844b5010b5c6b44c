# backend/app/main.py
"""
FastAPI entry point for the settlement engine's admin API.

Settlement itself runs in Celery (see ``app.tasks``); this app exposes the
admin surface and the Prometheus scrape target.
"""

import logging
from typing import Dict

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute

from .core.config import settings
from .errors import register_error_handlers
from .routes.v1 import admin_settlement as admin_settlement_v1, prometheus as prometheus_v1

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = f"{settings.app_name} API"
API_VERSION = "1.0.0"


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    generate_unique_id_function=_unique_operation_id,
)
register_error_handlers(app)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(admin_settlement_v1.router, prefix="/admin/settlement")
app.include_router(api_v1)

# Infrastructure routes (intentionally unversioned)
app.include_router(prometheus_v1.router, prefix="/metrics")


@app.get("/health", include_in_schema=False)
async def health() -> Dict[str, str]:
    return {"status": "ok", "environment": settings.environment}


logger.info(f"{API_TITLE} v{API_VERSION} initialised ({settings.environment})")
