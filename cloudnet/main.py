"""
Entry point for the multi-cloud network API.

Run locally:
    uvicorn cloudnet.main:app --reload

Interactive docs available at:
    http://localhost:8000/docs  (Swagger UI)
    http://localhost:8000/redoc (ReDoc)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cloudnet.apis.security_group import router as security_group_router
from cloudnet.apis.subnet import router as subnet_router
from cloudnet.apis.vpc import router as vpc_router
from cloudnet.config import settings
from cloudnet.errors import NetworkError

# ── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)

# ── FastAPI app ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="Cloud Network API",
    description=(
        "Provider-agnostic management of VPCs, subnets and security groups on AWS, GCP and "
        "Azure. Every endpoint takes a `credential_id` query parameter naming the stored "
        "provider credential to act with."
    ),
    version="1.0.0",
    contact={"name": "Platform Engineering"},
    license_info={"name": "MIT"},
)


# ── Error handling ────────────────────────────────────────────────────────────
@app.exception_handler(NetworkError)
async def network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(vpc_router)
app.include_router(subnet_router)
app.include_router(security_group_router)


# ── Health check ──────────────────────────────────────────────────────────────
@app.get("/health", tags=["Health"], summary="Health check")
def health() -> dict:
    """Returns 200 OK when the service is running."""
    return {"status": "ok"}
