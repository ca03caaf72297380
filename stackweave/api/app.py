"""Main FastAPI application for the stackweave REST API."""

import logging
import os
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, SecretStr

from .. import __version__, orchestrator
from ..config import EngineConfig
from ..ids import is_valid_deployment_id, new_deployment_id
from ..state import deployment_exists

logger = logging.getLogger(__name__)


# Pydantic models
class SynthRequest(BaseModel):
    environment: str = "Production"
    region: str = "us-east-1"
    account: str = "000000000000"


class DeployRequest(SynthRequest):
    db_password: SecretStr
    backend: str = Field(default="memory", pattern="^(memory|aws)$")
    deployment_id: Optional[str] = None
    concurrency: Optional[int] = Field(default=None, ge=1)
    tags: Dict[str, str] = Field(default_factory=dict)


class DeployResponse(BaseModel):
    deployment_id: str
    message: str


class StatusResponse(BaseModel):
    deployment_id: str
    status: str
    context: Dict[str, Any] = Field(default_factory=dict)
    resources: Dict[str, int] = Field(default_factory=dict)
    failed: List[Dict[str, Any]] = Field(default_factory=list)


class DestroyResponse(BaseModel):
    ok: bool
    status: str


app = FastAPI(
    title="stackweave API",
    description="Resource-graph provisioning for the OData service stack",
    version=__version__,
)


def _require_deployment(deployment_id: str) -> None:
    if not is_valid_deployment_id(deployment_id) or not deployment_exists(deployment_id):
        raise HTTPException(
            status_code=404,
            detail={
                "code": "deployment_not_found",
                "message": f"Deployment {deployment_id} not found",
                "hint": "Check the deployment ID",
            },
        )


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "stackweave API is running", "version": __version__}


@app.post("/synth")
async def synth_endpoint(request: SynthRequest):
    """Validate, check and plan the stack."""
    result = orchestrator.synth(environment=request.environment, region=request.region,
                                account=request.account)
    if not result["valid"]:
        return JSONResponse(status_code=422, content={"error": {"code": "invalid_stack", **result}})
    return result


def _run_deploy(request: DeployRequest, deployment_id: str) -> None:
    try:
        orchestrator.deploy(
            db_password=request.db_password.get_secret_value(),
            environment=request.environment,
            region=request.region,
            account=request.account,
            backend=request.backend,
            deployment_id=deployment_id,
            config=EngineConfig.from_env(concurrency=request.concurrency),
            user_tags=request.tags,
        )
    except Exception:
        logger.exception(f"Deployment {deployment_id} failed")


@app.post("/deployments", response_model=DeployResponse, status_code=202)
async def deploy_endpoint(request: DeployRequest, background_tasks: BackgroundTasks):
    """Start a deployment; progress is visible through status and events."""
    if request.deployment_id is not None and not is_valid_deployment_id(request.deployment_id):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_deployment_id", "message": f"Invalid deployment ID: {request.deployment_id}"},
        )

    checked = orchestrator.synth(environment=request.environment, region=request.region,
                                 account=request.account)
    if not checked["valid"]:
        return JSONResponse(status_code=422, content={"error": {"code": "invalid_stack", **checked}})

    deployment_id = request.deployment_id or new_deployment_id()
    background_tasks.add_task(_run_deploy, request, deployment_id)
    return DeployResponse(deployment_id=deployment_id, message="Deployment started")


@app.get("/deployments/{deployment_id}/status", response_model=StatusResponse)
async def get_status(deployment_id: str):
    """Get deployment status."""
    _require_deployment(deployment_id)
    return StatusResponse(**orchestrator.status(deployment_id))


@app.get("/deployments/{deployment_id}/outputs")
async def get_outputs(deployment_id: str):
    """Get deployment outputs."""
    _require_deployment(deployment_id)
    return orchestrator.outputs(deployment_id) or {}


@app.get("/deployments/{deployment_id}/events")
async def get_events(deployment_id: str):
    """Get deployment events, oldest first."""
    _require_deployment(deployment_id)
    return orchestrator.logs(deployment_id)


@app.delete("/deployments/{deployment_id}", response_model=DestroyResponse)
async def destroy_endpoint(deployment_id: str):
    """Destroy a deployment."""
    _require_deployment(deployment_id)
    result = orchestrator.destroy(deployment_id)
    if result["status"] != "destroyed":
        raise HTTPException(
            status_code=500,
            detail={
                "code": "destroy_failed",
                "message": result["result"]["cause"],
                "hint": "Check deployment status and try again",
            },
        )
    return DestroyResponse(ok=True, status=result["status"])


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Wrap errors as ``{"error": ...}``."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Wrap unexpected errors in the same envelope."""
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_error",
                "message": "An unexpected error occurred",
                "hint": "Please try again later",
            }
        },
    )


def serve() -> None:
    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    serve()
