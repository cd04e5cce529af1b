"""Deployment endpoint: build a branch, run it, and register its route."""
from __future__ import annotations

import os

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from loguru import logger
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.concurrency import run_in_threadpool

from api.middleware.auth import require_api_key
from core.metrics import DEPLOYMENT_COUNTER
from core.pipeline import BuildStepError, InvalidDeploymentError
from core.schemas import DeployRequest

NO_NAME = "No deployment name specified."
DEPLOY_RATE_LIMIT = os.getenv("DOXY_DEPLOY_RATE_LIMIT", "30/minute")

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


def _describe(exc: ValidationError) -> str:
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()))
        msg = err.get("msg", "")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        if field == "deploymentName":
            msg = NO_NAME
        elif field:
            msg = f"{field}: {msg}"
        else:
            msg = f"Invalid deployment request: {msg}"
        if msg not in messages:
            messages.append(msg)
    return "\n".join(messages)


def _reject(message: str, count: bool = True) -> PlainTextResponse:
    if count:
        DEPLOYMENT_COUNTER.labels(result="rejected").inc()
    logger.info(f"Rejected deployment request: {message}")
    return PlainTextResponse(message, status_code=400)


@router.post(
    "/doxy",
    response_class=PlainTextResponse,
    dependencies=[Depends(require_api_key)],
)
@limiter.limit(DEPLOY_RATE_LIMIT)
async def doxy(request: Request):
    """Deploy a branch of the server's repository under a name.

    The git/docker work blocks, so it runs in the threadpool; concurrent
    requests queue on the pipeline's build lock.
    """
    try:
        payload = await request.json()
    except ValueError:
        return _reject("Could not decode JSON body.")

    try:
        deploy_request = DeployRequest.model_validate(payload)
    except ValidationError as e:
        return _reject(_describe(e))

    pipeline = request.app.state.pipeline
    try:
        record = await run_in_threadpool(pipeline.deploy, deploy_request)
    except InvalidDeploymentError as e:
        # the pipeline already counted it
        return _reject(str(e), count=False)
    except BuildStepError as e:
        return PlainTextResponse(e.report(), status_code=500)

    return PlainTextResponse(
        f"Deployed! {record.name} is running on port {record.host_port}."
    )
