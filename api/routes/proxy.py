"""Catch-all route forwarding everything else to a deployed container."""
from fastapi import APIRouter, Request

router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(request: Request, path: str):
    return await request.app.state.proxy.handle(request)
