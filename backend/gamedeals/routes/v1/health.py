"""
Health check endpoint
"""

from typing import List

from fastapi import status
from fastapi.responses import JSONResponse

from gamedeals.database import check_database_health
from gamedeals.models.authorization_models import (
    APIMetadataAction,
    AuthorizationRequest,
    ResourceKind,
    ResourceURI,
)
from gamedeals.routes.base import Endpoint, EndpointRequest


class Health(Endpoint):
    """Reports whether the API can reach its database"""

    method = "GET"
    path = "/api/v1/health"

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.API_METADATA), APIMetadataAction.RETRIEVE)]

    async def handle(self, req: EndpointRequest) -> JSONResponse:
        healthy = await req.run_sync(check_database_health, req.request.app.state.session_factory)
        if not healthy:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"ok": False})
        return JSONResponse(content={"ok": True})
