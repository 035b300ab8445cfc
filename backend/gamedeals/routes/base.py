"""
Endpoint base class and the authorization request pipeline.

Every API endpoint subclasses Endpoint and implements two phases:

    authorization(req)  the (resource, actions) pairs this specific request
                        needs. Runs after the body is parsed, so it may depend
                        on the body, the query string or a database lookup.
    handle(req)         the business logic. Only runs once every requirement
                        has been allowed.

run_pipeline is the only way endpoints are invoked:

    1. parse the body (400 on failure)
    2. resolve the caller, falling back to the untrusted-user subject
    3. ask the endpoint for its requirements; an empty list is a 403
    4. authorization_client.is_allowed(subject, requirements); False is a 403
    5. handle(req)

Denials never say why. Missing identity, an empty requirement list and a
failed policy match all produce the same 403 ``{"error": "unauthorized."}``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from gamedeals.database import User, get_db
from gamedeals.middleware.error_handling import EndpointError, unauthorized_response
from gamedeals.models.authorization_models import (
    UNTRUSTED_USER_URI,
    AuthorizationRequest,
    ResourceURI,
)
from gamedeals.services.authorization import AuthorizationClient, AuthorizationUnavailableError
from gamedeals.utils.logging_security import create_authorization_log_entry, sanitize_error_message_for_log

logger = logging.getLogger(__name__)

QUERY_LIMIT = 20

B = TypeVar("B", bound=BaseModel)
Q = TypeVar("Q", bound=BaseModel)
T = TypeVar("T")


def _format_validation_errors(exc: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'body'}: {error['msg']}" for error in exc.errors()
    )


class EndpointRequest(Generic[B]):
    """A request as seen by an endpoint once the pipeline has resolved the caller"""

    def __init__(self, request: Request, db: Session, user: Optional[User], body: Optional[B]):
        self.request = request
        self.db = db
        self.user = user
        self._body = body
        # Values computed during authorization() that handle() reuses
        self.state: Dict[str, Any] = {}

    @property
    def subject(self) -> ResourceURI:
        """Caller's URI, or the untrusted-user URI when nobody is logged in"""
        if self.user is None:
            return UNTRUSTED_USER_URI
        return self.user.uri()

    def body(self) -> B:
        if self._body is None:
            raise EndpointError(400, "Failed to parse request body: body is required")
        return self._body

    def query(self, model: Type[Q], list_fields: Sequence[str] = ()) -> Q:
        """
        Decode query parameters into ``model``.

        Fields named in ``list_fields`` accept comma separated values.

        Raises:
            EndpointError: 400 if the parameters do not validate
        """
        params: Dict[str, Any] = {}
        for key, value in self.request.query_params.multi_items():
            if key in list_fields:
                params.setdefault(key, []).extend(v for v in value.split(",") if v != "")
            else:
                params[key] = value
        try:
            return model.model_validate(params)
        except ValidationError as e:
            raise EndpointError(400, f"invalid query parameters: {_format_validation_errors(e)}")

    async def run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        """Run blocking database work in the default executor"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn, *args)


class Endpoint(ABC):
    """An HTTP endpoint guarded by the authorization pipeline"""

    method: str = "GET"
    path: str = ""
    body_model: Optional[Type[BaseModel]] = None
    summary: Optional[str] = None

    @abstractmethod
    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        """Requirements for this request. An empty list is always denied."""

    @abstractmethod
    async def handle(self, req: EndpointRequest) -> Any:
        """Business logic. Return a Response, or a JSON serializable value for a 200."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.method} {self.path})"


async def _parse_body(endpoint: Endpoint, request: Request) -> Optional[BaseModel]:
    if endpoint.body_model is None:
        return None

    raw = await request.body()
    try:
        return endpoint.body_model.model_validate_json(raw or b"{}")
    except ValidationError as e:
        raise EndpointError(400, f"Failed to parse request body: {_format_validation_errors(e)}")


async def _resolve_user(request: Request, db: Session) -> Optional[User]:
    authenticator = request.app.state.authenticator
    try:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, authenticator.authenticate, request, db)
    except Exception as e:
        # Identity failures fall back to the untrusted subject
        logger.warning(f"Identity resolution failed, treating caller as untrusted: {sanitize_error_message_for_log(e)}")
        return None


async def run_pipeline(endpoint: Endpoint, request: Request, db: Session) -> Response:
    """Authorize then handle one request. See the module docstring for the order of steps."""
    client: AuthorizationClient = request.app.state.authorization_client
    route = f"{endpoint.method} {endpoint.path}"

    try:
        body = await _parse_body(endpoint, request)
    except EndpointError as e:
        return e.to_response()

    user = await _resolve_user(request, db)
    req = EndpointRequest(request, db, user, body)

    try:
        requirements = await endpoint.authorization(req)
    except EndpointError as e:
        return e.to_response()

    if not requirements:
        logger.error(
            create_authorization_log_entry(
                req.subject, [], False, endpoint=route, reason="endpoint declared no authorization requirements"
            )
        )
        return unauthorized_response()

    try:
        allowed = await client.is_allowed(req.subject, requirements)
    except AuthorizationUnavailableError as e:
        logger.error(f"Authorization unavailable for {route}: {sanitize_error_message_for_log(e)}")
        return EndpointError.internal().to_response()
    except Exception as e:
        # FAIL-SECURE
        logger.error(f"Authorization check failed for {route}: {sanitize_error_message_for_log(e)}")
        return unauthorized_response()

    if not allowed:
        return unauthorized_response()

    try:
        result = await endpoint.handle(req)
    except EndpointError as e:
        if e.http_status >= 500:
            logger.error(f"{route} failed: {sanitize_error_message_for_log(e.error)}")
        return e.to_response()

    if isinstance(result, Response):
        return result
    return JSONResponse(content=jsonable_encoder(result))


def _route_handler(endpoint: Endpoint) -> Callable[..., Any]:
    async def handler(request: Request, db: Session = Depends(get_db)) -> Response:
        return await run_pipeline(endpoint, request, db)

    handler.__name__ = type(endpoint).__name__
    return handler


def register_endpoints(app: FastAPI, endpoints: Sequence[Endpoint]) -> None:
    """Mount endpoints on the application, each wrapped in run_pipeline"""
    for endpoint in endpoints:
        app.add_api_route(
            endpoint.path,
            _route_handler(endpoint),
            methods=[endpoint.method],
            summary=endpoint.summary or type(endpoint).__name__,
            name=type(endpoint).__name__,
        )
        logger.debug(f"Registered endpoint {endpoint!r}")
