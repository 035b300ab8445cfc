"""
Unit tests for the endpoint request pipeline.

Endpoints here are spies: they record whether handle() ran so every denial
path can assert the handler was never reached.
"""

from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI, status
from fastapi.testclient import TestClient
from pydantic import BaseModel

from gamedeals.middleware.error_handling import EndpointError, install_error_handlers
from gamedeals.models.authorization_models import (
    UNTRUSTED_USER_URI,
    AuthorizationRequest,
    DealAction,
    ResourceKind,
    ResourceURI,
)
from gamedeals.routes.base import Endpoint, EndpointRequest, register_endpoints
from gamedeals.services.authorization import AuthorizationUnavailableError

UNAUTHORIZED_BODY = {"error": "unauthorized."}


class SpyBody(BaseModel):
    title: str


class SpyEndpoint(Endpoint):
    method = "POST"
    path = "/spy"
    body_model = SpyBody

    def __init__(self, requirements: Optional[List[AuthorizationRequest]] = None, result=None):
        self.requirements = requirements if requirements is not None else [
            AuthorizationRequest.of(ResourceURI(ResourceKind.DEAL), DealAction.CREATE)
        ]
        self.result = result if result is not None else {"ok": True}
        self.handled = 0
        self.seen_subject = None

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        self.seen_subject = req.subject
        return self.requirements

    async def handle(self, req: EndpointRequest):
        self.handled += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class QueryEndpoint(Endpoint):
    method = "GET"
    path = "/query"

    class Params(BaseModel):
        id: List[int] = []
        offset: int = 0

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        req.state["params"] = req.query(self.Params, list_fields=("id",))
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.DEAL, "*"), DealAction.RETRIEVE)]

    async def handle(self, req: EndpointRequest):
        return req.state["params"]


@pytest.fixture
def authorization_client() -> MagicMock:
    client = MagicMock()
    client.is_allowed = AsyncMock(return_value=True)
    return client


@pytest.fixture
def authenticator() -> MagicMock:
    authenticator = MagicMock()
    authenticator.authenticate.return_value = None
    return authenticator


@pytest.fixture
def make_pipeline_client(session_factory, authorization_client, authenticator):
    def _make(*endpoints: Endpoint) -> TestClient:
        app = FastAPI()
        app.state.session_factory = session_factory
        app.state.authorization_client = authorization_client
        app.state.authenticator = authenticator
        install_error_handlers(app)
        register_endpoints(app, endpoints)
        return TestClient(app)

    return _make


@pytest.mark.unit
class TestDenials:
    """Test that every denial path answers 403 without running the handler."""

    def test_empty_requirements_denied(self, make_pipeline_client, authorization_client) -> None:
        """An endpoint declaring no requirements is always denied."""
        endpoint = SpyEndpoint(requirements=[])
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == UNAUTHORIZED_BODY
        assert endpoint.handled == 0
        authorization_client.is_allowed.assert_not_called()

    def test_policy_denial(self, make_pipeline_client, authorization_client) -> None:
        """is_allowed False is a 403."""
        authorization_client.is_allowed.return_value = False
        endpoint = SpyEndpoint()
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == UNAUTHORIZED_BODY
        assert endpoint.handled == 0

    def test_authorization_error_denies(self, make_pipeline_client, authorization_client) -> None:
        """Unexpected authorization errors fail closed."""
        authorization_client.is_allowed.side_effect = RuntimeError("boom")
        endpoint = SpyEndpoint()
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == UNAUTHORIZED_BODY
        assert endpoint.handled == 0

    def test_unavailable_engine(self, make_pipeline_client, authorization_client) -> None:
        """An engine that cannot be built is a generic 500, never an allow."""
        authorization_client.is_allowed.side_effect = AuthorizationUnavailableError("no engine")
        endpoint = SpyEndpoint()
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "An unknown internal error occurred"}
        assert endpoint.handled == 0


@pytest.mark.unit
class TestIdentity:
    """Test subject resolution."""

    def test_anonymous_is_untrusted(self, make_pipeline_client, authorization_client) -> None:
        """Without a user the subject is the untrusted-user URI."""
        endpoint = SpyEndpoint()
        make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert endpoint.seen_subject == UNTRUSTED_USER_URI
        subject, requirements = authorization_client.is_allowed.call_args.args
        assert subject == UNTRUSTED_USER_URI
        assert requirements == endpoint.requirements

    def test_authenticated_user(self, make_pipeline_client, authenticator) -> None:
        """An identified user is the subject."""
        user = MagicMock()
        user.uri.return_value = ResourceURI(ResourceKind.USER, "3")
        authenticator.authenticate.return_value = user

        endpoint = SpyEndpoint()
        make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert endpoint.seen_subject == ResourceURI(ResourceKind.USER, "3")

    def test_identity_failure_is_untrusted(self, make_pipeline_client, authenticator) -> None:
        """Identity errors fall back to the untrusted subject."""
        authenticator.authenticate.side_effect = RuntimeError("token store down")

        endpoint = SpyEndpoint()
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_200_OK
        assert endpoint.seen_subject == UNTRUSTED_USER_URI


@pytest.mark.unit
class TestHandling:
    """Test the handler phase and request parsing."""

    def test_allowed_runs_handler(self, make_pipeline_client) -> None:
        """Allowed requests reach the handler once."""
        endpoint = SpyEndpoint(result={"created": 1})
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"created": 1}
        assert endpoint.handled == 1

    def test_handler_models_serialized(self, make_pipeline_client) -> None:
        """Pydantic results are encoded as JSON."""
        endpoint = SpyEndpoint(result=SpyBody(title="done"))
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})
        assert response.json() == {"title": "done"}

    def test_handler_endpoint_error(self, make_pipeline_client) -> None:
        """EndpointError from a handler becomes its response."""
        endpoint = SpyEndpoint(result=EndpointError(status.HTTP_404_NOT_FOUND, "Game with ID 9 does not exist"))
        response = make_pipeline_client(endpoint).post("/spy", json={"title": "x"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"error": "Game with ID 9 does not exist"}

    def test_bad_body(self, make_pipeline_client, authorization_client) -> None:
        """Unparseable bodies are rejected before authorization."""
        endpoint = SpyEndpoint()
        response = make_pipeline_client(endpoint).post("/spy", json={"wrong": "field"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"].startswith("Failed to parse request body")
        authorization_client.is_allowed.assert_not_called()
        assert endpoint.handled == 0

    def test_query_lists(self, make_pipeline_client) -> None:
        """Comma separated list parameters are split."""
        response = make_pipeline_client(QueryEndpoint()).get("/query?id=1,2&id=3&offset=20")
        assert response.json() == {"id": [1, 2, 3], "offset": 20}

    def test_bad_query(self, make_pipeline_client, authorization_client) -> None:
        """Invalid query parameters are a 400."""
        response = make_pipeline_client(QueryEndpoint()).get("/query?offset=ten")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"].startswith("invalid query parameters")
        authorization_client.is_allowed.assert_not_called()

    def test_unknown_route(self, make_pipeline_client) -> None:
        """Framework errors use the API error shape."""
        response = make_pipeline_client(SpyEndpoint()).get("/missing")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert "error" in response.json()
