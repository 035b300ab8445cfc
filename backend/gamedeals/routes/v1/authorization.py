"""
Authorization Policy Routes
Administration of the stored policy rulesets
"""

import logging
from typing import Annotated, List, Literal, Union

from fastapi import status
from pydantic import BaseModel, Field

from gamedeals.database import AuthorizationPolicy
from gamedeals.middleware.error_handling import EndpointError
from gamedeals.models.authorization_models import (
    AuthorizationPolicyAction,
    AuthorizationRequest,
    ResourceKind,
    ResourceURI,
    parse_action,
)
from gamedeals.routes.base import Endpoint, EndpointRequest
from gamedeals.services.authorization import (
    ABACPolicy,
    Policy,
    PolicyConfigurationError,
    PolicyType,
    RBACPolicy,
)
from gamedeals.utils.logging_security import sanitize_for_log

logger = logging.getLogger(__name__)


class RBACPolicyBody(BaseModel):
    kind: Literal["rbac"]
    subject: str
    object: str
    action: str


class ABACPolicyBody(BaseModel):
    kind: Literal["abac"]
    subject_rule: str
    object_pattern: str
    action_pattern: str


class AddPoliciesRequest(BaseModel):
    policy_type: Literal["p", "g"]
    logical_name: str = Field(min_length=1, max_length=255)
    policies: List[Annotated[Union[RBACPolicyBody, ABACPolicyBody], Field(discriminator="kind")]] = Field(min_length=1)


def build_policy(body: Union[RBACPolicyBody, ABACPolicyBody]) -> Policy:
    """
    Raises:
        PolicyConfigurationError: If the policy is malformed
    """
    if isinstance(body, RBACPolicyBody):
        try:
            return RBACPolicy(
                subject=ResourceURI.parse(body.subject),
                object=ResourceURI.parse(body.object),
                action=parse_action(body.action),
            )
        except ValueError as e:
            raise PolicyConfigurationError(str(e))
    return ABACPolicy(
        subject_rule=body.subject_rule,
        object_pattern=body.object_pattern,
        action_pattern=body.action_pattern,
    )


class AddPolicies(Endpoint):
    """Store new policies and apply them to subsequent decisions"""

    method = "POST"
    path = "/api/v1/authorization/policy"
    body_model = AddPoliciesRequest

    async def authorization(self, req: EndpointRequest[AddPoliciesRequest]) -> List[AuthorizationRequest]:
        return [
            AuthorizationRequest.of(
                ResourceURI(ResourceKind.AUTHORIZATION_POLICY), AuthorizationPolicyAction.CREATE
            )
        ]

    async def handle(self, req: EndpointRequest[AddPoliciesRequest]) -> dict:
        body = req.body()
        try:
            policies = [build_policy(p) for p in body.policies]
        except PolicyConfigurationError as e:
            raise EndpointError(status.HTTP_400_BAD_REQUEST, f"invalid policy: {e}")

        client = req.request.app.state.authorization_client
        try:
            added = await client.add_named_policies(
                PolicyType.parse(body.policy_type), policies, logical_name=body.logical_name
            )
        except PolicyConfigurationError as e:
            raise EndpointError(status.HTTP_400_BAD_REQUEST, f"invalid policy: {e}")

        logger.info(
            f"{req.subject} added {added} policies to ruleset '{body.policy_type}' "
            f"as {sanitize_for_log(body.logical_name)}"
        )
        return {"added": added}


class ListPolicies(Endpoint):
    """List stored policy rows in insertion order"""

    method = "GET"
    path = "/api/v1/authorization/policy"

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        return [
            AuthorizationRequest.of(
                ResourceURI(ResourceKind.AUTHORIZATION_POLICY, "*"), AuthorizationPolicyAction.RETRIEVE
            )
        ]

    async def handle(self, req: EndpointRequest) -> dict:
        def fetch() -> List[AuthorizationPolicy]:
            return req.db.query(AuthorizationPolicy).order_by(AuthorizationPolicy.id).all()

        rows = await req.run_sync(fetch)
        return {"policies": [row.to_dict() for row in rows]}
