"""
Admin Routes
"""

import logging
from typing import List

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from gamedeals.bootstrap import ADMIN_ROLE
from gamedeals.database import AuthorizationPolicy, User
from gamedeals.models.authorization_models import (
    AuthorizationPolicyAction,
    AuthorizationRequest,
    ResourceKind,
    ResourceURI,
    UserAction,
)
from gamedeals.routes.base import Endpoint, EndpointRequest
from gamedeals.routes.v1.user import create_invited_user
from gamedeals.services.authorization import PolicyType, role_membership
from gamedeals.utils.logging_security import sanitize_error_message_for_log, sanitize_id_for_log

logger = logging.getLogger(__name__)


class CreateAdminRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    invite_password: str


class CreateAdminResponse(BaseModel):
    new_admin_id: int


class CreateAdmin(Endpoint):
    """
    Invite a new user and make them a member of the admin role.

    Granting the role writes a policy row, so the caller needs create rights
    on policies as well as on users.
    """

    method = "POST"
    path = "/api/v1/admin"
    body_model = CreateAdminRequest

    async def authorization(self, req: EndpointRequest[CreateAdminRequest]) -> List[AuthorizationRequest]:
        return [
            AuthorizationRequest.of(ResourceURI(ResourceKind.USER), UserAction.CREATE),
            AuthorizationRequest.of(
                ResourceURI(ResourceKind.AUTHORIZATION_POLICY), AuthorizationPolicyAction.CREATE
            ),
        ]

    async def handle(self, req: EndpointRequest[CreateAdminRequest]) -> CreateAdminResponse:
        body = req.body()
        user = await req.run_sync(create_invited_user, req, body.username, body.invite_password, "admin")

        client = req.request.app.state.authorization_client
        try:
            await client.add_named_policies(
                PolicyType.GROUPING,
                [role_membership(user.uri(), ADMIN_ROLE)],
                logical_name=_membership_name(user.id),
            )
        except Exception as e:
            logger.error(
                f"Admin role grant for user {sanitize_id_for_log(user.id)} failed, removing the user: "
                f"{sanitize_error_message_for_log(e)}"
            )
            await req.run_sync(_remove_user, req, user.id)
            raise

        logger.info(f"Admin {sanitize_id_for_log(user.id)} created by {req.subject}")
        return CreateAdminResponse(new_admin_id=user.id)


def _remove_user(req: EndpointRequest, user_id: int) -> None:
    """Undo create_invited_user and any membership row already stored for the user"""
    try:
        req.db.query(AuthorizationPolicy).filter(
            AuthorizationPolicy.policy_type == PolicyType.GROUPING.value,
            AuthorizationPolicy.logical_name == _membership_name(user_id),
        ).delete()
        req.db.query(User).filter(User.id == user_id).delete()
        req.db.commit()
    except SQLAlchemyError as e:
        req.db.rollback()
        logger.error(f"Failed to remove user {sanitize_id_for_log(user_id)}: {sanitize_error_message_for_log(e)}")


def _membership_name(user_id: int) -> str:
    return f"admin-membership-{user_id}"
