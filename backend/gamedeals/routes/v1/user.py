"""
User Routes
"""

import logging
from typing import List

from fastapi import status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from gamedeals.auth import PasswordManager, check_password_requirements
from gamedeals.database import User
from gamedeals.middleware.error_handling import EndpointError, ErrorCode
from gamedeals.models.authorization_models import (
    AuthorizationRequest,
    ResourceKind,
    ResourceURI,
    UserAction,
)
from gamedeals.routes.base import Endpoint, EndpointRequest
from gamedeals.utils.logging_security import sanitize_id_for_log

logger = logging.getLogger(__name__)


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    # Given to the new user out of band, must be changed on first login
    invite_password: str


class CreateUserResponse(BaseModel):
    new_user_id: int


class ListUsersQuery(BaseModel):
    id: List[int] = Field(default_factory=list)


def create_invited_user(req: EndpointRequest, username: str, invite_password: str, kind: str = "user") -> User:
    """
    Validate the invite password and insert a user who must reset it on first login.

    Raises:
        EndpointError: 400 if the password is not allowed, 409 if the username is taken
    """
    problem = check_password_requirements(invite_password, username=username)
    if problem is not None:
        raise EndpointError(
            status.HTTP_400_BAD_REQUEST,
            f"failed to create new {kind}: invite password is not allowed: invite password {problem}",
            ErrorCode.NOT_MEET_PASSWORD_REQUIREMENTS,
        )

    user = User(
        username=username,
        password_hash=PasswordManager.hash_password(invite_password),
        must_reset_password=True,
    )
    req.db.add(user)
    try:
        req.db.commit()
    except IntegrityError:
        req.db.rollback()
        raise EndpointError(status.HTTP_409_CONFLICT, f"failed to create new {kind}: username is already taken")
    req.db.refresh(user)
    return user


class CreateUser(Endpoint):
    """Invite a new user"""

    method = "POST"
    path = "/api/v1/user"
    body_model = CreateUserRequest

    async def authorization(self, req: EndpointRequest[CreateUserRequest]) -> List[AuthorizationRequest]:
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.USER), UserAction.CREATE)]

    async def handle(self, req: EndpointRequest[CreateUserRequest]) -> CreateUserResponse:
        body = req.body()
        user = await req.run_sync(create_invited_user, req, body.username, body.invite_password)
        logger.info(f"User {sanitize_id_for_log(user.id)} created by {req.subject}")
        return CreateUserResponse(new_user_id=user.id)


class ListUsersNonSecure(Endpoint):
    """
    List the non-secure fields of users.

    With ``?id=1,2`` each listed user must be retrievable, otherwise the caller
    needs retrieve rights on every user.
    """

    method = "GET"
    path = "/api/v1/user"

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        params = req.query(ListUsersQuery, list_fields=("id",))
        req.state["user_ids"] = params.id

        if params.id:
            return [
                AuthorizationRequest.of(ResourceURI(ResourceKind.USER, str(user_id)), UserAction.RETRIEVE_NON_SECURE)
                for user_id in params.id
            ]
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.USER, "*"), UserAction.RETRIEVE_NON_SECURE)]

    async def handle(self, req: EndpointRequest) -> dict:
        user_ids = req.state["user_ids"]

        def fetch() -> List[User]:
            query = req.db.query(User)
            if user_ids:
                query = query.filter(User.id.in_(user_ids))
            return query.order_by(User.id).all()

        users = await req.run_sync(fetch)
        return {"users": [user.to_non_secure() for user in users]}
