"""
Authentication Routes
"""

import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import status
from pydantic import BaseModel

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
from gamedeals.utils.logging_security import sanitize_id_for_log, sanitize_username_for_log

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    username: str
    password: str
    # Required when the user must reset their password
    new_password: Optional[str] = None


class LoginResponse(BaseModel):
    auth_token: str


@lru_cache(maxsize=1)
def _placeholder_hash() -> str:
    """Hash verified against when the username is unknown, so both paths cost the same"""
    return PasswordManager.hash_password("placeholder-password-for-unknown-users")


class Login(Endpoint):
    """
    Exchange a username and password for an API token, optionally changing the password.

    The authorization requirement is computed from the submitted username
    before the password is checked: Authenticate on ``user/<id>``, or on the
    user collection when no such user exists. Unknown users and wrong
    passwords get the same 401 body.
    """

    method = "POST"
    path = "/api/v1/auth/login"
    body_model = LoginRequest

    async def authorization(self, req: EndpointRequest[LoginRequest]) -> List[AuthorizationRequest]:
        body = req.body()
        user = await req.run_sync(self._find_user, req, body.username)
        req.state["login_user"] = user

        uri = user.uri() if user is not None else ResourceURI(ResourceKind.USER)
        return [AuthorizationRequest.of(uri, UserAction.AUTHENTICATE)]

    @staticmethod
    def _find_user(req: EndpointRequest, username: str) -> Optional[User]:
        return req.db.query(User).filter(User.username == username).first()

    async def handle(self, req: EndpointRequest[LoginRequest]) -> LoginResponse:
        body = req.body()
        user: Optional[User] = req.state.get("login_user")

        if user is None:
            await req.run_sync(PasswordManager.verify_password, body.password, _placeholder_hash())
            logger.info(f"Login failed for unknown username {sanitize_username_for_log(body.username)}")
            raise EndpointError.unauthenticated()

        password_ok = await req.run_sync(PasswordManager.verify_password, body.password, user.password_hash)
        if not password_ok:
            logger.info(f"Login failed for user {sanitize_id_for_log(user.id)}: wrong password")
            raise EndpointError.unauthenticated()

        if user.must_reset_password and body.new_password is None:
            raise EndpointError(
                status.HTTP_401_UNAUTHORIZED,
                "user must reset their password before logging in",
                ErrorCode.MUST_RESET_PASSWORD,
            )

        if body.new_password is not None:
            await self._change_password(req, user, body)

        jwt_manager = req.request.app.state.authenticator.jwt_manager
        logger.info(f"User {sanitize_id_for_log(user.id)} logged in")
        return LoginResponse(auth_token=jwt_manager.create_auth_token(user.id))

    async def _change_password(self, req: EndpointRequest, user: User, body: LoginRequest) -> None:
        if body.new_password == body.password:
            raise EndpointError(
                status.HTTP_400_BAD_REQUEST,
                "failed to set new password: new password must be different from the old password",
                ErrorCode.OLD_PASSWORD_NOT_ALLOWED,
            )

        problem = check_password_requirements(body.new_password, username=user.username)
        if problem is not None:
            raise EndpointError(
                status.HTTP_400_BAD_REQUEST,
                f"failed to set new password: new password {problem}",
                ErrorCode.NOT_MEET_PASSWORD_REQUIREMENTS,
            )

        def save() -> None:
            user.password_hash = PasswordManager.hash_password(body.new_password)
            user.must_reset_password = False
            req.db.commit()

        await req.run_sync(save)
        logger.info(f"User {sanitize_id_for_log(user.id)} changed their password")
