"""
Initial data for a fresh Game Deals database
Creates the first admin account and installs the default policy set
"""

import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from .auth import PasswordManager
from .config import Settings
from .database import User
from .models.authorization_models import (
    UNTRUSTED_USER_URI,
    ResourceKind,
    ResourceURI,
    UserAction,
)
from .services.authorization import (
    ABACPolicy,
    Policy,
    PolicyStore,
    PolicyType,
    RBACPolicy,
    role_membership,
    role_uri,
)
from .utils.logging_security import sanitize_id_for_log, sanitize_username_for_log

logger = logging.getLogger(__name__)

ADMIN_ROLE = role_uri("admin")

ADMIN_RULE = f"'{ADMIN_ROLE}' in subject.roles"
EVERYONE_RULE = "subject.kind in ['user', 'untrusted-user']"
USER_RULE = "subject.kind == 'user'"

DEFAULT_POLICIES_NAME = "default-policies"


def default_policies() -> List[Policy]:
    """Access rules installed on every deployment"""
    policies: List[Policy] = [
        # Admins may do anything to anything they manage
        ABACPolicy(ADMIN_RULE, ResourceURI(kind).wildcard().canonical(), f"^{kind.value}#.*")
        for kind in (
            ResourceKind.USER,
            ResourceKind.GAME,
            ResourceKind.DEAL,
            ResourceKind.AUTHORIZATION_POLICY,
        )
    ]
    policies.extend(
        [
            ABACPolicy(EVERYONE_RULE, "gamedeals://api-metadata/*", "api-metadata#retrieve"),
            ABACPolicy(EVERYONE_RULE, "gamedeals://deal/*", "deal#retrieve"),
            ABACPolicy(EVERYONE_RULE, "gamedeals://game/*", "game#retrieve"),
            # Anyone who is not logged in may try to log in as any user
            RBACPolicy(UNTRUSTED_USER_URI, ResourceURI(ResourceKind.USER, "*"), UserAction.AUTHENTICATE),
            # A still-valid token does not stop its holder from logging in again
            ABACPolicy(USER_RULE, "gamedeals://user/*", "user#authenticate"),
        ]
    )
    return policies


def ensure_initial_admin(session_factory: Callable[[], Session], settings: Settings) -> Optional[User]:
    """
    Create the initial admin account when the user table is empty.

    The account must reset its password on first login.

    Returns:
        The user named ``initial_admin_username``, or None if some other set
        of users already exists without it
    """
    db = session_factory()
    try:
        if db.query(User).first() is None:
            admin = User(
                username=settings.initial_admin_username,
                password_hash=PasswordManager.hash_password(settings.initial_admin_password),
                must_reset_password=True,
            )
            db.add(admin)
            db.commit()
            db.refresh(admin)
            logger.info(
                f"Created initial admin {sanitize_username_for_log(admin.username)} "
                f"with id {sanitize_id_for_log(admin.id)}"
            )
            return admin

        admin = db.query(User).filter(User.username == settings.initial_admin_username).first()
        if admin is None:
            logger.info("Users already exist, initial admin was not created")
        return admin
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def seed_default_policies(store: PolicyStore, admin: Optional[User] = None) -> int:
    """
    Install the default access rules, and the admin role for ``admin``.

    Idempotent. Returns the number of rows that were new.
    """
    inserted = store.add_named_policies(PolicyType.POLICY, default_policies(), logical_name=DEFAULT_POLICIES_NAME)
    if admin is not None:
        inserted += store.add_named_policies(
            PolicyType.GROUPING,
            [role_membership(admin.uri(), ADMIN_ROLE)],
            logical_name=f"admin-membership-{admin.id}",
        )

    logger.info(f"Default policy seed added {inserted} new policies")
    return inserted


def bootstrap(session_factory: Callable[[], Session], store: PolicyStore, settings: Settings) -> None:
    """Create initial data. Blocking, run it in an executor from async code."""
    admin = ensure_initial_admin(session_factory, settings)
    if settings.seed_default_policies:
        seed_default_policies(store, admin)
    else:
        logger.info("Default policy seed disabled")
