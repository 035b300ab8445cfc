"""
Authorization Module - Policy-Based Access Control

This module decides, before any endpoint handler runs, whether the caller may
perform the requested actions on the requested resources.

Architecture Overview:
    1. Resource naming (../../models/authorization_models.py)
       - ResourceURI: gamedeals://<kind>/<path>
       - Per-kind action enumerations
       - AuthorizationRequest: object URI plus required actions

    2. Policy model (policies.py)
       - RBACPolicy / ABACPolicy, both reducing to one PolicyTuple
       - NamedPolicySet: rows grouped under policy type "p" or "g"

    3. Matching (matcher.py, rules.py)
       - URI patterns: exact or trailing "*" wildcard
       - Action patterns: exact or "^regex"
       - Rule expressions for ABAC subjects

    4. Policy store (store.py)
       - Load-all grouped by policy type
       - Idempotent add-named-policies

    5. Enforcement engine (enforcer.py)
       - Role indirection through "g" rows
       - Match-any over "p" rows, default deny

    6. Client (client.py)
       - Single-flight lazy engine construction
       - is_allowed over a list of requirements

Design Philosophy:
    - Default deny: no matching rule, no rules, or no declared requirement
      all mean deny
    - Fail-Secure: engine errors never result in an allow
    - Fail-Fast: malformed policies are rejected when authored and abort
      startup when loaded

Quick Start:
    from gamedeals.models.authorization_models import (
        AuthorizationRequest,
        DealAction,
        ResourceKind,
        ResourceURI,
    )
    from gamedeals.services.authorization import (
        AuthorizationClient,
        DatabasePolicyStore,
        RBACPolicy,
        role_membership,
        role_uri,
    )

    client = AuthorizationClient(DatabasePolicyStore(session_factory))
    await client.init()

    admin = role_uri("admin")
    await client.add_named_policies(
        "p", [RBACPolicy(admin, ResourceURI(ResourceKind.DEAL, "*"), DealAction.CREATE)]
    )
    await client.add_named_policies("g", [role_membership(user.uri(), admin)])

    allowed = await client.is_allowed(
        user.uri(),
        [AuthorizationRequest.of(ResourceURI(ResourceKind.DEAL), DealAction.CREATE)],
    )

Module Structure:
    authorization/
    ├── __init__.py           # This file - public API
    ├── client.py             # AuthorizationClient
    ├── enforcer.py           # Enforcer
    ├── exceptions.py         # Error taxonomy
    ├── matcher.py            # URI and action patterns
    ├── policies.py           # Policy variants and NamedPolicySet
    ├── rules.py              # ABAC rule expressions
    └── store.py              # PolicyStore / DatabasePolicyStore

Related Components:
    - routes/base.py: request pipeline calling is_allowed
    - bootstrap.py: default policy seed
    - routes/v1/authorization.py: policy administration endpoints
"""

import logging

from gamedeals.models.authorization_models import (  # noqa: F401
    AuthorizationRequest,
    AuthorizationURI,
    ResourceKind,
    ResourceURI,
)

from .client import AuthorizationClient, get_authorization_client
from .enforcer import Enforcer
from .exceptions import (
    AuthorizationError,
    AuthorizationUnavailableError,
    PolicyConfigurationError,
    PolicyStoreError,
)
from .policies import (
    ABACPolicy,
    NamedPolicySet,
    Policy,
    PolicyKind,
    PolicyTuple,
    PolicyType,
    RBACPolicy,
    role_membership,
    role_uri,
    to_tuple,
)
from .store import DatabasePolicyStore, PolicyStore

logger = logging.getLogger(__name__)

__all__ = [
    # Client
    "AuthorizationClient",
    "get_authorization_client",
    # Engine and store
    "Enforcer",
    "DatabasePolicyStore",
    "PolicyStore",
    # Policy model
    "ABACPolicy",
    "NamedPolicySet",
    "Policy",
    "PolicyKind",
    "PolicyTuple",
    "PolicyType",
    "RBACPolicy",
    "role_membership",
    "role_uri",
    "to_tuple",
    # Errors
    "AuthorizationError",
    "AuthorizationUnavailableError",
    "PolicyConfigurationError",
    "PolicyStoreError",
    # Models (re-exported for convenience)
    "AuthorizationRequest",
    "AuthorizationURI",
    "ResourceKind",
    "ResourceURI",
]
