"""
Authorization Models for Game Deals
Defines the resource naming scheme and the action vocabulary used by policies

Every subject and object the authorization engine reasons about is named by a
ResourceURI of the form ``gamedeals://<resource-kind>/<path>``. The path is an
instance identifier, a trailing ``*`` wildcard, or empty for the collection.

Actions are scoped to the resource kind they were defined for. Their string
values carry the kind as a prefix (``deal#create``) so two kinds can never
produce colliding policy rows.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Tuple

SCHEME = "gamedeals"
SCHEME_PREFIX = f"{SCHEME}://"
WILDCARD = "*"
ACTION_SEPARATOR = "#"


class ResourceKind(str, Enum):
    """Kinds of resources that can be named as subjects or objects"""

    USER = "user"
    GAME = "game"
    DEAL = "deal"
    AUTHORIZATION_POLICY = "authorization-policy"
    ROLE = "role"
    UNTRUSTED_USER = "untrusted-user"
    API_METADATA = "api-metadata"


@dataclass(frozen=True, eq=False)
class ResourceURI:
    """
    Canonical name of a subject or object.

    Construction never fails. A leading "/" on the path is dropped so that
    ``ResourceURI(ResourceKind.DEAL, "/5")`` and ``ResourceURI(ResourceKind.DEAL, "5")``
    name the same deal. Equality and hashing use the canonical string only.
    """

    kind: ResourceKind
    path: str = ""

    def __post_init__(self) -> None:
        path = "" if self.path is None else str(self.path)
        object.__setattr__(self, "path", path.lstrip("/"))

    def canonical(self) -> str:
        return f"{SCHEME_PREFIX}{self.kind.value}/{self.path}"

    def __str__(self) -> str:
        return self.canonical()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ResourceURI):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __hash__(self) -> int:
        return hash(self.canonical())

    @property
    def is_collection(self) -> bool:
        return self.path == ""

    @property
    def is_wildcard(self) -> bool:
        return self.path == WILDCARD or self.path.endswith("/" + WILDCARD)

    def child(self, path: Any) -> "ResourceURI":
        """Name an instance inside this URI's collection."""
        return ResourceURI(self.kind, path)

    def wildcard(self) -> "ResourceURI":
        """Pattern covering the collection and every instance of this kind."""
        return ResourceURI(self.kind, WILDCARD)

    @classmethod
    def collection(cls, kind: ResourceKind) -> "ResourceURI":
        return cls(kind, "")

    @classmethod
    def parse(cls, value: str) -> "ResourceURI":
        """
        Parse a canonical URI string.

        Raises:
            ValueError: If the scheme or resource kind is not recognized
        """
        if not isinstance(value, str) or not value.startswith(SCHEME_PREFIX):
            raise ValueError(f"Not a {SCHEME} URI: {value!r}")

        remainder = value[len(SCHEME_PREFIX):]
        kind_name, sep, path = remainder.partition("/")
        if not sep:
            raise ValueError(f"URI is missing a path separator: {value!r}")

        try:
            kind = ResourceKind(kind_name)
        except ValueError:
            raise ValueError(f"Unknown resource kind {kind_name!r} in {value!r}")

        return cls(kind, path)


@dataclass(frozen=True, eq=False)
class AuthorizationURI(ResourceURI):
    """
    ResourceURI enriched with the action being requested against it.

    The action is rendered as a ``#action`` fragment for log output only. It
    never takes part in equality, hashing or policy matching.
    """

    action: Optional[str] = None

    def __str__(self) -> str:
        if self.action:
            return f"{self.canonical()}#{self.action}"
        return self.canonical()

    @classmethod
    def for_action(cls, uri: ResourceURI, action: Optional["AuthorizationAction"]) -> "AuthorizationURI":
        return cls(uri.kind, uri.path, action.value if action is not None else None)


UNTRUSTED_USER_URI = ResourceURI(ResourceKind.UNTRUSTED_USER)


class AuthorizationAction(str, Enum):
    """Base for per-kind action enumerations. Values are ``<kind>#<verb>``."""

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind(self.value.split(ACTION_SEPARATOR, 1)[0])

    @property
    def verb(self) -> str:
        return self.value.split(ACTION_SEPARATOR, 1)[1]


class UserAction(AuthorizationAction):
    """Actions which can be performed on users"""

    CREATE = "user#create"
    AUTHENTICATE = "user#authenticate"
    RETRIEVE_NON_SECURE = "user#retrieve_non_secure"
    RETRIEVE_SECURE = "user#retrieve_secure"
    UPDATE_NON_SECURE = "user#update_non_secure"
    UPDATE_SECURE = "user#update_secure"
    DELETE = "user#delete"


class GameAction(AuthorizationAction):
    """Actions which can be performed on games"""

    CREATE = "game#create"
    RETRIEVE = "game#retrieve"
    UPDATE = "game#update"
    DELETE = "game#delete"


class DealAction(AuthorizationAction):
    """Actions which can be performed on deals"""

    CREATE = "deal#create"
    RETRIEVE = "deal#retrieve"
    UPDATE = "deal#update"
    DELETE = "deal#delete"


class AuthorizationPolicyAction(AuthorizationAction):
    """Actions which can be performed on stored authorization policies"""

    CREATE = "authorization-policy#create"
    RETRIEVE = "authorization-policy#retrieve"


class APIMetadataAction(AuthorizationAction):
    """Actions which can be performed on API metadata (health, version)"""

    RETRIEVE = "api-metadata#retrieve"


class RoleAction(AuthorizationAction):
    """Action slot of a role membership row"""

    MEMBER = "role#member"


def action_kind(action: str) -> Optional[str]:
    """Resource kind prefix of a raw action string, or None when it has none."""
    kind, sep, verb = action.partition(ACTION_SEPARATOR)
    if not sep or not kind or not verb:
        return None
    return kind


@dataclass(frozen=True)
class AuthorizationRequest:
    """
    An object URI paired with the actions required against it.

    Raises:
        ValueError: If no actions are given, or an action belongs to a
            different resource kind than the URI
    """

    uri: ResourceURI
    actions: Tuple[AuthorizationAction, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        actions = tuple(self.actions)
        if not actions:
            raise ValueError(f"Authorization request for {self.uri} has no actions")

        for action in actions:
            if not isinstance(action, AuthorizationAction):
                raise ValueError(f"Not an authorization action: {action!r}")
            if action.resource_kind != self.uri.kind:
                raise ValueError(
                    f"Action {action.value} cannot be requested against a {self.uri.kind.value} resource"
                )

        object.__setattr__(self, "actions", actions)

    @classmethod
    def of(cls, uri: ResourceURI, *actions: AuthorizationAction) -> "AuthorizationRequest":
        return cls(uri, tuple(actions))

    def enriched_uris(self) -> Iterable[AuthorizationURI]:
        """One AuthorizationURI per action, for log output."""
        for action in self.actions:
            yield AuthorizationURI.for_action(self.uri, action)


ACTION_TYPES = (
    UserAction,
    GameAction,
    DealAction,
    AuthorizationPolicyAction,
    APIMetadataAction,
    RoleAction,
)


def parse_action(value: str) -> AuthorizationAction:
    """
    Look up the action enumeration member for a ``<kind>#<verb>`` string.

    Raises:
        ValueError: If no action has this value
    """
    for action_type in ACTION_TYPES:
        try:
            return action_type(value)
        except ValueError:
            continue
    raise ValueError(f"Unknown authorization action: {value!r}")
