"""
Policy model.

A policy is one access rule. Whatever its variant, it reduces to exactly one
PolicyTuple ``(subject-pattern, object-pattern, action-pattern)`` which is all
the enforcement engine ever sees.

Variants:
    RBACPolicy  concrete (or wildcarded) subject and object URIs and a single
                action value.
    ABACPolicy  a rule expression for the subject, an object URI pattern and an
                action pattern (exact or "^regex").

Both variants fail closed: an empty field raises PolicyConfigurationError when
the policy is authored, never later at enforcement time.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, NamedTuple, Sequence, Union

from gamedeals.models.authorization_models import (
    AuthorizationAction,
    ResourceKind,
    ResourceURI,
    RoleAction,
)

from .exceptions import PolicyConfigurationError
from .matcher import ActionPattern, is_uri_pattern, validate_uri_pattern
from .rules import compile_rule


class PolicyType(str, Enum):
    """Closed vocabulary of ruleset names understood by the enforcer"""

    POLICY = "p"  # subject may perform action on object
    GROUPING = "g"  # subject is a member of role

    @classmethod
    def parse(cls, value: Union[str, "PolicyType"]) -> "PolicyType":
        """
        Raises:
            PolicyConfigurationError: If the name is not a known policy type
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise PolicyConfigurationError(f"Unknown policy type {value!r}")


class PolicyKind(str, Enum):
    """Discriminant of the Policy union"""

    RBAC = "rbac"
    ABAC = "abac"


class PolicyTuple(NamedTuple):
    subject: str
    object: str
    action: str

    @classmethod
    def from_row(cls, row: Sequence[str]) -> "PolicyTuple":
        """
        Build a tuple from a stored row.

        Raises:
            PolicyConfigurationError: If the row does not hold exactly three
                non-empty strings
        """
        if row is None or len(row) != 3:
            raise PolicyConfigurationError(f"Policy rows must have exactly 3 fields, got {row!r}")
        for value in row:
            if not isinstance(value, str) or not value:
                raise PolicyConfigurationError(f"Policy row has an empty or non-string field: {row!r}")
        return cls(*row)


def _require(value: object, name: str) -> None:
    if value is None or value == "":
        raise PolicyConfigurationError(f"Policy field '{name}' must not be empty")


@dataclass(frozen=True)
class RBACPolicy:
    """This subject may perform this action on this object."""

    subject: ResourceURI
    object: ResourceURI
    action: AuthorizationAction
    kind: PolicyKind = field(default=PolicyKind.RBAC, init=False)

    def __post_init__(self) -> None:
        _require(self.subject, "subject")
        _require(self.object, "object")
        _require(self.action, "action")
        if not isinstance(self.subject, ResourceURI) or not isinstance(self.object, ResourceURI):
            raise PolicyConfigurationError("RBAC policy subject and object must be resource URIs")
        if not isinstance(self.action, AuthorizationAction):
            raise PolicyConfigurationError(f"RBAC policy action must be an authorization action, got {self.action!r}")
        if self.action.resource_kind != self.object.kind:
            raise PolicyConfigurationError(
                f"Action {self.action.value} does not apply to {self.object.kind.value} resources"
            )

    def description(self) -> str:
        return f"{self.subject} may {self.action.verb} {self.object}"

    def policy_tuple(self) -> PolicyTuple:
        return to_tuple(self)


@dataclass(frozen=True)
class ABACPolicy:
    """Any subject satisfying the rule may perform matching actions on matching objects."""

    subject_rule: str
    object_pattern: str
    action_pattern: str
    kind: PolicyKind = field(default=PolicyKind.ABAC, init=False)

    def __post_init__(self) -> None:
        _require(self.subject_rule, "subject_rule")
        _require(self.object_pattern, "object_pattern")
        _require(self.action_pattern, "action_pattern")
        if is_uri_pattern(self.subject_rule):
            raise PolicyConfigurationError(
                "ABAC subject must be a rule expression, use RBACPolicy for URI subjects",
                details=self.subject_rule,
            )
        compile_rule(self.subject_rule)
        validate_uri_pattern(self.object_pattern)
        ActionPattern(self.action_pattern)

    def description(self) -> str:
        return f"subjects where ({self.subject_rule}) may {self.action_pattern} on {self.object_pattern}"

    def policy_tuple(self) -> PolicyTuple:
        return to_tuple(self)


Policy = Union[RBACPolicy, ABACPolicy]


def to_tuple(policy: Policy) -> PolicyTuple:
    """Reduce any policy variant to its storage and matching tuple."""
    if policy.kind is PolicyKind.RBAC:
        return PolicyTuple(str(policy.subject), str(policy.object), policy.action.value)
    if policy.kind is PolicyKind.ABAC:
        return PolicyTuple(policy.subject_rule, policy.object_pattern, policy.action_pattern)
    raise PolicyConfigurationError(f"Unknown policy kind {policy.kind!r}")


def role_uri(name: str) -> ResourceURI:
    _require(name, "role")
    return ResourceURI(ResourceKind.ROLE, name)


def role_membership(member: ResourceURI, role: ResourceURI) -> RBACPolicy:
    """Grouping row making ``member`` (a user, a wildcard or another role) a member of ``role``."""
    if role.kind is not ResourceKind.ROLE or role.is_collection or role.is_wildcard:
        raise PolicyConfigurationError(f"Role membership target must be a concrete role URI, got {role}")
    return RBACPolicy(subject=member, object=role, action=RoleAction.MEMBER)


@dataclass
class NamedPolicySet:
    """An ordered ruleset under one policy type"""

    policy_type: PolicyType
    policies: List[PolicyTuple] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.policy_type = PolicyType.parse(self.policy_type)
        self.policies = [
            p if isinstance(p, PolicyTuple) else PolicyTuple.from_row(p) for p in self.policies
        ]

    @classmethod
    def of(cls, policy_type: Union[str, PolicyType], policies: Iterable[Policy]) -> "NamedPolicySet":
        return cls(PolicyType.parse(policy_type), [to_tuple(p) for p in policies])

    def __len__(self) -> int:
        return len(self.policies)
