"""
Enforcement engine.

Decides allow/deny for a concrete ``(subject, object, action)`` triple against
the loaded rulesets:

    "g" rows  role membership edges ``(member-pattern, role-uri, role#member)``.
              Membership is transitive, resolved breadth first up to
              MAX_ROLE_DEPTH levels.
    "p" rows  access rules. A row matches when its subject pattern matches the
              subject (directly, through one of the subject's roles, or by a
              rule expression), its object pattern matches the object and its
              action pattern matches the action.

The decision is allow iff at least one "p" row matches. Everything else,
including an empty store, is deny. The rulesets of an Enforcer are fixed
once built, so a decision is a pure function of those rulesets and the
triple. Resolved roles are memoized per subject in an LRU cache of
ROLE_CACHE_SIZE entries.
"""

import logging
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Iterable, List, Optional

from gamedeals.models.authorization_models import (
    ResourceKind,
    ResourceURI,
    RoleAction,
    action_kind,
)

from .exceptions import PolicyConfigurationError
from .matcher import ActionPattern, is_uri_pattern, match_uri, validate_uri_pattern
from .policies import NamedPolicySet, PolicyTuple, PolicyType
from .rules import CompiledRule, SubjectAttributes, compile_rule

logger = logging.getLogger(__name__)

MAX_ROLE_DEPTH = 10
ROLE_CACHE_SIZE = 4096


@dataclass(frozen=True)
class CompiledPolicy:
    """A "p" row with its patterns compiled"""

    source: PolicyTuple
    subject_uri: Optional[str]
    subject_rule: Optional[CompiledRule]
    object_pattern: str
    action: ActionPattern

    def matches_subject(self, subject: str, roles: FrozenSet[str]) -> bool:
        if self.subject_uri is not None:
            if match_uri(self.subject_uri, subject):
                return True
            return any(match_uri(self.subject_uri, role) for role in roles)
        return self.subject_rule(SubjectAttributes.from_uri(subject, roles))

    def matches(self, subject: str, roles: FrozenSet[str], obj: str, action: str) -> bool:
        return (
            match_uri(self.object_pattern, obj)
            and self.action.matches(action)
            and self.matches_subject(subject, roles)
        )


@dataclass(frozen=True)
class RoleMembership:
    """A "g" row"""

    member_pattern: str
    role: str


def compile_policy(row: PolicyTuple) -> CompiledPolicy:
    """
    Raises:
        PolicyConfigurationError: If any pattern in the row is malformed
    """
    subject, obj, action = PolicyTuple.from_row(row)

    if is_uri_pattern(subject):
        subject_uri, subject_rule = validate_uri_pattern(subject), None
    else:
        subject_uri, subject_rule = None, compile_rule(subject)

    return CompiledPolicy(
        source=PolicyTuple(subject, obj, action),
        subject_uri=subject_uri,
        subject_rule=subject_rule,
        object_pattern=validate_uri_pattern(obj),
        action=ActionPattern(action),
    )


def compile_membership(row: PolicyTuple) -> RoleMembership:
    """
    Raises:
        PolicyConfigurationError: If the row is not ``(member, concrete role, role#member)``
    """
    member, role, action = PolicyTuple.from_row(row)
    validate_uri_pattern(member)

    if action != RoleAction.MEMBER.value:
        raise PolicyConfigurationError(f"Grouping rows must use the {RoleAction.MEMBER.value} action", details=str(row))

    try:
        role_uri = ResourceURI.parse(role)
    except ValueError as e:
        raise PolicyConfigurationError(f"Invalid role in grouping row: {e}", details=str(row))
    if role_uri.kind is not ResourceKind.ROLE or role_uri.is_collection or role_uri.is_wildcard:
        raise PolicyConfigurationError("Grouping rows must name a concrete role", details=str(row))

    return RoleMembership(member_pattern=member, role=role)


def validate_policy_row(policy_type: PolicyType, row: PolicyTuple) -> None:
    """
    Compile a row the way the enforcer would, without keeping it.

    Raises:
        PolicyConfigurationError: If the enforcer would reject the row
    """
    if PolicyType.parse(policy_type) is PolicyType.GROUPING:
        compile_membership(row)
    else:
        compile_policy(row)


class Enforcer:
    """
    Compiled, immutable view of the policy store.

    Raises:
        PolicyConfigurationError: From the constructor, if any ruleset has an
            unknown type or holds a malformed row
    """

    def __init__(self, policy_sets: Iterable[NamedPolicySet]):
        self._policies: List[CompiledPolicy] = []
        self._memberships: List[RoleMembership] = []
        self._cached_roles = lru_cache(maxsize=ROLE_CACHE_SIZE)(self._resolve_roles)

        for policy_set in policy_sets:
            policy_type = PolicyType.parse(policy_set.policy_type)
            if policy_type is PolicyType.POLICY:
                self._policies.extend(compile_policy(row) for row in policy_set.policies)
            elif policy_type is PolicyType.GROUPING:
                self._memberships.extend(compile_membership(row) for row in policy_set.policies)

        logger.info(
            f"Enforcer built with {len(self._policies)} access rules and {len(self._memberships)} role memberships"
        )

    @property
    def policy_count(self) -> int:
        return len(self._policies)

    @property
    def membership_count(self) -> int:
        return len(self._memberships)

    def roles_for(self, subject: str) -> FrozenSet[str]:
        """All role URIs ``subject`` is a member of, directly or through other roles."""
        return self._cached_roles(subject)

    @property
    def role_cache_size(self) -> int:
        return self._cached_roles.cache_info().currsize

    def _resolve_roles(self, subject: str) -> FrozenSet[str]:
        roles = set()
        queue: deque = deque([(subject, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= MAX_ROLE_DEPTH:
                logger.warning(f"Role resolution for {subject} stopped at depth {MAX_ROLE_DEPTH}")
                continue
            for membership in self._memberships:
                if membership.role in roles or membership.role == subject:
                    continue
                if match_uri(membership.member_pattern, current):
                    roles.add(membership.role)
                    queue.append((membership.role, depth + 1))

        return frozenset(roles)

    def enforce(self, subject: str, obj: str, action: str) -> bool:
        """Allow iff some access rule matches all three components."""
        object_kind = _uri_kind(obj)
        if object_kind is None or action_kind(action) != object_kind:
            logger.debug(f"Action {action} does not apply to {obj}, denying")
            return False

        if not self._policies:
            return False

        roles = self.roles_for(subject)
        for policy in self._policies:
            if policy.matches(subject, roles, obj, action):
                logger.debug(f"Rule {tuple(policy.source)} allows {subject} {action} on {obj}")
                return True
        return False


def _uri_kind(uri: str) -> Optional[str]:
    try:
        return ResourceURI.parse(uri).kind.value
    except ValueError:
        return None
