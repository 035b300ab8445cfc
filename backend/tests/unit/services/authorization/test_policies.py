"""
Unit tests for the policy variants and their reduction to policy tuples.
"""

import pytest

from gamedeals.models.authorization_models import (
    UNTRUSTED_USER_URI,
    DealAction,
    GameAction,
    ResourceKind,
    ResourceURI,
    RoleAction,
    UserAction,
)
from gamedeals.services.authorization import (
    ABACPolicy,
    NamedPolicySet,
    PolicyConfigurationError,
    PolicyKind,
    PolicyTuple,
    PolicyType,
    RBACPolicy,
    role_membership,
    role_uri,
    to_tuple,
)


@pytest.mark.unit
class TestRBACPolicy:
    """Test role based policies."""

    def test_to_tuple(self) -> None:
        """An RBAC policy reduces to canonical subject, object and action value."""
        policy = RBACPolicy(role_uri("admin"), ResourceURI(ResourceKind.DEAL, "*"), DealAction.CREATE)
        assert to_tuple(policy) == PolicyTuple("gamedeals://role/admin", "gamedeals://deal/*", "deal#create")
        assert policy.policy_tuple() == to_tuple(policy)

    def test_kind(self) -> None:
        """The discriminant is fixed."""
        policy = RBACPolicy(UNTRUSTED_USER_URI, ResourceURI(ResourceKind.USER, "*"), UserAction.AUTHENTICATE)
        assert policy.kind is PolicyKind.RBAC

    def test_action_must_apply_to_object(self) -> None:
        """A game action cannot be granted on deals."""
        with pytest.raises(PolicyConfigurationError):
            RBACPolicy(role_uri("admin"), ResourceURI(ResourceKind.DEAL), GameAction.CREATE)

    def test_empty_fields_rejected(self) -> None:
        """Missing fields fail when the policy is authored."""
        with pytest.raises(PolicyConfigurationError):
            RBACPolicy(None, ResourceURI(ResourceKind.DEAL), DealAction.CREATE)  # type: ignore[arg-type]

    def test_raw_action_rejected(self) -> None:
        """Actions must be enum members."""
        with pytest.raises(PolicyConfigurationError):
            RBACPolicy(role_uri("admin"), ResourceURI(ResourceKind.DEAL), "deal#create")  # type: ignore[arg-type]

    def test_description(self) -> None:
        """description() names subject, verb and object."""
        policy = RBACPolicy(role_uri("admin"), ResourceURI(ResourceKind.DEAL), DealAction.CREATE)
        assert policy.description() == "gamedeals://role/admin may create gamedeals://deal/"


@pytest.mark.unit
class TestABACPolicy:
    """Test attribute based policies."""

    def test_to_tuple(self) -> None:
        """An ABAC policy keeps its rule and patterns verbatim."""
        policy = ABACPolicy("'gamedeals://role/admin' in subject.roles", "gamedeals://user/*", "^user#.*")
        assert to_tuple(policy) == PolicyTuple(
            "'gamedeals://role/admin' in subject.roles", "gamedeals://user/*", "^user#.*"
        )
        assert policy.kind is PolicyKind.ABAC

    @pytest.mark.parametrize(
        "subject_rule,object_pattern,action_pattern",
        [
            ("", "gamedeals://deal/*", "deal#create"),
            ("subject.kind == 'user'", "", "deal#create"),
            ("subject.kind == 'user'", "gamedeals://deal/*", ""),
        ],
    )
    def test_empty_fields_rejected(self, subject_rule: str, object_pattern: str, action_pattern: str) -> None:
        """Every field is required."""
        with pytest.raises(PolicyConfigurationError):
            ABACPolicy(subject_rule, object_pattern, action_pattern)

    def test_uri_subject_rejected(self) -> None:
        """URI subjects belong in RBAC policies."""
        with pytest.raises(PolicyConfigurationError):
            ABACPolicy("gamedeals://user/1", "gamedeals://deal/*", "deal#create")

    def test_bad_rule_rejected(self) -> None:
        """Rule expressions are parsed at authoring time."""
        with pytest.raises(PolicyConfigurationError):
            ABACPolicy("subject.kind ==", "gamedeals://deal/*", "deal#create")

    def test_bad_object_pattern_rejected(self) -> None:
        """Object patterns are validated at authoring time."""
        with pytest.raises(PolicyConfigurationError):
            ABACPolicy("subject.kind == 'user'", "gamedeals://deal/*/x", "deal#create")

    def test_bad_action_regex_rejected(self) -> None:
        """Action regular expressions are compiled at authoring time."""
        with pytest.raises(PolicyConfigurationError):
            ABACPolicy("subject.kind == 'user'", "gamedeals://deal/*", "^deal#(")


@pytest.mark.unit
class TestRoleMembership:
    """Test grouping rows."""

    def test_membership_row(self) -> None:
        """Membership is an RBAC policy with the role#member action."""
        policy = role_membership(ResourceURI(ResourceKind.USER, "7"), role_uri("admin"))
        assert policy.action is RoleAction.MEMBER
        assert to_tuple(policy) == PolicyTuple("gamedeals://user/7", "gamedeals://role/admin", "role#member")

    def test_role_must_be_concrete(self) -> None:
        """Memberships of a role collection or wildcard are rejected."""
        with pytest.raises(PolicyConfigurationError):
            role_membership(ResourceURI(ResourceKind.USER, "7"), ResourceURI(ResourceKind.ROLE, "*"))
        with pytest.raises(PolicyConfigurationError):
            role_membership(ResourceURI(ResourceKind.USER, "7"), ResourceURI(ResourceKind.DEAL, "1"))

    def test_empty_role_name_rejected(self) -> None:
        """Roles must be named."""
        with pytest.raises(PolicyConfigurationError):
            role_uri("")


@pytest.mark.unit
class TestNamedPolicySet:
    """Test rulesets."""

    def test_of(self) -> None:
        """of() reduces each policy to its tuple."""
        policy_set = NamedPolicySet.of(
            "p", [RBACPolicy(role_uri("admin"), ResourceURI(ResourceKind.DEAL), DealAction.CREATE)]
        )
        assert policy_set.policy_type is PolicyType.POLICY
        assert len(policy_set) == 1
        assert policy_set.policies[0].action == "deal#create"

    def test_unknown_type_rejected(self) -> None:
        """Only 'p' and 'g' exist."""
        with pytest.raises(PolicyConfigurationError):
            NamedPolicySet("x", [])

    def test_rows_normalized(self) -> None:
        """Plain sequences are converted to policy tuples."""
        policy_set = NamedPolicySet("g", [["gamedeals://user/1", "gamedeals://role/admin", "role#member"]])
        assert isinstance(policy_set.policies[0], PolicyTuple)

    @pytest.mark.parametrize(
        "row",
        [
            ["gamedeals://user/1", "gamedeals://role/admin"],
            ["gamedeals://user/1", "", "role#member"],
        ],
    )
    def test_malformed_rows_rejected(self, row: list) -> None:
        """Rows must hold exactly three non-empty strings."""
        with pytest.raises(PolicyConfigurationError):
            PolicyTuple.from_row(row)
