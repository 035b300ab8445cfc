"""
Unit test fixtures and helpers.

Provides lightweight builders for policy rulesets. Only the policy store and
pipeline tests touch a database, through the in-memory SQLite fixtures of the
top level conftest.
"""

from typing import Callable, Iterable, List, Sequence

import pytest

from gamedeals.services.authorization import Enforcer, NamedPolicySet, PolicyTuple, PolicyType


def _rows(tuples: Iterable[Sequence[str]]) -> List[PolicyTuple]:
    return [PolicyTuple(*t) for t in tuples]


@pytest.fixture
def build_enforcer() -> Callable[..., Enforcer]:
    """Enforcer over literal "p" and "g" rows"""

    def _build(p: Iterable[Sequence[str]] = (), g: Iterable[Sequence[str]] = ()) -> Enforcer:
        policy_sets = []
        p_rows = _rows(p)
        g_rows = _rows(g)
        if p_rows:
            policy_sets.append(NamedPolicySet(PolicyType.POLICY, p_rows))
        if g_rows:
            policy_sets.append(NamedPolicySet(PolicyType.GROUPING, g_rows))
        return Enforcer(policy_sets)

    return _build


@pytest.fixture
def admin_policy_rows() -> List[PolicyTuple]:
    """Admins may create deals"""
    return _rows([("gamedeals://role/admin", "gamedeals://deal/*", "deal#create")])


@pytest.fixture
def admin_membership_rows() -> List[PolicyTuple]:
    """User 7 is an admin"""
    return _rows([("gamedeals://user/7", "gamedeals://role/admin", "role#member")])
