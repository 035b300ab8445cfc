"""
Policy store.

Persists policy tuples in the ``authorization_policies`` table, the same
relational database that holds users, games and deals. Rows are grouped by
policy type on load and kept in insertion (id) order within a type.

Store methods are synchronous, like the rest of the SQLAlchemy session code.
The authorization client runs them in the default executor so the event loop
never blocks on database I/O.
"""

import logging
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gamedeals.database import AuthorizationPolicy
from gamedeals.utils.logging_security import sanitize_for_log

from .exceptions import PolicyConfigurationError, PolicyStoreError
from .policies import NamedPolicySet, Policy, PolicyTuple, PolicyType, to_tuple

logger = logging.getLogger(__name__)

DEFAULT_LOGICAL_NAME = "unnamed"
LOGICAL_NAME_MAX_LENGTH = 255

PolicyInput = Union[Policy, PolicyTuple, Sequence[str]]


class PolicyStore(Protocol):
    """Durable collection of policy tuples keyed by policy type"""

    def load_all(self) -> List[NamedPolicySet]:
        ...

    def add_named_policies(
        self,
        policy_type: Union[str, PolicyType],
        policies: Sequence[PolicyInput],
        logical_name: Optional[str] = None,
    ) -> int:
        ...


def as_policy_tuple(policy: PolicyInput) -> PolicyTuple:
    if isinstance(policy, PolicyTuple):
        return policy
    if hasattr(policy, "kind"):
        return to_tuple(policy)  # type: ignore[arg-type]
    return PolicyTuple.from_row(policy)  # type: ignore[arg-type]


def _logical_name(policy: PolicyInput, logical_name: Optional[str]) -> str:
    if logical_name:
        name = logical_name
    elif hasattr(policy, "description"):
        name = policy.description()  # type: ignore[union-attr]
    else:
        name = DEFAULT_LOGICAL_NAME
    return name[:LOGICAL_NAME_MAX_LENGTH]


class DatabasePolicyStore:
    """PolicyStore backed by SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load_all(self) -> List[NamedPolicySet]:
        """
        Load every stored policy, grouped by policy type.

        Raises:
            PolicyConfigurationError: A row has an unknown policy type or is not a 3-tuple
            PolicyStoreError: The database could not be read
        """
        session = self.session_factory()
        try:
            rows = session.query(AuthorizationPolicy).order_by(AuthorizationPolicy.id).all()
            grouped: Dict[PolicyType, List[PolicyTuple]] = OrderedDict()
            for row in rows:
                policy_type = PolicyType.parse(row.policy_type)
                try:
                    grouped.setdefault(policy_type, []).append(PolicyTuple.from_row(list(row.policy or [])))
                except PolicyConfigurationError as e:
                    raise PolicyConfigurationError(
                        f"Stored policy {row.id} ({sanitize_for_log(row.logical_name)}) is malformed",
                        details=e.message,
                    )

            policy_sets = [NamedPolicySet(policy_type, tuples) for policy_type, tuples in grouped.items()]
            logger.info(
                f"Loaded {len(rows)} authorization policies in {len(policy_sets)} rulesets"
            )
            return policy_sets
        except SQLAlchemyError as e:
            logger.error(f"Failed to load authorization policies: {e}")
            raise PolicyStoreError("Failed to load authorization policies", details=str(e))
        finally:
            session.close()

    def add_named_policies(
        self,
        policy_type: Union[str, PolicyType],
        policies: Sequence[PolicyInput],
        logical_name: Optional[str] = None,
    ) -> int:
        """
        Insert policies under a policy type, skipping exact duplicates.

        Duplicates already stored under the same type, and duplicates within
        the batch itself, are ignored. Returns the number of rows inserted.

        Raises:
            PolicyConfigurationError: Unknown policy type or malformed policy
            PolicyStoreError: The database could not be written
        """
        policy_type = PolicyType.parse(policy_type)
        candidates = [(as_policy_tuple(p), _logical_name(p, logical_name)) for p in policies]

        session = self.session_factory()
        try:
            existing: Set[PolicyTuple] = set()
            for row in session.query(AuthorizationPolicy).filter(
                AuthorizationPolicy.policy_type == policy_type.value
            ):
                if row.policy is not None and len(row.policy) == 3:
                    existing.add(PolicyTuple(*row.policy))

            inserted = 0
            for policy_tuple, name in candidates:
                if policy_tuple in existing:
                    continue
                existing.add(policy_tuple)
                session.add(
                    AuthorizationPolicy(
                        logical_name=name,
                        policy_type=policy_type.value,
                        policy=list(policy_tuple),
                    )
                )
                inserted += 1

            session.commit()
            logger.info(
                f"Added {inserted} of {len(candidates)} policies to ruleset '{policy_type.value}'"
            )
            return inserted
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to store authorization policies: {e}")
            raise PolicyStoreError("Failed to store authorization policies", details=str(e))
        finally:
            session.close()
