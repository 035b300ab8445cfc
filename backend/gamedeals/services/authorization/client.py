"""
Authorization client.

Public façade over the policy store and the enforcement engine. One instance is
created at application startup and injected into the request pipeline.

The engine is built lazily, at most once at a time: concurrent first callers
all await the same in-flight load instead of each reading the store. A failed
load is not cached, so the next caller starts a fresh one.

A failed rebuild marks the engine stale: the store may hold rows the running
engine has not seen. While stale, every init() retries the rebuild and keeps
the previous engine if the store is still failing. Stored rows are only ever
added, so the previous engine is never more permissive than the store.

FAIL-SECURE: every error on the decision path ends in a denial or in
AuthorizationUnavailableError. Nothing on this path can produce an allow.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Union

from fastapi import Request

from gamedeals.models.authorization_models import (
    AuthorizationRequest,
    AuthorizationURI,
    ResourceURI,
)
from gamedeals.utils.logging_security import create_authorization_log_entry, sanitize_uri_for_log

from .enforcer import Enforcer, validate_policy_row
from .exceptions import AuthorizationUnavailableError
from .policies import NamedPolicySet, PolicyType
from .store import PolicyInput, PolicyStore, as_policy_tuple

logger = logging.getLogger(__name__)


class AuthorizationClient:
    """Answers "may this subject do all of these things" for the request pipeline"""

    def __init__(self, store: PolicyStore):
        self.store = store
        self._enforcer: Optional[Enforcer] = None
        self._policy_sets: List[NamedPolicySet] = []
        self._loading: Optional["asyncio.Future[Enforcer]"] = None
        self._stale = False

        logger.info(f"Authorization client created with store {type(store).__name__}")

    @property
    def is_initialized(self) -> bool:
        return self._enforcer is not None

    @property
    def is_stale(self) -> bool:
        return self._stale

    async def init(self) -> Enforcer:
        """
        Build the enforcement engine if it has not been built yet.

        Idempotent. Loader and engine construction errors
        (PolicyConfigurationError, PolicyStoreError) propagate to the caller
        when there is no engine yet. A stale engine is rebuilt here.
        """
        if self._enforcer is not None:
            if self._stale:
                return await self._refresh_stale(self._enforcer)
            return self._enforcer
        return await self._join_or_start_load()

    async def _refresh_stale(self, current: Enforcer) -> Enforcer:
        try:
            return await self._join_or_start_load()
        except Exception as e:
            logger.warning(f"Stale authorization engine could not be rebuilt, keeping the previous one: {e}")
            return current

    async def reload(self) -> Enforcer:
        """Rebuild the engine from the current store contents."""
        if self._loading is not None:
            # A load already in flight may have read the store before the
            # change that triggered this reload.
            try:
                await asyncio.shield(self._loading)
            except Exception as e:
                logger.warning(f"In-flight policy load failed before reload: {e}")
        return await self._join_or_start_load()

    async def _join_or_start_load(self) -> Enforcer:
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())
        return await asyncio.shield(self._loading)

    async def _load(self) -> Enforcer:
        try:
            loop = asyncio.get_event_loop()
            policy_sets = await loop.run_in_executor(None, self.store.load_all)
            enforcer = Enforcer(policy_sets)
            self._policy_sets = list(policy_sets)
            self._enforcer = enforcer
            self._stale = False
            return enforcer
        except Exception as e:
            self._stale = True
            logger.error(f"Failed to build authorization engine: {e}")
            raise
        finally:
            self._loading = None

    async def is_allowed(self, subject: ResourceURI, requests: Sequence[AuthorizationRequest]) -> bool:
        """
        True iff every action of every request is allowed for ``subject``.

        An empty request list is denied. The pipeline rejects empty
        requirement lists before calling this, so this is a second guard.

        Raises:
            AuthorizationUnavailableError: The engine could not be built
        """
        if not requests:
            logger.warning(f"No authorization requirements given for {sanitize_uri_for_log(subject)}, denying")
            return False

        try:
            enforcer = await self.init()
        except Exception as e:
            raise AuthorizationUnavailableError("Authorization engine is unavailable", details=str(e)) from e

        subject_uri = subject.canonical()
        for request in requests:
            for action in request.actions:
                enriched = AuthorizationURI.for_action(request.uri, action)
                try:
                    allowed = enforcer.enforce(subject_uri, request.uri.canonical(), action.value)
                except Exception as e:
                    # FAIL-SECURE: unexpected engine errors deny
                    logger.error(
                        create_authorization_log_entry(subject, [enriched], False, reason=f"enforcer error: {e}")
                    )
                    return False

                if not allowed:
                    logger.warning(create_authorization_log_entry(subject, [enriched], False, reason="no matching policy"))
                    return False

        logger.debug(
            create_authorization_log_entry(subject, [u for r in requests for u in r.enriched_uris()], True)
        )
        return True

    async def add_named_policies(
        self,
        policy_type: Union[str, PolicyType],
        policies: Sequence[PolicyInput],
        logical_name: Optional[str] = None,
    ) -> int:
        """
        Persist policies (idempotently) and rebuild the engine so they apply.

        Every row is compiled first, so a row the enforcer would reject is
        never stored. Returns the number of new rows stored. Store and
        configuration errors propagate. A stale engine is rebuilt even when
        every row was already stored, so retrying a grant whose rebuild
        failed makes it apply.
        """
        policy_type = PolicyType.parse(policy_type)
        policies = list(policies)
        for policy in policies:
            validate_policy_row(policy_type, as_policy_tuple(policy))

        loop = asyncio.get_event_loop()
        inserted = await loop.run_in_executor(
            None, self.store.add_named_policies, policy_type, policies, logical_name
        )
        if inserted or self._stale:
            await self.reload()
        return inserted

    async def policy_sets(self) -> List[NamedPolicySet]:
        """The rulesets the current engine was built from."""
        await self.init()
        return list(self._policy_sets)


def get_authorization_client(request: Request) -> AuthorizationClient:
    """FastAPI dependency returning the client created at startup"""
    return request.app.state.authorization_client
