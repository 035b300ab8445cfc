"""
Authorization Exceptions

Exception classes raised by the policy model, the policy store and the
authorization client.

This module defines:
- AuthorizationError: Base class for the authorization subsystem
- PolicyConfigurationError: A policy, pattern or rule set is malformed
- PolicyStoreError: The policy store could not be read or written
- AuthorizationUnavailableError: No engine is available for a live decision

Security Considerations:
- None of these errors may ever be turned into an allow decision
- Configuration and store errors raised at startup abort the process
- During a live request the pipeline answers with a generic error body, the
  exception detail only goes to the log

Usage:
    from gamedeals.services.authorization.exceptions import PolicyConfigurationError

    try:
        policy = ABACPolicy(subject_rule="", object_pattern=..., action_pattern=...)
    except PolicyConfigurationError as e:
        logger.error(f"Rejected policy: {e}")
"""

from typing import Optional


class AuthorizationError(Exception):
    """
    Base exception for the authorization subsystem.

    Attributes:
        message: Human-readable error description
        details: Additional context for debugging
    """

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class PolicyConfigurationError(AuthorizationError):
    """
    A policy could not be authored or compiled.

    Raised for empty policy fields, malformed URI or action patterns, rule
    expressions that do not parse, and unknown policy types.
    """


class PolicyStoreError(AuthorizationError):
    """The policy store failed to load or persist policies."""


class AuthorizationUnavailableError(AuthorizationError):
    """
    The enforcement engine could not be built for a live decision.

    Callers must treat this as a denial and must not run the guarded handler.
    """
