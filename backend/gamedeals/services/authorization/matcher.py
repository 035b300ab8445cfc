"""
Pattern matching for policy tuples.

Grammar:
    URI pattern      exact canonical URI, or a URI whose path ends in "*"
                     which matches every URI sharing the prefix before it.
                     ``gamedeals://deal/*`` matches ``gamedeals://deal/5`` and
                     the collection ``gamedeals://deal/``.
    Action pattern   exact action string, or a regular expression when the
                     pattern starts with "^" (full-match, case-sensitive).
    Subject pattern  a URI pattern when it starts with ``gamedeals://``,
                     otherwise a rule expression (see rules.py).
"""

import re
from typing import Optional, Pattern

from gamedeals.models.authorization_models import (
    ResourceKind,
    SCHEME_PREFIX,
    WILDCARD,
    action_kind,
)

from .exceptions import PolicyConfigurationError

REGEX_ACTION_MARKER = "^"


def is_uri_pattern(pattern: str) -> bool:
    return pattern.startswith(SCHEME_PREFIX)


def validate_uri_pattern(pattern: str) -> str:
    """
    Check that a URI pattern is well formed.

    Raises:
        PolicyConfigurationError: Unknown scheme or kind, or a "*" anywhere
            other than the final path segment
    """
    if not pattern:
        raise PolicyConfigurationError("URI pattern must not be empty")
    if not is_uri_pattern(pattern):
        raise PolicyConfigurationError(f"URI pattern must start with {SCHEME_PREFIX}", details=pattern)

    kind_name, sep, path = pattern[len(SCHEME_PREFIX):].partition("/")
    if not sep:
        raise PolicyConfigurationError("URI pattern is missing a path separator", details=pattern)
    try:
        ResourceKind(kind_name)
    except ValueError:
        raise PolicyConfigurationError(f"Unknown resource kind {kind_name!r}", details=pattern)

    if WILDCARD in path:
        head = path[: -len(WILDCARD)]
        if not path.endswith(WILDCARD) or WILDCARD in head or (head and not head.endswith("/")):
            raise PolicyConfigurationError("Wildcard is only allowed as the last path segment", details=pattern)

    return pattern


def match_uri(pattern: str, value: str) -> bool:
    """True when the concrete URI ``value`` is covered by ``pattern``."""
    if pattern.endswith("/" + WILDCARD):
        return value.startswith(pattern[: -len(WILDCARD)])
    return pattern == value


class ActionPattern:
    """Compiled action pattern. Regular expressions are compiled once at load."""

    def __init__(self, pattern: str):
        if not pattern:
            raise PolicyConfigurationError("Action pattern must not be empty")

        self.pattern = pattern
        self._regex: Optional[Pattern[str]] = None

        if pattern.startswith(REGEX_ACTION_MARKER):
            try:
                self._regex = re.compile(pattern)
            except re.error as e:
                raise PolicyConfigurationError(f"Invalid action regular expression: {e}", details=pattern)
        elif action_kind(pattern) is None:
            raise PolicyConfigurationError("Action must be prefixed with its resource kind", details=pattern)

    @property
    def is_regex(self) -> bool:
        return self._regex is not None

    def matches(self, action: str) -> bool:
        if self._regex is not None:
            return self._regex.fullmatch(action) is not None
        return self.pattern == action

    def __repr__(self) -> str:
        return f"ActionPattern({self.pattern!r})"
