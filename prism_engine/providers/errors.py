"""Provider error taxonomy and the classifier that maps provider signals onto it.

Every failure that crosses the provider boundary ends up as exactly one of four
kinds. The engine reacts to the kind, never to the raw provider payload:

=========================  ==================================================
kind                       reaction
=========================  ==================================================
``AuthOrQuotaError``       credential invalidated; user must supply a new one
``UserInputError``         request rejected; inputs kept for correction
``TransientProviderError`` provider failed without content; safe to re-issue
``EmptyResultError``       call succeeded but produced nothing usable
=========================  ==================================================

Known fragility: the provider reports many auth and quota failures only as free
text. ``PROVIDER_SIGNAL_TABLE`` matches lower-cased substrings of that text, and
the provider's vocabulary is not a stable contract. The table is kept in one
place and covered by tests so a vocabulary change shows up as a failing case
rather than a silently mis-classified error.
"""

from __future__ import annotations

from typing import Any


class ProviderError(RuntimeError):
    kind = "provider"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthOrQuotaError(ProviderError):
    kind = "auth_or_quota"


class UserInputError(ProviderError):
    kind = "user_input"


class TransientProviderError(ProviderError):
    kind = "transient"


class EmptyResultError(ProviderError):
    kind = "empty_result"


# Ordered: the first matching signal wins.
PROVIDER_SIGNAL_TABLE: tuple[tuple[str, type[ProviderError]], ...] = (
    ("api key not found", AuthOrQuotaError),
    ("api key is invalid", AuthOrQuotaError),
    ("api key not valid", AuthOrQuotaError),
    ("invalid api key", AuthOrQuotaError),
    ("api key is not configured", AuthOrQuotaError),
    ("requested entity was not found", AuthOrQuotaError),
    ("permission", AuthOrQuotaError),
    ("quota", AuthOrQuotaError),
    ("resource_exhausted", AuthOrQuotaError),
    ("unauthenticated", AuthOrQuotaError),
    ("billing", AuthOrQuotaError),
    ("invalid_argument", UserInputError),
    ("unsupported", UserInputError),
    ("safety", UserInputError),
    ("blocked", UserInputError),
    ("unavailable", TransientProviderError),
    ("deadline", TransientProviderError),
    ("timed out", TransientProviderError),
    ("internal", TransientProviderError),
    ("overloaded", TransientProviderError),
)

_STATUS_TABLE: dict[int, type[ProviderError]] = {
    401: AuthOrQuotaError,
    403: AuthOrQuotaError,
    429: AuthOrQuotaError,
    400: UserInputError,
    404: UserInputError,
    413: UserInputError,
    422: UserInputError,
}


def classify_message(message: str) -> type[ProviderError] | None:
    lowered = str(message or "").lower()
    for signal, kind in PROVIDER_SIGNAL_TABLE:
        if signal in lowered:
            return kind
    return None


def classify_status(status_code: int | None) -> type[ProviderError] | None:
    if status_code is None:
        return None
    if status_code in _STATUS_TABLE:
        return _STATUS_TABLE[status_code]
    if status_code >= 500:
        return TransientProviderError
    return None


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Convert any exception raised at the provider boundary into one of the four kinds.

    Text signals win over status codes: the provider answers a missing project
    or revoked key with a 404 or 400 whose message names the real cause.
    """
    if isinstance(exc, ProviderError) and type(exc) is not ProviderError:
        return exc
    message = _message_of(exc)
    status_code = _status_of(exc)
    kind = classify_message(message) or classify_status(status_code) or TransientProviderError
    classified = kind(message, status_code=status_code)
    classified.__cause__ = exc
    return classified


def _status_of(exc: BaseException) -> int | None:
    for attr in ("code", "status_code", "status"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _message_of(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message.strip():
        return message.strip()
    text = str(exc).strip()
    return text or type(exc).__name__
