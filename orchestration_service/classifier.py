"""
Call Classifier: labels an upstream failure as retriable or fatal.

Rules are evaluated in order and the first match wins. Anything unmatched is
treated as retriable, so an unrecognised transient server error still gets
another attempt.
"""

import asyncio
import re
from typing import Any, Callable, List, Optional, Tuple

from .errors import ErrorKind, ValidationRejected

# Transport codes reported by socket / DNS layers
RETRIABLE_CODES = frozenset({
    "ECONNRESET",
    "ETIMEDOUT",
    "ECONNABORTED",
    "ECONNREFUSED",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EPIPE",
})

_NETWORK_RE = re.compile(
    r"time[d\s-]*out|timeout|connection (?:reset|refused|aborted|closed)|"
    r"econnreset|etimedout|econnrefused|econnaborted|enotfound|eai_again|"
    r"dns|name resolution|getaddrinfo|network (?:error|unreachable)|socket hang up",
    re.IGNORECASE,
)
_RATE_LIMIT_RE = re.compile(r"rate[\s_-]*limit|too many requests", re.IGNORECASE)
_VALIDATION_RE = re.compile(r"validation|invalid|required|missing parameter", re.IGNORECASE)
_AUTH_RE = re.compile(r"unauthori[sz]ed|forbidden|authentication", re.IGNORECASE)


def _message_of(error: Any) -> str:
    msg = getattr(error, "message", None)
    if isinstance(msg, str) and msg:
        return msg
    return str(error) if error is not None else ""


def _code_of(error: Any) -> Optional[str]:
    code = getattr(error, "code", None)
    if code is None:
        return None
    return str(code).upper()


def _status_of(error: Any) -> Optional[int]:
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def _is_network(error: Any) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if _code_of(error) in RETRIABLE_CODES:
        return True
    return bool(_NETWORK_RE.search(_message_of(error)))


def _is_rate_limit(error: Any) -> bool:
    if _status_of(error) == 429:
        return True
    return bool(_RATE_LIMIT_RE.search(_message_of(error)))


def _is_policy_rejection(error: Any) -> bool:
    return isinstance(error, ValidationRejected)


def _is_validation(error: Any) -> bool:
    if _status_of(error) in (400, 422):
        return True
    return bool(_VALIDATION_RE.search(_message_of(error)))


def _is_authorization(error: Any) -> bool:
    if _status_of(error) in (401, 403):
        return True
    return bool(_AUTH_RE.search(_message_of(error)))


RULES: List[Tuple[str, Callable[[Any], bool], ErrorKind]] = [
    ("policy", _is_policy_rejection, ErrorKind.FATAL),
    ("network", _is_network, ErrorKind.RETRIABLE),
    ("rate_limit", _is_rate_limit, ErrorKind.RETRIABLE),
    ("validation", _is_validation, ErrorKind.FATAL),
    ("authorization", _is_authorization, ErrorKind.FATAL),
]


def classify_with_rule(error: Any) -> Tuple[str, ErrorKind]:
    """Return the name of the matching rule and the resulting kind."""
    for name, predicate, kind in RULES:
        if predicate(error):
            return name, kind
    return "default", ErrorKind.RETRIABLE


def classify(error: Any) -> ErrorKind:
    return classify_with_rule(error)[1]
