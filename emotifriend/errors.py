"""
Error taxonomy shared by capture, gateway and orchestrator.

Remote failures are always raised as RemoteAnalysisFailed (or one of its
subtypes) so the orchestrator only has to know about one family:

    RemoteAnalysisFailed(kind, cause)
    ├── RateLimited          status 429 / quota exhausted
    ├── BillingRestricted    model requires a billed account
    ├── TimedOut             long-running operation exceeded its bound
    └── TranslationFailed    any failure of the translation step
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class EmotiFriendError(Exception):
    """Base class for all application errors."""


class PermissionDenied(EmotiFriendError):
    """The user (or the OS) refused access to a camera or microphone."""

    def __init__(self, device: str, cause: Optional[BaseException] = None):
        self.device = device
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Access to {device} was denied{detail}")


class CaptureBusy(EmotiFriendError):
    """A capture mode is already holding the media stream."""

    def __init__(self, active_mode: str, requested_mode: str):
        self.active_mode = active_mode
        self.requested_mode = requested_mode
        super().__init__(
            f"Cannot start {requested_mode} capture while {active_mode} capture is active"
        )


class CaptureCancelled(EmotiFriendError):
    """The capture was released before it produced any media."""


class RemoteAnalysisFailed(EmotiFriendError):
    """A remote analysis or generation call failed."""

    def __init__(self, kind: str, cause: object = None):
        self.kind = kind
        self.cause = cause
        super().__init__(f"{kind} failed: {cause}")


class RateLimited(RemoteAnalysisFailed):
    pass


class BillingRestricted(RemoteAnalysisFailed):
    pass


class TimedOut(RemoteAnalysisFailed):
    pass


class TranslationFailed(RemoteAnalysisFailed):
    def __init__(self, cause: object = None):
        super().__init__("translation", cause)


_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "resource_exhausted",
                       "resource exhausted", "quota")
_BILLING_MARKERS = ("billing", "billed")


def _cause_text(cause: object) -> str:
    if isinstance(cause, httpx.HTTPStatusError):
        try:
            body = cause.response.text
        except httpx.ResponseNotRead:
            body = ""
        return f"{cause.response.status_code} {cause} {body}".lower()
    return str(cause).lower()


def classify_failure(kind: str, cause: object) -> RemoteAnalysisFailed:
    """
    Wrap an arbitrary failure into the matching RemoteAnalysisFailed subtype.

    Already-classified errors are returned unchanged. Billing markers win over
    rate-limit markers because quota errors on unbilled projects mention both.
    """
    if isinstance(cause, RemoteAnalysisFailed):
        return cause

    if kind == "translation":
        return TranslationFailed(cause)

    text = _cause_text(cause)
    if any(marker in text for marker in _BILLING_MARKERS):
        return BillingRestricted(kind, cause)

    status = None
    if isinstance(cause, httpx.HTTPStatusError):
        status = cause.response.status_code
    if status == 429 or any(marker in text for marker in _RATE_LIMIT_MARKERS):
        return RateLimited(kind, cause)

    if isinstance(cause, (httpx.TimeoutException, TimeoutError)):
        return TimedOut(kind, cause)

    return RemoteAnalysisFailed(kind, cause)
