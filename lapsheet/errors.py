from __future__ import annotations


class LapSheetError(Exception):
    """Base class for failures that end a run with a categorised result."""

    category = "unexpected"


class ConfigurationError(LapSheetError):
    category = "configuration"


class SessionAcquisitionError(LapSheetError):
    category = "session_acquisition"


class LoginFieldNotFoundError(SessionAcquisitionError):
    pass


class CaptureTimeoutError(SessionAcquisitionError):
    pass


class CaptureRequestFailedError(SessionAcquisitionError):
    pass


class ActivityNotFoundError(SessionAcquisitionError):
    category = "activity_not_found"


class FetchError(LapSheetError):
    category = "fetch"

    def __init__(self, message: str, *, status_code: int | None = None, body_excerpt: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body_excerpt = body_excerpt


class PublishError(LapSheetError):
    category = "publish"
