"""
Error taxonomy shared by the engines and the HTTP layer.

Each error carries the HTTP status it maps to so routers never need to
translate them by hand.
"""


class SkyIntelError(Exception):
    """Base class for all application errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SkyIntelError):
    """Missing or malformed input supplied by the caller."""

    status_code = 400


class AuthenticationError(SkyIntelError):
    """Trigger authentication failed."""

    status_code = 401


class UpstreamError(SkyIntelError):
    """A collaborator (ADS-B source, context store) failed."""

    status_code = 502


class InternalError(SkyIntelError):
    """Storage or computation failure."""

    status_code = 500
