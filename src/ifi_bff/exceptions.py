# src/ifi_bff/exceptions.py

import typing


class IfiBffError(Exception):
    """Base class for errors raised inside the iFi session layer."""


class AuthError(IfiBffError):
    """No access token, or no valid user session."""


class FetchError(IfiBffError):
    """The backend API answered with a non-success status or could not be reached."""

    def __init__(self, message: str, status_code: typing.Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NormalizationError(IfiBffError):
    """A JSON-encoded onboarding field could not be turned into structured data."""

    def __init__(self, field_name: str, reason: str):
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Could not normalize '{field_name}': {reason}")
