from typing import Optional, Tuple

import requests


class PhotoCritiqueError(Exception):
    """
    Base error. ``status_code`` is the HTTP status it maps to and ``code``
    travels in the JSON error body so the client can rebuild the error.
    """

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Internal error."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PhotoCritiqueError):
    """Malformed or missing input the user can correct."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid input."


class DuplicateUsername(PhotoCritiqueError):
    status_code = 400
    code = "DUPLICATE_USERNAME"
    default_message = "Username already exists."


class InvalidCredential(PhotoCritiqueError):
    # Same message for unknown user and wrong password.
    status_code = 400
    code = "INVALID_CREDENTIAL"
    default_message = "Incorrect username or password."


class Unauthenticated(PhotoCritiqueError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Not logged in."


class SessionInvalid(PhotoCritiqueError):
    status_code = 401
    code = "SESSION_INVALID"
    default_message = "Session expired or logged in on another device."


class UserNotFound(PhotoCritiqueError):
    status_code = 401
    code = "USER_NOT_FOUND"
    default_message = "User does not exist."


class NotFound(PhotoCritiqueError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Record not found."


class CapacityExceeded(PhotoCritiqueError):
    status_code = 400
    code = "CAPACITY_EXCEEDED"

    def __init__(self, capacity: Optional[int] = None, message: Optional[str] = None):
        self.capacity = capacity
        if message is None:
            limit = f" ({capacity} records)" if capacity is not None else ""
            message = f"History limit reached{limit}, delete old records first."
        super().__init__(message)


class StorageQuotaExceeded(PhotoCritiqueError):
    status_code = 507
    code = "STORAGE_QUOTA_EXCEEDED"
    default_message = "Not enough storage space to save the record."


class InternalError(PhotoCritiqueError):
    pass


class RateLimited(PhotoCritiqueError):
    """Raised by the HTTP client when the server answers 429."""

    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests."


ERROR_CATEGORIES = {
    "network": "Network connection failed, please check your network and retry.",
    "auth": "Authentication failed, please log in again.",
    "timeout": "The request timed out, please try again later.",
    "parse": "Could not read the response, please try again.",
    "rate_limit": "Too many requests, please try again later.",
    "server": "Server error, please try again later.",
    "unknown": "Something went wrong, please try again.",
}


def categorize_error(exc: BaseException) -> Tuple[str, str]:
    """
    Bucket an exception into a user-facing category and message.

    Taxonomy errors that the user can act on keep their own message;
    ``InternalError`` and anything unrecognised collapse to a generic
    message so internal detail never reaches the screen.
    """
    if isinstance(exc, requests.Timeout):
        return "timeout", ERROR_CATEGORIES["timeout"]
    if isinstance(exc, requests.ConnectionError):
        return "network", ERROR_CATEGORIES["network"]
    if isinstance(exc, ValueError):
        return "parse", ERROR_CATEGORIES["parse"]
    if isinstance(exc, (Unauthenticated, SessionInvalid, UserNotFound)):
        return "auth", exc.message
    if isinstance(exc, RateLimited):
        return "rate_limit", ERROR_CATEGORIES["rate_limit"]
    if isinstance(exc, InternalError):
        return "server", ERROR_CATEGORIES["server"]
    if isinstance(exc, PhotoCritiqueError):
        return "unknown", exc.message
    return "unknown", ERROR_CATEGORIES["unknown"]

