"""
Error types raised by the catalog and auth code.

Each carries the HTTP status and the message the client is allowed to see;
``main.py`` turns them into ``{"message": ...}`` responses.
"""


class ServiceError(Exception):
    status_code = 500
    message = "Server error"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(ServiceError):
    status_code = 400
    message = "Invalid request"


class MissingField(ValidationError):
    message = "All fields are required."


class UnsupportedMediaType(ServiceError):
    status_code = 400
    message = "Invalid file type"


class PayloadTooLarge(ServiceError):
    status_code = 400
    message = "File too large"


class Rejected(ServiceError):
    status_code = 400
    message = "Invalid credentials"


class TokenNotFound(ServiceError):
    status_code = 400
    message = "Token not found"


class InvalidIdentifier(ServiceError):
    status_code = 400
    message = "Invalid course id"


class NotFound(ServiceError):
    status_code = 404
    message = "Course not found"


class DuplicateEmail(ServiceError):
    status_code = 500
    message = "Error registering user"


class PersistenceError(ServiceError):
    status_code = 500
    message = "Server error"


class InvalidToken(ServiceError):
    status_code = 401
    message = "Could not validate credentials"
