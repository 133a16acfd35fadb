"""
API error taxonomy. Each error maps to one HTTP status and a client-safe message.
"""


class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.message}


class Unauthenticated(ApiError):
    status_code = 401
    message = "Access token required"


class Forbidden(ApiError):
    status_code = 403
    message = "Invalid token"


class InsufficientPermissions(ApiError):
    status_code = 403
    message = "Insufficient permissions"


class InvalidInput(ApiError):
    status_code = 400
    message = "Invalid input"


class InvalidCredentials(ApiError):
    status_code = 401
    message = "Invalid credentials"


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class StorageError(ApiError):
    status_code = 500
    message = "Database error"
