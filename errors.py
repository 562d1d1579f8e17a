"""Application error taxonomy.

Each error carries the HTTP status it maps to and a caller-facing message.
main.py turns them into ``{"message": ...}`` JSON responses.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


# 400
class ValidationFailed(AppError):
    status_code = 400
    default_message = "Invalid request"


class UserExists(ValidationFailed):
    default_message = "User already exists"


# 401
class AuthError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidCredentials(AuthError):
    default_message = "Invalid credentials"


class AccountDeactivated(AuthError):
    default_message = "Account is deactivated"


class RoleMismatch(AuthError):
    default_message = "Invalid role for this user"


class Unauthenticated(AuthError):
    default_message = "Token is not valid"


# 403
class PermissionDenied(AppError):
    status_code = 403
    default_message = "Access denied. Insufficient permissions."


# 404
class NotFound(AppError):
    status_code = 404
    default_message = "Not found"
