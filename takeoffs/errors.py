"""
Error taxonomy shared by the auth guard, upload pipeline and record service.

Every error knows the HTTP status it maps to and the JSON body the API
returns for it; `takeoffs.app` registers a single handler for the base class.
"""

from __future__ import annotations


class TakeoffError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def body(self) -> dict:
        return {"error": self.message}


class AuthError(TakeoffError):
    status_code = 401

    def body(self) -> dict:
        return {"success": False, "message": self.message}


class Unauthenticated(AuthError):
    def __init__(self, message: str = "No token, authorization denied"):
        super().__init__(message)


class InvalidToken(AuthError):
    def __init__(self, message: str = "Token is not valid"):
        super().__init__(message)


class Forbidden(AuthError):
    status_code = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class ValidationError(TakeoffError):
    """Schema violations, flattened to one message per offending field."""

    status_code = 400

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or "Validation failed")
        self.errors = errors

    def body(self) -> dict:
        return {"errors": self.errors}


class NotFound(TakeoffError):
    status_code = 404

    def __init__(self, message: str = "Takeoff not found"):
        super().__init__(message)


class FileNotFound(TakeoffError):
    def __init__(self, path: str):
        super().__init__(f"File not found: {path}")
        self.path = path


class UploadFailed(TakeoffError):
    pass


class InternalError(TakeoffError):
    pass
