"""Error taxonomy shared by the core services.

Every error carries a stable ``kind`` string and the HTTP status the API layer
maps it to, so callers can tell them apart without parsing messages.
"""


class OTAError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(OTAError):
    kind = "validation_error"
    status_code = 400

    def __init__(self, message: str, fields: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or {}


class AuthorizationError(OTAError):
    kind = "authorization_error"
    status_code = 403


class NotFoundError(OTAError):
    kind = "not_found"
    status_code = 404


class ConflictError(OTAError):
    kind = "conflict"
    status_code = 409


class InvalidTransitionError(OTAError):
    kind = "invalid_transition"
    status_code = 409


class IntegrityError(OTAError):
    kind = "integrity_error"
    status_code = 422


class StorageInconsistencyError(OTAError):
    kind = "storage_inconsistency"
    status_code = 500
