"""
Error kinds raised by the order and review workflows.

Each kind has a stable ``code`` and the HTTP status it maps to, so the
routing layer can render a specific message without inspecting text.
"""


class ShopError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(ShopError):
    code = "validation_error"
    status_code = 400


class DuplicateReviewError(ShopError):
    code = "duplicate_review"
    status_code = 409


class InvalidTransitionError(ShopError):
    code = "invalid_transition"
    status_code = 409


class PermissionDeniedError(ShopError):
    code = "permission_denied"
    status_code = 403


class ConflictError(ShopError):
    code = "conflict"
    status_code = 409


class UniqueConstraintError(ConflictError):
    """A write collided with a unique index."""


class NotFoundError(ShopError):
    code = "not_found"
    status_code = 404


class TransientStoreError(ShopError):
    code = "store_unavailable"
    status_code = 503
