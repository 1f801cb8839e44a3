"""
Domain errors raised by the core services.

Every error carries the HTTP status and a stable machine-readable code so the
UI can tell "this slot was just taken" apart from "outside provider's hours".
main.py renders them as {"detail": ..., "code": ...}.
"""


class CoreError(Exception):
    status_code = 400
    code = "core_error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(CoreError):
    status_code = 404
    code = "not_found"


class PermissionDenied(CoreError):
    status_code = 403
    code = "permission_denied"


class InvalidTransition(CoreError):
    status_code = 409
    code = "invalid_transition"


class InvalidRange(CoreError):
    status_code = 422
    code = "invalid_range"


class DuplicateApplication(CoreError):
    status_code = 409
    code = "duplicate_application"


class DuplicateEntry(CoreError):
    status_code = 409
    code = "duplicate_entry"


class AlreadyProvisioned(CoreError):
    status_code = 409
    code = "already_provisioned"


class OutsideAvailability(CoreError):
    status_code = 422
    code = "outside_availability"


class SlotConflict(CoreError):
    status_code = 409
    code = "slot_conflict"


class NotDue(CoreError):
    status_code = 425
    code = "not_due"


class InsufficientBalance(CoreError):
    status_code = 422
    code = "insufficient_balance"


class ProviderInUse(CoreError):
    status_code = 409
    code = "provider_in_use"


class StorageUnavailable(CoreError):
    status_code = 503
    code = "storage_unavailable"
