"""
Typed errors raised by the scheduling and ledger services.

Every error carries a stable ``code`` the client can branch on, the HTTP
status the API layer renders it with, and whether a retry without
corrective action could succeed.
"""

from typing import Any, Dict, Optional


class TelecareError(Exception):
    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details or {}
        self.retryable = retryable


class ValidationError(TelecareError):
    def __init__(self, message: str, details: dict = None):
        super().__init__("VALIDATION_ERROR", message, 422, details)


class NotFoundError(TelecareError):
    def __init__(self, message: str, details: dict = None, code: str = "NOT_FOUND"):
        super().__init__(code, message, 404, details)


class UnauthorizedError(TelecareError):
    def __init__(self, message: str = "Unauthorized", details: dict = None, code: str = "UNAUTHORIZED"):
        super().__init__(code, message, 403, details)


class ConflictError(TelecareError):
    def __init__(self, message: str, details: dict = None, code: str = "CONFLICT", http_status: int = 409):
        super().__init__(code, message, http_status, details)


class InsufficientFundsError(TelecareError):
    def __init__(self, message: str, details: dict = None, code: str = "INSUFFICIENT_FUNDS"):
        super().__init__(code, message, 402, details)


class DependencyFailure(TelecareError):
    """Storage or infrastructure failure; the only retryable error class."""

    def __init__(self, message: str = "Storage transaction failed", details: dict = None):
        super().__init__("DEPENDENCY_FAILURE", message, 503, details, retryable=True)


# Domain-specific
class AccountNotFound(NotFoundError):
    def __init__(self, account_id):
        super().__init__(f"Account not found ({account_id})", {"account_id": account_id}, code="ACCOUNT_NOT_FOUND")


class SlotNotFound(NotFoundError):
    def __init__(self, slot_id):
        super().__init__(f"Availability slot not found ({slot_id})", {"slot_id": slot_id}, code="SLOT_NOT_FOUND")


class AppointmentNotFound(NotFoundError):
    def __init__(self, appointment_id):
        super().__init__(f"Appointment not found ({appointment_id})", {"appointment_id": appointment_id}, code="APPOINTMENT_NOT_FOUND")


class PayoutNotFound(NotFoundError):
    def __init__(self, payout_id):
        super().__init__(f"Payout request not found ({payout_id})", {"payout_id": payout_id}, code="PAYOUT_NOT_FOUND")


class SlotAlreadyBooked(ConflictError):
    def __init__(self, slot_id):
        super().__init__("This time slot is already booked. Please select a different time.", {"slot_id": slot_id}, code="SLOT_ALREADY_BOOKED")


class SlotHasAppointment(ConflictError):
    def __init__(self, slot_id):
        super().__init__("Cannot change a slot with an existing appointment", {"slot_id": slot_id}, code="SLOT_HAS_APPOINTMENT", http_status=400)


class AlreadyCancelled(ConflictError):
    def __init__(self, appointment_id):
        super().__init__("Appointment is already cancelled", {"appointment_id": appointment_id}, code="ALREADY_CANCELLED")


class InvalidStatusTransition(ConflictError):
    def __init__(self, entity: str, current, requested):
        current = getattr(current, "value", current)
        requested = getattr(requested, "value", requested)
        super().__init__(
            f"{entity} cannot move from {current} to {requested}",
            {"entity": entity, "current": current, "requested": requested},
            code="INVALID_STATUS_TRANSITION",
        )


class PayoutAlreadyResolved(ConflictError):
    def __init__(self, payout_id, status):
        status = getattr(status, "value", status)
        super().__init__(f"Payout request {payout_id} is already {status}", {"payout_id": payout_id, "status": status}, code="PAYOUT_ALREADY_RESOLVED")


class PayoutAlreadyPending(ConflictError):
    def __init__(self, payout_id):
        super().__init__("A payout request is already being processed", {"payout_id": payout_id}, code="PAYOUT_ALREADY_PENDING")


class DoctorNotVerified(UnauthorizedError):
    def __init__(self, doctor_id):
        super().__init__("Doctor is not verified", {"doctor_id": doctor_id}, code="DOCTOR_NOT_VERIFIED")


class RoleNotAllowed(UnauthorizedError):
    def __init__(self, role, allowed):
        role = getattr(role, "value", role)
        allowed = [getattr(r, "value", r) for r in allowed]
        super().__init__(f"Access denied. Required roles: {', '.join(allowed)}", {"role": role, "allowed": allowed}, code="ROLE_NOT_ALLOWED")


class InsufficientCredits(InsufficientFundsError):
    def __init__(self, account_id, balance: int, required: int):
        super().__init__(
            f"Insufficient credits to book an appointment. You need {required} credits.",
            {"account_id": account_id, "balance": balance, "required": required},
            code="INSUFFICIENT_CREDITS",
        )


class InsufficientBalance(InsufficientFundsError):
    def __init__(self, account_id, balance: int, required: int):
        super().__init__(
            "Account balance is too low for this operation",
            {"account_id": account_id, "balance": balance, "required": required},
            code="INSUFFICIENT_BALANCE",
        )
