# app/constants/error_codes.py
import enum


class ErrorCode(str, enum.Enum):
    # ---------------- GENERIC ----------------
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # ---------------- QUOTATIONS ----------------
    QUOTATION_NOT_FOUND = "QUOTATION_NOT_FOUND"
    QUOTATION_INVALID_STATE = "QUOTATION_INVALID_STATE"
    QUOTATION_VERSION_CONFLICT = "QUOTATION_VERSION_CONFLICT"
    QUOTATION_NOT_REVISABLE = "QUOTATION_NOT_REVISABLE"

    # ---------------- STATE MACHINE ----------------
    TRANSITION_NOT_ALLOWED = "TRANSITION_NOT_ALLOWED"
    TRANSITION_CONDITIONS_NOT_MET = "TRANSITION_CONDITIONS_NOT_MET"

    # ---------------- APPROVALS ----------------
    APPROVAL_LEVEL_INSUFFICIENT = "APPROVAL_LEVEL_INSUFFICIENT"
    APPROVAL_ALREADY_PENDING = "APPROVAL_ALREADY_PENDING"
    APPROVAL_NOT_PENDING = "APPROVAL_NOT_PENDING"

    # ---------------- REVISIONS ----------------
    REVISION_NOT_FOUND = "REVISION_NOT_FOUND"
    REVISION_INVALID_STATE = "REVISION_INVALID_STATE"
    REVISION_ALREADY_OPEN = "REVISION_ALREADY_OPEN"
