# app/constants/activity_codes.py
import enum


class ActivityCode(str, enum.Enum):
    # ---------------- AUTH ----------------
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"

    # ---------------- QUOTATIONS ----------------
    CREATE_QUOTATION = "CREATE_QUOTATION"
    CHANGE_QUOTATION_STATUS = "CHANGE_QUOTATION_STATUS"
    REVIEW_QUOTATION = "REVIEW_QUOTATION"
    COMPLETE_QUOTATION_PROJECT = "COMPLETE_QUOTATION_PROJECT"
    EXPIRE_QUOTATION = "EXPIRE_QUOTATION"

    # ---------------- APPROVALS ----------------
    REQUEST_APPROVAL = "REQUEST_APPROVAL"
    APPROVE_QUOTATION = "APPROVE_QUOTATION"
    REJECT_QUOTATION = "REJECT_QUOTATION"
    ADVANCE_APPROVAL_LEVEL = "ADVANCE_APPROVAL_LEVEL"
    ESCALATE_APPROVAL = "ESCALATE_APPROVAL"

    # ---------------- REVISIONS ----------------
    REQUEST_REVISION = "REQUEST_REVISION"
    APPROVE_REVISION = "APPROVE_REVISION"
    REJECT_REVISION = "REJECT_REVISION"
    CLIENT_REVISION_DECISION = "CLIENT_REVISION_DECISION"
    IMPLEMENT_REVISION = "IMPLEMENT_REVISION"
