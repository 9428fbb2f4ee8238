from app.constants.activity_codes import ActivityCode


ACTIVITY_TEMPLATES = {
    # ---------------- AUTH ----------------
    ActivityCode.LOGIN:
        "{actor_role} ({actor_email}) logged in",

    ActivityCode.LOGOUT:
        "{actor_role} ({actor_email}) logged out",

    # ---------------- QUOTATIONS ----------------
    ActivityCode.CREATE_QUOTATION:
        "{actor_role} ({actor_email}) created quotation {target_name}",

    ActivityCode.CHANGE_QUOTATION_STATUS:
        "{actor_role} ({actor_email}) moved quotation {target_name} from {from_status} to {to_status}",

    ActivityCode.REVIEW_QUOTATION:
        "{actor_role} ({actor_email}) reviewed quotation {target_name}",

    ActivityCode.COMPLETE_QUOTATION_PROJECT:
        "{actor_role} ({actor_email}) marked the project of quotation {target_name} as completed",

    ActivityCode.EXPIRE_QUOTATION:
        "{actor_role} ({actor_email}) expired quotation {target_name}: {changes}",

    # ---------------- APPROVALS ----------------
    ActivityCode.REQUEST_APPROVAL:
        "{actor_role} ({actor_email}) requested {level} approval for quotation {target_name} ({urgency})",

    ActivityCode.APPROVE_QUOTATION:
        "{actor_role} ({actor_email}) approved quotation {target_name}",

    ActivityCode.REJECT_QUOTATION:
        "{actor_role} ({actor_email}) rejected quotation {target_name}",

    ActivityCode.ADVANCE_APPROVAL_LEVEL:
        "{actor_role} ({actor_email}) approved quotation {target_name} at {level} level, escalated to {next_level}",

    ActivityCode.ESCALATE_APPROVAL:
        "{actor_role} ({actor_email}) escalated approval of quotation {target_name}: {changes}",

    # ---------------- REVISIONS ----------------
    ActivityCode.REQUEST_REVISION:
        "{actor_role} ({actor_email}) requested revision #{revision_number} of quotation {target_name} ({reason})",

    ActivityCode.APPROVE_REVISION:
        "{actor_role} ({actor_email}) approved revision #{revision_number} of quotation {target_name}",

    ActivityCode.REJECT_REVISION:
        "{actor_role} ({actor_email}) rejected revision #{revision_number} of quotation {target_name}",

    ActivityCode.CLIENT_REVISION_DECISION:
        "{actor_role} ({actor_email}) recorded client {decision} for revision #{revision_number} of quotation {target_name}",

    ActivityCode.IMPLEMENT_REVISION:
        "{actor_role} ({actor_email}) implemented revision #{revision_number} of quotation {target_name}: {changes}",
}
