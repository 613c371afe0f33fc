"""
Role-Based Access Control – the authorization decision for every action.

Pure logic: no store access, no exceptions for denials. Callers load the
actor, the actor's grant and (for staff management) the target identity,
then act on the returned Decision.
"""

from typing import Optional

from medqr.models import AccessGrant, Action, Decision, DenyReason, Identity, Role

OWNER_ACTIONS = {Action.READ_OWN, Action.WRITE_OWN, Action.DELETE_OWN}
STAFF_ADMIN_ACTIONS = {Action.VERIFY_STAFF, Action.REVOKE_STAFF}
GRANT_ADMIN_ACTIONS = {Action.APPROVE_GRANT, Action.REJECT_GRANT, Action.LIST_STAFF}


def _owner_rule(actor: Identity, grant: Optional[AccessGrant],
        target_id: Optional[str], target: Optional[Identity]) -> Decision:
    if actor.role == Role.PATIENT and actor.id == target_id:
        return Decision.allow()
    return Decision.deny(DenyReason.FORBIDDEN, "not_record_owner")


def _read_other_rule(actor: Identity, grant: Optional[AccessGrant],
        target_id: Optional[str], target: Optional[Identity]) -> Decision:
    if actor.role != Role.MEDICAL_STAFF:
        return Decision.deny(DenyReason.STAFF_NOT_APPROVED, "not_medical_staff")
    if grant is None or grant.staff_id != actor.id:
        return Decision.deny(DenyReason.STAFF_NOT_APPROVED, "no_grant")
    if not grant.is_approved:
        return Decision.deny(DenyReason.STAFF_NOT_APPROVED, f"grant_{grant.state.value}")
    return Decision.allow(audit_required=True)


def _staff_admin_rule(actor: Identity, grant: Optional[AccessGrant],
        target_id: Optional[str], target: Optional[Identity]) -> Decision:
    if actor.role != Role.ADMIN:
        return Decision.deny(DenyReason.FORBIDDEN, "admin_only")
    if target is None or target.role != Role.MEDICAL_STAFF:
        return Decision.deny(DenyReason.INVALID_TARGET, "not_medical_staff")
    return Decision.allow()


def _admin_rule(actor: Identity, grant: Optional[AccessGrant],
        target_id: Optional[str], target: Optional[Identity]) -> Decision:
    if actor.role == Role.ADMIN:
        return Decision.allow()
    return Decision.deny(DenyReason.FORBIDDEN, "admin_only")


def _request_grant_rule(actor: Identity, grant: Optional[AccessGrant],
        target_id: Optional[str], target: Optional[Identity]) -> Decision:
    if actor.role == Role.MEDICAL_STAFF:
        return Decision.allow()
    return Decision.deny(DenyReason.FORBIDDEN, "not_medical_staff")


_RULES = {Action.READ_OTHER: _read_other_rule, Action.REQUEST_GRANT: _request_grant_rule}
_RULES.update({a: _owner_rule for a in OWNER_ACTIONS})
_RULES.update({a: _staff_admin_rule for a in STAFF_ADMIN_ACTIONS})
_RULES.update({a: _admin_rule for a in GRANT_ADMIN_ACTIONS})


def decide(actor: Optional[Identity], grant: Optional[AccessGrant], action: Action,
           target_id: Optional[str] = None, target: Optional[Identity] = None) -> Decision:
    """Decide whether *actor* may perform *action*.

    target_id is the patient whose record is involved; target is the identity
    an admin action applies to. A ReadOther allow carries audit_required=True:
    the caller must append an access-log entry before returning data.
    """
    if actor is None:
        return Decision.deny(DenyReason.UNAUTHENTICATED)

    rule = _RULES.get(action)
    if rule is None:
        return Decision.deny(DenyReason.FORBIDDEN, "unknown_action")
    return rule(actor, grant, target_id, target)
