"""
Period Lock Guard & Capabilities
================================
Single place where role and period lock are turned into permissions.
Every mutation handler asks here before touching local state or the store.
"""
import logging

logger = logging.getLogger(__name__)

DOCENTE = 'Docente'
SUPERVISOR = 'Supervisor'
ADMINISTRADOR = 'Administrador'

STAFF_ROLES = (SUPERVISOR, ADMINISTRADOR)

# session modes that open the homeroom slots (session.TUTOR, session.FAMILY)
TUTOR_MODES = ('tutor', 'family')

# profiles.role -> application role
PROFILE_ROLES = {
    'admin': ADMINISTRADOR,
    'subdirector': ADMINISTRADOR,
    'supervisor': SUPERVISOR,
}


def role_from_profile(profile_role):
    """Map a profiles.role value to an application role (default Docente)."""
    return PROFILE_ROLES.get((profile_role or '').strip().lower(), DOCENTE)


def can_write(period):
    """True when the period accepts writes. No period selected means no writes."""
    if not period:
        return False
    return not period.get('is_locked', False)


def capabilities(role, period, tutor_scope=False):
    """
    Permission set for a role on the given (currently selected) period.

    Supervisors are read-only on grades regardless of lock state;
    only Supervisor/Administrador may flip appreciation approval.
    Appreciations, behavior and family grades belong to the homeroom:
    a Docente edits them only with tutor_scope (see in_tutor_scope).
    """
    writable = can_write(period)
    staff = role in STAFF_ROLES
    known = role in (DOCENTE, SUPERVISOR, ADMINISTRADOR)
    tutor_data = writable and (role == ADMINISTRADOR or (role == DOCENTE and tutor_scope))
    return {
        "can_write": writable,
        "can_edit_grades": writable and known and role != SUPERVISOR,
        "can_edit_tutor_data": tutor_data,
        "can_edit_appreciations": tutor_data,
        "can_submit_for_review": tutor_data and role == DOCENTE,
        "can_approve": writable and staff,
        "can_view_drafts": role == DOCENTE,
        "can_manage_areas": role == ADMINISTRADOR,
    }


def in_tutor_scope(session):
    """True when the session has its homeroom course open in tutor or family mode."""
    course = session.course or {}
    return bool(course.get('is_tutor')) and session.mode in TUTOR_MODES


def session_capabilities(session):
    return capabilities(session.role, session.period, in_tutor_scope(session))


def allowed(session, capability):
    """Evaluate a capability against the session's selected period at call time."""
    return session_capabilities(session).get(capability, False)


def rejection(session):
    """Result for a guarded no-op. Nothing was changed locally or remotely."""
    reason = 'locked' if not can_write(session.period) else 'forbidden'
    logger.debug("Rejected mutation for %s (%s): %s", session.user_id, session.role, reason)
    return {"applied": False, "reason": reason}
