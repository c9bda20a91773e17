"""
Appreciation State Machine
==========================
Lifecycle of the per-student narrative comment for one bimestre:

    empty -> draft -> sent -> approved
                       ^         |
                       +---------+  (edit or manual revert)

Row encoding: no row / blank comment = empty, is_approved NULL = draft,
is_approved false = sent (waiting for review), is_approved true = approved.

Drafts are written through a debouncer so typing produces one upsert per
quiet interval. Sending and approving are immediate.
"""
import logging
import threading

from libreta.store import StoreError
from libreta.services.permissions import DOCENTE, allowed, rejection

logger = logging.getLogger(__name__)

EMPTY = 'empty'
DRAFT = 'draft'
SENT = 'sent'
APPROVED = 'approved'


# ═══════════════════════════════════════════════════════
# TRANSITIONS (pure)
# ═══════════════════════════════════════════════════════

def appreciation_state(row):
    """Current state of an appreciation row (None means no row)."""
    if not row:
        return EMPTY
    approved = row.get('is_approved')
    if approved is True:
        return APPROVED
    if approved is False:
        return SENT
    if (row.get('comment') or '').strip():
        return DRAFT
    return EMPTY


def apply_edit(row, text):
    """
    Row after the comment text changes.

    Any change to the text of an approved appreciation drops it back to
    unapproved (sent). Sent stays sent, empty/draft becomes draft.
    Clearing the text returns the row to empty from any state.
    """
    updated = dict(row or {})
    if row is not None and (row.get('comment') or '') == text:
        return updated
    updated['comment'] = text
    if not (text or '').strip():
        updated['is_approved'] = None
    elif updated.get('is_approved') is True:
        updated['is_approved'] = False
    else:
        updated.setdefault('is_approved', None)
    return updated


def apply_submit(row):
    """Draft -> sent. Returns None when the transition is not available."""
    if appreciation_state(row) != DRAFT:
        return None
    updated = dict(row)
    updated['is_approved'] = False
    return updated


def apply_toggle(row):
    """Sent -> approved, approved -> sent. Returns None otherwise."""
    state = appreciation_state(row)
    if state == SENT:
        updated = dict(row)
        updated['is_approved'] = True
        return updated
    if state == APPROVED:
        updated = dict(row)
        updated['is_approved'] = False
        return updated
    return None


# ═══════════════════════════════════════════════════════
# DEBOUNCER
# ═══════════════════════════════════════════════════════

class DraftDebouncer:
    """Batches rapid draft edits into a single write per key after a quiet interval.

    write_fn(key, payload) is called from a timer thread. With interval <= 0
    writes happen inline and schedule() returns the write outcome.
    """

    def __init__(self, interval, write_fn):
        self.interval = interval
        self.write_fn = write_fn
        self._timers = {}  # key -> (timer, payload)
        self._lock = threading.Lock()

    def schedule(self, key, payload):
        if self.interval <= 0:
            return self.write_fn(key, payload)
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous:
                previous[0].cancel()
            timer = threading.Timer(self.interval, self._fire, args=(key,))
            timer.daemon = True
            self._timers[key] = (timer, payload)
            timer.start()
        return None

    def _fire(self, key):
        with self._lock:
            entry = self._timers.pop(key, None)
        if entry:
            self.write_fn(key, entry[1])

    def cancel(self, key):
        """Drop a pending write. Returns its payload, or None if nothing was pending."""
        with self._lock:
            entry = self._timers.pop(key, None)
        if not entry:
            return None
        entry[0].cancel()
        return entry[1]

    def flush(self, key):
        payload = self.cancel(key)
        if payload is None:
            return None
        return self.write_fn(key, payload)

    def flush_all(self):
        for key in self.pending():
            self.flush(key)

    def pending(self):
        with self._lock:
            return list(self._timers.keys())


# ═══════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════

def write_appreciation(session, student_id, period_id):
    """Upsert the working-set row for a student. Failures are logged and left unsynced."""
    row = session.appreciations.get(student_id)
    if row is None:
        return True
    try:
        session.store.upsert_appreciation(student_id, period_id, row.get('comment') or '',
                                          row.get('is_approved'), row.get('tutor_id'))
    except StoreError as e:
        logger.error("Error saving appreciation for %s: %s", student_id, e)
        return False
    session.unsynced.discard(('appreciation', student_id))
    return True


def hidden_draft_exists(session, student_id):
    """Roles that cannot see drafts must not write over one they never loaded."""
    if allowed(session, 'can_view_drafts'):
        return False
    rows = session.store.query_appreciations(session.period['id'], [student_id], include_drafts=True)
    return any((r.get('comment') or '').strip() for r in rows)


def _result(session, student_id, synced):
    row = session.appreciations.get(student_id)
    return {
        "applied": True,
        "synced": synced,
        "pending": synced is None,
        "state": appreciation_state(row),
        "is_approved": (row or {}).get('is_approved'),
    }


def save_draft(session, student_id, text):
    """
    Save comment text (autosave path). Debounced; never sends for review.
    Editing an approved comment invalidates the approval in the same call.
    """
    with session.lock:
        if not allowed(session, 'can_edit_appreciations'):
            return rejection(session)
        session.require_student(student_id)
        current = session.appreciations.get(student_id)
        if current is None and not text:
            return {"applied": False, "reason": "unchanged"}
        if current is None and hidden_draft_exists(session, student_id):
            return {"applied": False, "reason": "forbidden"}
        updated = apply_edit(current, text)
        if current is not None and updated == current:
            return {"applied": False, "reason": "unchanged"}
        if session.role == DOCENTE and not updated.get('tutor_id'):
            updated['tutor_id'] = session.user_id
        session.appreciations[student_id] = updated
        session.unsynced.add(('appreciation', student_id))
        period_id = session.period['id']

    synced = session.debouncer.schedule(student_id, period_id)
    return _result(session, student_id, synced)


def submit_for_review(session, student_id):
    """Explicit draft -> sent by the authoring teacher. Immediate write."""
    with session.lock:
        if not allowed(session, 'can_submit_for_review'):
            return rejection(session)
        session.require_student(student_id)
        current = session.appreciations.get(student_id)
        if current and current.get('tutor_id') not in (None, session.user_id):
            return {"applied": False, "reason": "forbidden"}
        updated = apply_submit(current)
        if updated is None:
            return {"applied": False, "reason": "invalid_transition", "state": appreciation_state(current)}
        session.debouncer.cancel(student_id)
        session.appreciations[student_id] = updated
        session.unsynced.add(('appreciation', student_id))
        period_id = session.period['id']

    return _result(session, student_id, write_appreciation(session, student_id, period_id))


def toggle_approval(session, student_id):
    """Supervisor/Administrador approve (from sent) or revert (from approved). Immediate write."""
    with session.lock:
        if not allowed(session, 'can_approve'):
            return rejection(session)
        session.require_student(student_id)
        current = session.appreciations.get(student_id)
        updated = apply_toggle(current)
        if updated is None:
            return {"applied": False, "reason": "invalid_transition", "state": appreciation_state(current)}
        session.debouncer.cancel(student_id)
        session.appreciations[student_id] = updated
        session.unsynced.add(('appreciation', student_id))
        period_id = session.period['id']

    result = _result(session, student_id, write_appreciation(session, student_id, period_id))
    logger.info("Appreciation %s for %s by %s", result["state"], student_id, session.user_id)
    return result
