"""
Grading Session
===============
The working set for one signed-in user: selected bimestre, selected course,
and the students/grades/appreciations/behavior/family rows loaded for them.

Command modules (grading, appreciations) receive the session by reference;
nothing else holds copies of these collections.
"""
import logging
import threading

from libreta.config import config as app_config
from libreta.services import appreciations, grading
from libreta.services.permissions import (
    DOCENTE, capabilities, can_write, role_from_profile, session_capabilities,
)

logger = logging.getLogger(__name__)

COURSE = 'course'
TUTOR = 'tutor'
FAMILY = 'family'
REVIEW = 'review'
MODES = (COURSE, TUTOR, FAMILY)


class GradingSession:
    """Working set + selection state for one user."""

    def __init__(self, store, user_id, role, tutor_classroom_id=None, full_name='', debounce_seconds=None):
        self.store = store
        self.user_id = user_id
        self.role = role
        self.tutor_classroom_id = tutor_classroom_id
        self.full_name = full_name
        self.lock = threading.RLock()

        self.periods = []
        self.period = None
        self.academic_load = []
        self.course = None
        self.mode = COURSE

        self.students = []
        self.grades = {}          # (student_id, competency_id) -> {grade, descriptive_conclusion}
        self.appreciations = {}   # student_id -> {comment, is_approved, tutor_id}
        self.behavior = {}        # student_id -> {comportamiento, tutoria_valores}
        self.family_commitments = []
        self.family = {}          # (student_id, commitment_id) -> grade
        self.unsynced = set()

        if debounce_seconds is None:
            debounce_seconds = app_config.draft_debounce_seconds
        self.debouncer = appreciations.DraftDebouncer(debounce_seconds, self._write_draft)

    def _write_draft(self, student_id, period_id):
        return appreciations.write_appreciation(self, student_id, period_id)

    # ═══════════════════════════════════════════════════════
    # LOADING & SELECTION
    # ═══════════════════════════════════════════════════════

    def load(self):
        """Load the active year's bimestres and, for teachers, their academic load."""
        year = self.store.query_active_year()
        self.periods = self.store.query_periods(year['id']) if year else []
        if self.periods:
            active = self.store.query_active_period()
            known = {p['id'] for p in self.periods}
            self.period = active if active and active['id'] in known else self.periods[0]
        if self.role == DOCENTE:
            self.academic_load = self.store.query_academic_load(self.user_id, self.tutor_classroom_id)
        return self

    def tutor_sections(self):
        """One entry per classroom where this teacher is the homeroom tutor."""
        unique = {}
        for load in self.academic_load:
            if load['is_tutor'] and load['classroom_id'] not in unique:
                unique[load['classroom_id']] = load
        return list(unique.values())

    def select_period(self, period_id):
        """Switch bimestre. Only bimestres of the active academic year are selectable."""
        period = next((p for p in self.periods if str(p['id']) == str(period_id)), None)
        if period is None:
            raise ValueError(f"Bimestre {period_id} is not part of the active academic year")
        self.debouncer.flush_all()
        with self.lock:
            self.period = period
        if self.course:
            self.reload()
        elif self.mode == REVIEW:
            self.open_review()
        return period

    def refresh_period(self):
        """Re-read the selected bimestre so external lock changes are seen."""
        if not self.period:
            return None
        fresh = self.store.query_period(self.period['id'])
        if fresh:
            with self.lock:
                self.period = fresh
                self.periods = [fresh if p['id'] == fresh['id'] else p for p in self.periods]
        return self.period

    def find_load(self, assignment_id):
        loads = self.academic_load if self.role == DOCENTE else self.store.query_course_assignments()
        return next((l for l in loads if str(l['id']) == str(assignment_id)), None)

    def select_course(self, assignment_id, mode=COURSE):
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode!r}")
        load = self.find_load(assignment_id)
        if load is None:
            raise LookupError(f"Course assignment {assignment_id} not found")
        if mode != COURSE and self.role == DOCENTE and not load['is_tutor']:
            raise PermissionError("Tutor and family modes require the homeroom assignment")
        self.debouncer.flush_all()
        with self.lock:
            self.course = load
            self.mode = mode
        self.reload()
        return load

    def open_review(self):
        """
        Staff working set: every student of every active section with the
        appreciations visible to this role, no course selected.
        """
        if not self.period:
            return
        self.debouncer.flush_all()
        classroom_ids = [c['id'] for c in self.store.query_classrooms()]
        students = self.store.query_students(classroom_ids)
        include_drafts = capabilities(self.role, self.period)['can_view_drafts']
        rows = self.store.query_appreciations(self.period['id'], [s['id'] for s in students],
                                              include_drafts=include_drafts)
        with self.lock:
            self.course = None
            self.mode = REVIEW
            self._replace_working_set(students, [], rows, [], [], [])

    def reload(self):
        """Refresh the working set for the selected course and bimestre."""
        if not self.course or not self.period:
            return
        students = self.store.query_students([self.course['classroom_id']])
        ids = [s['id'] for s in students]
        period_id = self.period['id']
        include_drafts = capabilities(self.role, self.period)['can_view_drafts']

        grade_rows = self.store.query_grades(period_id, ids)
        appreciation_rows = self.store.query_appreciations(period_id, ids, include_drafts=include_drafts)
        behavior_rows = self.store.query_behavior(period_id, ids)
        commitments = self.store.query_family_commitments()
        family_rows = self.store.query_family_evaluations(period_id, ids)

        with self.lock:
            self._replace_working_set(students, grade_rows, appreciation_rows,
                                      behavior_rows, commitments, family_rows)

    def _replace_working_set(self, students, grade_rows, appreciation_rows, behavior_rows, commitments, family_rows):
        if self.unsynced:
            logger.warning("Discarding %d unsynced changes for %s on reload", len(self.unsynced), self.user_id)
        self.unsynced = set()
        self.students = students
        self.grades = {
            (g['student_id'], g['competency_id']): {
                "grade": g['grade'],
                "descriptive_conclusion": g.get('descriptive_conclusion') or '',
            }
            for g in grade_rows if g.get('grade')
        }
        self.appreciations = {
            a['student_id']: {
                "comment": a.get('comment') or '',
                "is_approved": a.get('is_approved'),
                "tutor_id": a.get('tutor_id'),
            }
            for a in appreciation_rows
        }
        self.behavior = {
            b['student_id']: {
                "comportamiento": b.get('behavior_grade') or '',
                "tutoria_valores": b.get('values_grade') or '',
            }
            for b in behavior_rows
        }
        self.family_commitments = commitments
        self.family = {(f['student_id'], f['commitment_id']): f['grade'] for f in family_rows if f.get('grade')}

    # ═══════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════

    @property
    def level(self):
        return (self.course or {}).get('level', '')

    def competency_ids(self):
        return [c['id'] for c in (self.course or {}).get('competencies', [])]

    def require_student(self, student_id):
        if student_id not in {s['id'] for s in self.students}:
            raise ValueError(f"Student {student_id} is not in the selected course")

    def require_competency(self, competency_id):
        if competency_id not in self.competency_ids():
            raise ValueError(f"Competency {competency_id} is not part of the selected course")

    def permissions(self):
        return session_capabilities(self)

    def retry_unsynced(self):
        """Re-issue the write for every change the store has not confirmed."""
        if not can_write(self.period):
            return {"retried": 0, "remaining": len(self.unsynced)}
        period_id = self.period['id']
        with self.lock:
            keys = sorted(self.unsynced, key=str)
        for key in keys:
            kind = key[0]
            if kind == 'grade':
                grading.write_grade(self, key[1], key[2], period_id)
            elif kind == 'appreciation':
                self.debouncer.cancel(key[1])
                appreciations.write_appreciation(self, key[1], period_id)
            elif kind == 'behavior':
                grading.write_behavior(self, key[1], period_id)
            elif kind == 'family':
                grading.write_family_evaluation(self, key[1], key[2], period_id)
        return {"retried": len(keys), "remaining": len(self.unsynced)}

    def snapshot(self):
        """JSON-ready view of the working set."""
        with self.lock:
            level = self.level
            return {
                "user_id": self.user_id,
                "role": self.role,
                "permissions": self.permissions(),
                "period": self.period,
                "periods": self.periods,
                "course": self.course,
                "mode": self.mode,
                "students": self.students,
                "grades": [{
                    "student_id": sid,
                    "competency_id": cid,
                    "grade": entry['grade'],
                    "descriptive_conclusion": entry.get('descriptive_conclusion') or '',
                    "conclusion_required": grading.conclusion_missing(level, entry),
                } for (sid, cid), entry in self.grades.items()],
                "appreciations": [{
                    "student_id": sid,
                    "comment": row.get('comment') or '',
                    "is_approved": row.get('is_approved'),
                    "state": appreciations.appreciation_state(row),
                } for sid, row in self.appreciations.items()],
                "behavior": [dict(entry, student_id=sid) for sid, entry in self.behavior.items()],
                "family_commitments": self.family_commitments,
                "family_evaluations": [{
                    "student_id": sid,
                    "commitment_id": cid,
                    "grade": grade,
                } for (sid, cid), grade in self.family.items()],
                "unsynced": [list(key) for key in sorted(self.unsynced, key=str)],
                "pending_drafts": self.debouncer.pending(),
            }


# ═══════════════════════════════════════════════════════
# REGISTRY
# ═══════════════════════════════════════════════════════

_sessions = {}
_sessions_lock = threading.Lock()


def open_session(store, user_id, debounce_seconds=None):
    """
    Build a session from the user's profile.

    Returns None for unknown users; raises PermissionError for deactivated profiles.
    """
    profile = store.query_profile(user_id)
    if not profile:
        return None
    if profile.get('active') is False:
        raise PermissionError(f"Profile {user_id} is inactive")
    session = GradingSession(
        store,
        user_id,
        role_from_profile(profile.get('role')),
        tutor_classroom_id=profile.get('tutor_classroom_id'),
        full_name=profile.get('full_name', ''),
        debounce_seconds=debounce_seconds,
    )
    return session.load()


def get_session(store, user_id):
    with _sessions_lock:
        session = _sessions.get(user_id)
    if session is not None:
        return session
    session = open_session(store, user_id)
    if session is None:
        return None
    with _sessions_lock:
        return _sessions.setdefault(user_id, session)


def drop_session(user_id):
    with _sessions_lock:
        session = _sessions.pop(user_id, None)
    if session is not None:
        session.debouncer.flush_all()


def clear_sessions():
    with _sessions_lock:
        users = list(_sessions.keys())
    for user_id in users:
        drop_session(user_id)
