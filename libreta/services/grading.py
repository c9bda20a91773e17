"""
Grade Mutations
===============
Competency grades, mass descriptive conclusions, behavior/values grades and
family-commitment evaluations for the selected course and bimestre.

Every command checks the lock guard first, updates the working set
optimistically, then writes to the store. Failed writes are not rolled back;
the key stays in session.unsynced until a later write or retry succeeds.
"""
import logging

from libreta.store import StoreError
from libreta.services.permissions import allowed, rejection

logger = logging.getLogger(__name__)

GRADE_LEVELS = ('AD', 'A', 'B', 'C')

# API field -> column
BEHAVIOR_FIELDS = {
    'comportamiento': 'behavior_grade',
    'tutoria_valores': 'values_grade',
}

ALL_WITH_GRADE = 'all_with_grade'
SPECIFIC_GRADE = 'specific_grade'
EMPTY_CONCLUSION = 'empty_conclusion'
MASS_FILTERS = (ALL_WITH_GRADE, SPECIFIC_GRADE, EMPTY_CONCLUSION)

ALL_COMPETENCIES = 'ALL'


def validate_grade(grade):
    if grade not in GRADE_LEVELS and grade != '':
        raise ValueError(f"Invalid grade level: {grade!r}")


def is_conclusion_mandatory(level, grade):
    """
    Advisory only: primaria expects a conclusion for B and C, secundaria for C.
    Grades are saved whether or not the conclusion is present.
    """
    level = (level or '').upper()
    if 'PRIMARIA' in level:
        return grade in ('B', 'C')
    if 'SECUNDARIA' in level:
        return grade == 'C'
    return False


def conclusion_missing(level, entry):
    if not entry:
        return False
    return is_conclusion_mandatory(level, entry.get('grade')) and not (entry.get('descriptive_conclusion') or '').strip()


# ═══════════════════════════════════════════════════════
# COMPETENCY GRADES
# ═══════════════════════════════════════════════════════

def write_grade(session, student_id, competency_id, period_id):
    """Push one working-set grade to the store (delete when it was cleared)."""
    entry = session.grades.get((student_id, competency_id))
    try:
        if entry is None:
            session.store.delete_grade(student_id, competency_id, period_id)
        else:
            session.store.upsert_grade(student_id, competency_id, period_id,
                                       entry['grade'], entry.get('descriptive_conclusion'))
    except StoreError as e:
        logger.error("Error saving grade %s/%s: %s", student_id, competency_id, e)
        return False, str(e)
    session.unsynced.discard(('grade', student_id, competency_id))
    return True, None


def set_grade(session, student_id, competency_id, grade, conclusion=None):
    """
    Set a competency grade. An empty grade removes the row entirely.
    When conclusion is None the current conclusion is kept.
    """
    validate_grade(grade)
    with session.lock:
        if not allowed(session, 'can_edit_grades'):
            return rejection(session)
        session.require_student(student_id)
        session.require_competency(competency_id)
        key = (student_id, competency_id)
        if grade == '':
            session.grades.pop(key, None)
        else:
            existing = session.grades.get(key) or {}
            if conclusion is None:
                conclusion = existing.get('descriptive_conclusion') or ''
            session.grades[key] = {"grade": grade, "descriptive_conclusion": conclusion}
        session.unsynced.add(('grade', student_id, competency_id))
        period_id = session.period['id']
        entry = session.grades.get(key)

    synced, error = write_grade(session, student_id, competency_id, period_id)
    return {
        "applied": True,
        "synced": synced,
        "error": error,
        "conclusion_required": conclusion_missing(session.level, entry),
    }


def mass_conclusion_targets(session, competency_id, filter_type, filter_value=None):
    """
    (student_id, competency_id) pairs a mass conclusion would touch.

    Pairs without a grade are always skipped. With ALL competencies every
    competency is its own slot, so a student can appear once per competency.
    """
    if filter_type not in MASS_FILTERS:
        raise ValueError(f"Unknown filter: {filter_type!r}")
    competencies = session.competency_ids()
    if competency_id != ALL_COMPETENCIES:
        session.require_competency(competency_id)
        competencies = [competency_id]

    targets = []
    for comp_id in competencies:
        for student in session.students:
            entry = session.grades.get((student['id'], comp_id))
            if not entry or not entry.get('grade'):
                continue
            if filter_type == SPECIFIC_GRADE and entry['grade'] != filter_value:
                continue
            if filter_type == EMPTY_CONCLUSION and (entry.get('descriptive_conclusion') or '').strip():
                continue
            targets.append((student['id'], comp_id))
    return targets


def count_mass_conclusion_targets(session, competency_id, filter_type, filter_value=None):
    return len(mass_conclusion_targets(session, competency_id, filter_type, filter_value))


def apply_mass_conclusion(session, competency_id, filter_type, filter_value, text):
    """Apply one conclusion text to every matching graded pair."""
    with session.lock:
        if not allowed(session, 'can_edit_grades'):
            return rejection(session)
        if not (text or '').strip():
            return {"applied": False, "reason": "empty_text"}
        targets = mass_conclusion_targets(session, competency_id, filter_type, filter_value)
        for key in targets:
            session.grades[key] = dict(session.grades[key], descriptive_conclusion=text)
            session.unsynced.add(('grade',) + key)
        period_id = session.period['id']

    failed = []
    for student_id, comp_id in targets:
        synced, error = write_grade(session, student_id, comp_id, period_id)
        if not synced:
            failed.append({"student_id": student_id, "competency_id": comp_id, "error": error})

    logger.info("Mass conclusion applied to %d slots (%d failed)", len(targets), len(failed))
    return {
        "applied": True,
        "updated": len(targets),
        "synced": not failed,
        "failed": failed,
    }


# ═══════════════════════════════════════════════════════
# BEHAVIOR & VALUES
# ═══════════════════════════════════════════════════════

def write_behavior(session, student_id, period_id):
    entry = session.behavior.get(student_id) or {}
    try:
        session.store.upsert_behavior(student_id, period_id,
                                      entry.get('comportamiento', ''), entry.get('tutoria_valores', ''))
    except StoreError as e:
        logger.error("Error saving behavior grades for %s: %s", student_id, e)
        return False
    session.unsynced.discard(('behavior', student_id))
    return True


def set_behavior(session, student_id, field, value):
    """Set comportamiento or tutoria_valores; each is an independent slot."""
    if field not in BEHAVIOR_FIELDS:
        raise ValueError(f"Unknown behavior field: {field!r}")
    validate_grade(value)
    with session.lock:
        if not allowed(session, 'can_edit_tutor_data'):
            return rejection(session)
        session.require_student(student_id)
        entry = dict(session.behavior.get(student_id) or {"comportamiento": '', "tutoria_valores": ''})
        entry[field] = value
        session.behavior[student_id] = entry
        session.unsynced.add(('behavior', student_id))
        period_id = session.period['id']

    return {"applied": True, "synced": write_behavior(session, student_id, period_id)}


# ═══════════════════════════════════════════════════════
# FAMILY COMMITMENTS
# ═══════════════════════════════════════════════════════

def write_family_evaluation(session, student_id, commitment_id, period_id):
    grade = session.family.get((student_id, commitment_id))
    try:
        if grade:
            session.store.upsert_family_evaluation(student_id, commitment_id, period_id, grade)
        else:
            session.store.delete_family_evaluation(student_id, commitment_id, period_id)
    except StoreError as e:
        logger.error("Error saving family evaluation %s/%s: %s", student_id, commitment_id, e)
        return False
    session.unsynced.discard(('family', student_id, commitment_id))
    return True


def set_family_evaluation(session, student_id, commitment_id, grade):
    validate_grade(grade)
    with session.lock:
        if not allowed(session, 'can_edit_tutor_data'):
            return rejection(session)
        session.require_student(student_id)
        if commitment_id not in {c['id'] for c in session.family_commitments}:
            raise ValueError(f"Unknown family commitment: {commitment_id!r}")
        key = (student_id, commitment_id)
        if grade:
            session.family[key] = grade
        else:
            session.family.pop(key, None)
        session.unsynced.add(('family',) + key)
        period_id = session.period['id']

    return {"applied": True, "synced": write_family_evaluation(session, student_id, commitment_id, period_id)}
