"""
Completion Accounting
=====================
Ratio of filled grading slots to expected slots for a course, a section,
a teacher or the whole school, across four slot categories:

- academic:      students x competencies, per course assignment
- behavior:      tutored students x 2 (comportamiento + valores)
- family:        tutored students x active family commitments
- appreciation:  tutored students x 1

Recounts are pull-based: every call re-queries the store.
"""
import logging

logger = logging.getLogger(__name__)

ACADEMIC = 'academic'
BEHAVIOR = 'behavior'
FAMILY = 'family'
APPRECIATION = 'appreciation'

ALL_CATEGORIES = (ACADEMIC, BEHAVIOR, FAMILY, APPRECIATION)
TUTOR_CATEGORIES = (BEHAVIOR, FAMILY, APPRECIATION)

BEHAVIOR_SLOTS_PER_STUDENT = 2

# What counts as a filled appreciation slot
APPROVED = 'approved'
WRITTEN = 'written'


def completion_percentage(filled, expected):
    """round(100 * filled / expected), half-up, clamped to [0, 100]; 0 when expected is 0."""
    if expected <= 0:
        return 0
    pct = (200 * filled + expected) // (2 * expected)
    return max(0, min(100, pct))


def make_completion(filled, expected):
    return {
        "filled": filled,
        "expected": expected,
        "percentage": completion_percentage(filled, expected),
    }


def combine_completions(parts):
    """Sum several completion dicts into one."""
    filled = sum(p["filled"] for p in parts)
    expected = sum(p["expected"] for p in parts)
    return make_completion(filled, expected)


# ═══════════════════════════════════════════════════════
# SLOT COUNTERS (pure)
# ═══════════════════════════════════════════════════════

def academic_slots(student_ids, competency_ids, grade_rows):
    """Filled/expected competency-grade slots for one course assignment."""
    students = set(student_ids)
    competencies = set(competency_ids)
    expected = len(students) * len(competency_ids)
    filled = sum(1 for g in grade_rows
                 if g.get('grade')
                 and g.get('student_id') in students
                 and g.get('competency_id') in competencies)
    return make_completion(min(filled, expected), expected)


def behavior_slots(student_ids, behavior_rows):
    students = set(student_ids)
    expected = len(students) * BEHAVIOR_SLOTS_PER_STUDENT
    filled = 0
    for row in behavior_rows:
        if row.get('student_id') not in students:
            continue
        if row.get('behavior_grade'):
            filled += 1
        if row.get('values_grade'):
            filled += 1
    return make_completion(min(filled, expected), expected)


def family_slots(student_ids, commitment_ids, evaluation_rows):
    students = set(student_ids)
    commitments = set(commitment_ids)
    expected = len(students) * len(commitments)
    filled = sum(1 for e in evaluation_rows
                 if e.get('grade')
                 and e.get('student_id') in students
                 and e.get('commitment_id') in commitments)
    return make_completion(min(filled, expected), expected)


def appreciation_filled(row, bar=APPROVED):
    if bar == WRITTEN:
        return bool((row.get('comment') or '').strip())
    return row.get('is_approved') is True


def appreciation_slots(student_ids, appreciation_rows, bar=APPROVED):
    students = set(student_ids)
    expected = len(students)
    filled = sum(1 for a in appreciation_rows
                 if a.get('student_id') in students and appreciation_filled(a, bar))
    return make_completion(min(filled, expected), expected)


# ═══════════════════════════════════════════════════════
# SCOPES
# ═══════════════════════════════════════════════════════

def course_scope(classroom_id, competency_ids):
    return {"kind": "course", "classroom_id": classroom_id, "competency_ids": list(competency_ids)}


def section_scope(classroom_id):
    return {"kind": "section", "classroom_id": classroom_id}


def teacher_scope(profile_id, tutor_classroom_id=None):
    return {"kind": "teacher", "profile_id": profile_id, "tutor_classroom_id": tutor_classroom_id}


def global_scope():
    return {"kind": "global"}


def default_categories(scope):
    if scope["kind"] == "course":
        return (ACADEMIC,)
    return ALL_CATEGORIES


def resolve_scope(store, scope):
    """
    Expand a scope into (course_units, tutored_classroom_ids).

    A course unit is (classroom_id, competency_ids); one per course assignment.
    """
    kind = scope["kind"]
    if kind == "course":
        return [(scope["classroom_id"], scope["competency_ids"])], set()

    if kind == "section":
        loads = store.query_course_assignments(classroom_id=scope["classroom_id"])
        units = [(scope["classroom_id"], [c["id"] for c in load["competencies"]]) for load in loads]
        tutored = {scope["classroom_id"]} & store.query_tutor_classroom_ids()
        return units, tutored

    if kind == "teacher":
        loads = store.query_academic_load(scope["profile_id"], scope.get("tutor_classroom_id"))
        units = [(load["classroom_id"], [c["id"] for c in load["competencies"]]) for load in loads]
        tutored = {scope["tutor_classroom_id"]} if scope.get("tutor_classroom_id") else set()
        return units, tutored

    if kind == "global":
        active = {c["id"] for c in store.query_classrooms()}
        loads = store.query_course_assignments()
        units = [(load["classroom_id"], [c["id"] for c in load["competencies"]])
                 for load in loads if load["classroom_id"] in active]
        tutored = active & store.query_tutor_classroom_ids()
        return units, tutored

    raise ValueError(f"Unknown completion scope: {kind}")


def count_slots(units, tutored, students_by_class, rows, categories, appreciation_bar=APPROVED):
    """
    Pure aggregation over already-fetched rows.

    rows: dict with 'grades', 'behavior', 'appreciations', 'family', 'commitment_ids'.
    """
    parts = {}

    if ACADEMIC in categories:
        academic = [academic_slots(students_by_class.get(classroom_id, []), competency_ids, rows.get('grades', []))
                    for classroom_id, competency_ids in units]
        parts[ACADEMIC] = combine_completions(academic)

    tutored_students = [sid for cid in sorted(tutored) for sid in students_by_class.get(cid, [])]
    if BEHAVIOR in categories:
        parts[BEHAVIOR] = behavior_slots(tutored_students, rows.get('behavior', []))
    if FAMILY in categories:
        parts[FAMILY] = family_slots(tutored_students, rows.get('commitment_ids', []), rows.get('family', []))
    if APPRECIATION in categories:
        parts[APPRECIATION] = appreciation_slots(tutored_students, rows.get('appreciations', []), appreciation_bar)

    result = combine_completions(list(parts.values()))
    result["categories"] = parts
    return result


def compute_completion(store, scope, period_id, categories=None, appreciation_bar=APPROVED):
    """
    Completion for a scope in a period: {filled, expected, percentage, categories}.

    Args:
        store: GradeStore (or anything with the same query methods)
        scope: built with course_scope / section_scope / teacher_scope / global_scope
        period_id: bimestre id
        categories: tracked slot categories (default depends on the scope)
        appreciation_bar: APPROVED counts is_approved = true rows, WRITTEN any comment
    """
    categories = tuple(categories or default_categories(scope))
    units, tutored = resolve_scope(store, scope)
    if not set(categories) & set(TUTOR_CATEGORIES):
        tutored = set()

    classroom_ids = {cid for cid, _ in units} | tutored
    students = store.query_students(sorted(classroom_ids))
    students_by_class = {}
    for s in students:
        students_by_class.setdefault(s["classroom_id"], []).append(s["id"])

    all_ids = [s["id"] for s in students]
    tutored_ids = [sid for cid in tutored for sid in students_by_class.get(cid, [])]
    rows = {}
    if ACADEMIC in categories and units:
        rows['grades'] = store.query_grades(period_id, all_ids)
    if BEHAVIOR in categories and tutored_ids:
        rows['behavior'] = store.query_behavior(period_id, tutored_ids)
    if FAMILY in categories and tutored_ids:
        rows['commitment_ids'] = [c["id"] for c in store.query_family_commitments()]
        rows['family'] = store.query_family_evaluations(period_id, tutored_ids)
    if APPRECIATION in categories and tutored_ids:
        rows['appreciations'] = store.query_appreciations(period_id, tutored_ids)

    result = count_slots(units, tutored, students_by_class, rows, categories, appreciation_bar)
    logger.debug("Completion %s period=%s -> %s/%s", scope["kind"], period_id,
                 result["filled"], result["expected"])
    return result


def sort_sections_by_urgency(sections):
    """Most pending (sent, not approved) appreciations first; classroom id breaks ties."""
    return sorted(sections, key=lambda s: (-s.get("pending_appreciations", 0), s.get("id", 0)))
