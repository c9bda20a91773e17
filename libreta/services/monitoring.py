"""
Academic Monitoring
===================
Supervisor/administrator views over the whole school: section cards,
school-wide stats, per-student audit and the appreciation review queue.
Zero writes; all numbers are recounted from the store on every call.
"""
import logging

from libreta.services import completion
from libreta.services.appreciations import appreciation_state, SENT, APPROVED
from libreta.services.permissions import capabilities

logger = logging.getLogger(__name__)

SECTION_FILTERS = ('all', 'pending', 'completed', 'incomplete')
REVIEW_FILTERS = ('all', 'pending', 'approved')


def classroom_label(classroom):
    level = (classroom.get('level') or '')
    return f"{classroom.get('grade', '')} \"{classroom.get('section', '')}\" {level[:1].upper() + level[1:]}".strip()


def _group_students(students):
    grouped = {}
    for s in students:
        grouped.setdefault(s['classroom_id'], []).append(s['id'])
    return grouped


def section_overview(store, period_id):
    """
    One card per active classroom: academic progress and pending appreciations.
    Pending means sent for review and not yet approved.
    """
    classrooms = store.query_classrooms()
    if not classrooms:
        return []
    students_by_class = _group_students(store.query_students([c['id'] for c in classrooms]))
    all_ids = [sid for ids in students_by_class.values() for sid in ids]

    loads_by_class = {}
    for load in store.query_course_assignments():
        loads_by_class.setdefault(load['classroom_id'], []).append(load)

    grade_rows = store.query_grades(period_id, all_ids)
    reviewable = store.query_appreciations(period_id, all_ids, include_drafts=False)

    sections = []
    for room in classrooms:
        ids = students_by_class.get(room['id'], [])
        loads = loads_by_class.get(room['id'], [])
        units = [(room['id'], [c['id'] for c in load['competencies']]) for load in loads]
        progress = completion.count_slots(units, set(), {room['id']: ids}, {"grades": grade_rows},
                                          (completion.ACADEMIC,))
        id_set = set(ids)
        pending = sum(1 for a in reviewable if a['student_id'] in id_set and appreciation_state(a) == SENT)
        sections.append({
            "id": room['id'],
            "name": classroom_label(room),
            "level": room.get('level', ''),
            "student_count": len(ids),
            "total_courses": len(loads),
            "progress": progress["percentage"],
            "pending_appreciations": pending,
        })
    return completion.sort_sections_by_urgency(sections)


def filter_sections(sections, status='all'):
    if status not in SECTION_FILTERS:
        raise ValueError(f"Unknown section filter: {status!r}")
    if status == 'pending':
        return [s for s in sections if s['pending_appreciations'] > 0]
    if status == 'completed':
        return [s for s in sections if s['progress'] == 100]
    if status == 'incomplete':
        return [s for s in sections if s['progress'] < 100]
    return list(sections)


def school_stats(store, period_id):
    """Headline numbers for the supervisor dashboard."""
    classrooms = store.query_classrooms()
    students = store.query_students([c['id'] for c in classrooms])
    ids = [s['id'] for s in students]
    reviewable = store.query_appreciations(period_id, ids, include_drafts=False)
    grades = store.query_grades(period_id, ids)
    global_completion = completion.compute_completion(store, completion.global_scope(), period_id)
    return {
        "total_students": len(students),
        "total_courses": len(store.query_course_assignments()),
        "pending_appreciations": sum(1 for a in reviewable if appreciation_state(a) == SENT),
        "low_grades_count": sum(1 for g in grades if g.get('grade') == 'C'),
        "completion_rate": global_completion["percentage"],
        "completion": global_completion,
    }


def student_audit(store, classroom_id, period_id):
    """Per-student competency grid for one section plus a progress summary."""
    students = store.query_students([classroom_id])
    loads = store.query_course_assignments(classroom_id=classroom_id)
    ids = [s['id'] for s in students]
    grades = {(g['student_id'], g['competency_id']): g for g in store.query_grades(period_id, ids) if g.get('grade')}
    apps = {a['student_id']: a for a in store.query_appreciations(period_id, ids, include_drafts=False)}
    total_competencies = sum(len(load['competencies']) for load in loads)

    audit = []
    for student in students:
        courses = []
        filled = 0
        for load in loads:
            comps = []
            for comp in load['competencies']:
                entry = grades.get((student['id'], comp['id']))
                if entry:
                    filled += 1
                comps.append({
                    "id": comp['id'],
                    "name": comp['name'],
                    "is_filled": entry is not None,
                    "grade": (entry or {}).get('grade', ''),
                    "descriptive_conclusion": (entry or {}).get('descriptive_conclusion') or '',
                })
            courses.append({"course_name": load['course_name'], "teacher_name": load['teacher_name'], "competencies": comps})
        appreciation = apps.get(student['id'])
        audit.append({
            "student": student,
            "progress": completion.completion_percentage(filled, total_competencies),
            "is_approved": appreciation_state(appreciation) == APPROVED,
            "has_appreciation": bool(((appreciation or {}).get('comment') or '').strip()),
            "courses": courses,
        })
    return audit


def review_queue(store, period_id, role, status='pending', search=''):
    """
    Appreciations for review. Drafts are only visible to roles that can see them,
    so supervisors and administrators get sent and approved rows only.
    """
    if status not in REVIEW_FILTERS:
        raise ValueError(f"Unknown review filter: {status!r}")
    include_drafts = capabilities(role, None)['can_view_drafts']
    classrooms = {c['id']: c for c in store.query_classrooms()}
    students = {s['id']: s for s in store.query_students(list(classrooms))}
    rows = store.query_appreciations(period_id, list(students), include_drafts=include_drafts)

    term = (search or '').strip().lower()
    items = []
    for row in rows:
        student = students.get(row['student_id'])
        if student is None:
            continue
        classroom = classrooms.get(student['classroom_id'], {})
        label = f"{classroom.get('grade', '')} {classroom.get('section', '')} {classroom.get('level', '')}".strip()
        state = appreciation_state(row)
        if status == 'pending' and state == APPROVED:
            continue
        if status == 'approved' and state != APPROVED:
            continue
        if term and term not in student['full_name'].lower() and term not in label.lower():
            continue
        items.append({
            "student_id": row['student_id'],
            "student_name": student['full_name'],
            "classroom": label,
            "classroom_id": student['classroom_id'],
            "comment": row.get('comment') or '',
            "is_approved": row.get('is_approved'),
            "state": state,
        })
    return sorted(items, key=lambda i: (i['classroom_id'], i['student_name']))
