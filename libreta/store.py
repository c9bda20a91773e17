"""
Grade Store
===========
Thin data-access layer over the hosted Supabase tables.

Reads never raise: a failed query is logged and an empty fallback is
returned so dashboards render zero/blank instead of crashing.
Writes raise StoreError and the caller decides how visible the failure is.
"""
import os
import logging
from datetime import date

from supabase import create_client, Client

logger = logging.getLogger(__name__)

# Unique keys used by upserts
GRADE_CONFLICT = 'student_id,competency_id,bimestre_id'
APPRECIATION_CONFLICT = 'student_id,bimestre_id'
BEHAVIOR_CONFLICT = 'student_id,bimestre_id'
FAMILY_CONFLICT = 'student_id,commitment_id,bimestre_id'

_supabase = None
_store = None


class StoreError(Exception):
    """A remote write was rejected or could not be delivered."""


def get_supabase() -> Client:
    """Get or create the Supabase client (service key, full access)."""
    global _supabase
    if _supabase is None:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY")
        if not url or not key:
            raise RuntimeError("Supabase credentials not configured. Check SUPABASE_URL and SUPABASE_SERVICE_KEY in .env")
        _supabase = create_client(url, key)
    return _supabase


def get_store():
    """Return the process-wide store, building the Supabase-backed one lazily."""
    global _store
    if _store is None:
        _store = GradeStore(get_supabase())
    return _store


def set_store(store):
    """Install a store (used by the app factory and by tests)."""
    global _store
    _store = store


def full_name(first_name, last_name):
    return f"{last_name or ''}, {first_name or ''}".strip(', ')


def map_period(row):
    return {
        "id": row.get('id'),
        "label": row.get('name', ''),
        "is_locked": bool(row.get('is_locked')),
        "start_date": row.get('start_date'),
        "end_date": row.get('end_date'),
        "academic_year_id": row.get('academic_year_id'),
    }


def map_load(item, tutor_classroom_id=None):
    """Map a course_assignments row (with joins) to an academic load dict."""
    classroom = item.get('classrooms') or {}
    area = item.get('curricular_areas') or {}
    profile = item.get('profiles') or {}
    competencies = sorted(area.get('competencies') or [], key=lambda c: c.get('id') or 0)
    return {
        "id": item.get('id'),
        "course_name": area.get('name') or 'Curso Desconocido',
        "grade_section": f"{classroom.get('grade', '')} {classroom.get('section', '')}".strip() or 'Sección Desconocida',
        "is_tutor": tutor_classroom_id is not None and tutor_classroom_id == item.get('classroom_id'),
        "competencies": [{"id": c.get('id'), "name": c.get('name', '')} for c in competencies],
        "teacher_name": profile.get('full_name') or '',
        "classroom_id": item.get('classroom_id') or 0,
        "area_id": item.get('area_id') or 0,
        "level": classroom.get('level') or area.get('level') or '',
    }


LOAD_SELECT = (
    'id, profile_id, classroom_id, area_id, '
    'classrooms (id, grade, section, level), '
    'curricular_areas (id, name, level, active, competencies (id, name)), '
    'profiles (full_name)'
)


class GradeStore:
    """Query/upsert surface over the school tables."""

    def __init__(self, client):
        self.client = client

    # ═══════════════════════════════════════════════════════
    # PERIODS & PEOPLE
    # ═══════════════════════════════════════════════════════

    def query_active_year(self):
        try:
            result = self.client.table('academic_years').select('id, year').eq('is_active', True).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error("Error fetching active academic year: %s", e)
            return None

    def query_periods(self, academic_year_id):
        try:
            result = (self.client.table('bimestres').select('*')
                      .eq('academic_year_id', academic_year_id)
                      .order('id').execute())
            return [map_period(r) for r in result.data or []]
        except Exception as e:
            logger.error("Error fetching bimestres: %s", e)
            return []

    def query_period(self, period_id):
        try:
            result = self.client.table('bimestres').select('*').eq('id', period_id).limit(1).execute()
            return map_period(result.data[0]) if result.data else None
        except Exception as e:
            logger.error("Error fetching bimestre %s: %s", period_id, e)
            return None

    def query_active_period(self, today=None):
        """Period of the active year covering today, else the first one."""
        year = self.query_active_year()
        if not year:
            logger.warning("No active academic year found.")
            return None
        periods = self.query_periods(year['id'])
        if not periods:
            return None
        today = (today or date.today()).isoformat()
        for period in periods:
            if period.get('start_date') and period.get('end_date'):
                if period['start_date'] <= today <= period['end_date']:
                    return period
        return periods[0]

    def query_profile(self, user_id):
        try:
            result = self.client.table('profiles').select('*').eq('id', user_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error("Error fetching profile %s: %s", user_id, e)
            return None

    def query_academic_load(self, profile_id, tutor_classroom_id=None):
        try:
            result = self.client.table('course_assignments').select(LOAD_SELECT).eq('profile_id', profile_id).execute()
        except Exception as e:
            logger.error("Error fetching courses for %s: %s", profile_id, e)
            return []
        return [map_load(item, tutor_classroom_id) for item in result.data or []
                if (item.get('curricular_areas') or {}).get('active', True) is not False]

    def query_course_assignments(self, classroom_id=None):
        try:
            query = self.client.table('course_assignments').select(LOAD_SELECT)
            if classroom_id is not None:
                query = query.eq('classroom_id', classroom_id)
            result = query.execute()
        except Exception as e:
            logger.error("Error fetching course assignments: %s", e)
            return []
        return [map_load(item) for item in result.data or []
                if (item.get('curricular_areas') or {}).get('active', True) is not False]

    def query_classrooms(self):
        try:
            result = (self.client.table('classrooms').select('id, grade, section, level')
                      .eq('active', True).order('id').execute())
            return result.data or []
        except Exception as e:
            logger.error("Error fetching classrooms: %s", e)
            return []

    def query_students(self, classroom_ids):
        if not classroom_ids:
            return []
        try:
            result = (self.client.table('students').select('id, first_name, last_name, classroom_id')
                      .in_('classroom_id', list(classroom_ids))
                      .order('last_name').execute())
        except Exception as e:
            logger.error("Error fetching students: %s", e)
            return []
        return [{
            "id": s.get('id'),
            "full_name": full_name(s.get('first_name'), s.get('last_name')),
            "classroom_id": s.get('classroom_id') or 0,
        } for s in result.data or []]

    def query_tutor_classroom_ids(self):
        try:
            result = (self.client.table('profiles').select('tutor_classroom_id')
                      .not_.is_('tutor_classroom_id', 'null').execute())
            return {r['tutor_classroom_id'] for r in result.data or [] if r.get('tutor_classroom_id')}
        except Exception as e:
            logger.error("Error fetching tutor classrooms: %s", e)
            return set()

    # ═══════════════════════════════════════════════════════
    # COMPETENCY GRADES
    # ═══════════════════════════════════════════════════════

    def query_grades(self, period_id, student_ids):
        if not student_ids:
            return []
        try:
            result = (self.client.table('student_grades')
                      .select('student_id, competency_id, bimestre_id, grade, descriptive_conclusion')
                      .eq('bimestre_id', period_id)
                      .in_('student_id', list(student_ids)).execute())
            return result.data or []
        except Exception as e:
            logger.error("Error fetching grades: %s", e)
            return []

    def upsert_grade(self, student_id, competency_id, period_id, grade, conclusion=None):
        row = {
            "student_id": student_id,
            "competency_id": competency_id,
            "bimestre_id": period_id,
            "grade": grade,
            "descriptive_conclusion": conclusion or None,
        }
        self._write('student_grades', lambda t: t.upsert(row, on_conflict=GRADE_CONFLICT))

    def delete_grade(self, student_id, competency_id, period_id):
        self._write('student_grades', lambda t: (t.delete()
                                                 .eq('student_id', student_id)
                                                 .eq('competency_id', competency_id)
                                                 .eq('bimestre_id', period_id)))

    # ═══════════════════════════════════════════════════════
    # APPRECIATIONS
    # ═══════════════════════════════════════════════════════

    def query_appreciations(self, period_id, student_ids=None, include_drafts=True):
        """Appreciation rows for a period. Without drafts, is_approved NULL rows are skipped."""
        try:
            query = (self.client.table('student_appreciations')
                     .select('student_id, bimestre_id, tutor_id, comment, is_approved')
                     .eq('bimestre_id', period_id))
            if student_ids is not None:
                if not student_ids:
                    return []
                query = query.in_('student_id', list(student_ids))
            if not include_drafts:
                query = query.not_.is_('is_approved', 'null')
            return query.execute().data or []
        except Exception as e:
            logger.error("Error fetching appreciations: %s", e)
            return []

    def upsert_appreciation(self, student_id, period_id, comment, is_approved, tutor_id=None):
        row = {
            "student_id": student_id,
            "bimestre_id": period_id,
            "comment": comment,
            "is_approved": is_approved,
        }
        if tutor_id:
            row["tutor_id"] = tutor_id
        self._write('student_appreciations', lambda t: t.upsert(row, on_conflict=APPRECIATION_CONFLICT))

    # ═══════════════════════════════════════════════════════
    # BEHAVIOR & FAMILY
    # ═══════════════════════════════════════════════════════

    def query_behavior(self, period_id, student_ids):
        if not student_ids:
            return []
        try:
            result = (self.client.table('student_behavior_grades')
                      .select('student_id, bimestre_id, behavior_grade, values_grade')
                      .eq('bimestre_id', period_id)
                      .in_('student_id', list(student_ids)).execute())
            return result.data or []
        except Exception as e:
            logger.error("Error fetching behavior grades: %s", e)
            return []

    def upsert_behavior(self, student_id, period_id, behavior_grade, values_grade):
        row = {
            "student_id": student_id,
            "bimestre_id": period_id,
            "behavior_grade": behavior_grade or None,
            "values_grade": values_grade or None,
        }
        self._write('student_behavior_grades', lambda t: t.upsert(row, on_conflict=BEHAVIOR_CONFLICT))

    def query_family_commitments(self):
        try:
            result = (self.client.table('family_commitments').select('id, description')
                      .eq('active', True).order('id').execute())
            return [{"id": r.get('id'), "text": r.get('description', '')} for r in result.data or []]
        except Exception as e:
            logger.error("Error fetching family commitments: %s", e)
            return []

    def query_family_evaluations(self, period_id, student_ids):
        if not student_ids:
            return []
        try:
            result = (self.client.table('family_evaluations')
                      .select('student_id, commitment_id, bimestre_id, grade')
                      .eq('bimestre_id', period_id)
                      .in_('student_id', list(student_ids)).execute())
            return result.data or []
        except Exception as e:
            logger.error("Error fetching family evaluations: %s", e)
            return []

    def upsert_family_evaluation(self, student_id, commitment_id, period_id, grade):
        row = {
            "student_id": student_id,
            "commitment_id": commitment_id,
            "bimestre_id": period_id,
            "grade": grade,
        }
        self._write('family_evaluations', lambda t: t.upsert(row, on_conflict=FAMILY_CONFLICT))

    def delete_family_evaluation(self, student_id, commitment_id, period_id):
        self._write('family_evaluations', lambda t: (t.delete()
                                                     .eq('student_id', student_id)
                                                     .eq('commitment_id', commitment_id)
                                                     .eq('bimestre_id', period_id)))

    # ═══════════════════════════════════════════════════════
    # ADMIN CONFIGURATION
    # ═══════════════════════════════════════════════════════

    def query_curricular_areas(self):
        try:
            result = self.client.table('curricular_areas').select('id, name, level, active').order('name').execute()
            return result.data or []
        except Exception as e:
            logger.error("Error fetching areas: %s", e)
            return []

    def set_area_active(self, area_id, active):
        self._write('curricular_areas', lambda t: t.update({"active": active}).eq('id', area_id))

    def _write(self, table, build):
        try:
            build(self.client.table(table)).execute()
        except Exception as e:
            raise StoreError(f"{table}: {e}") from e
