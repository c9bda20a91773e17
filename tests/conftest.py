"""
Shared test fixtures for Libreta.
An in-memory FakeStore stands in for the Supabase-backed GradeStore.
Zero network calls; all data from the seeded school below.
"""
import time

import jwt
import pytest

from libreta.store import StoreError, full_name, map_load, map_period
from libreta.services.session import open_session, clear_sessions

JWT_SECRET = "test-secret-for-libreta-jwt-validation-0123456789"

DOCENTE_TUTOR = "docente-1"      # tutor of classroom 10, teaches Matemática there
DOCENTE_PLAIN = "docente-2"      # teaches Comunicación in classroom 20, tutors nothing
SUPERVISOR_ID = "sup-1"
ADMIN_ID = "admin-1"
INACTIVE_ID = "inactive-1"

MATH_COURSE = 500
COMM_COURSE = 501
ARTS_COURSE = 502                # area is inactive, hidden everywhere

OPEN_PERIOD = 1
SECOND_PERIOD = 2
LOCKED_PERIOD = 3
PAST_YEAR_PERIOD = 9

PRIMARY_STUDENTS = ["st-1", "st-2", "st-3", "st-4", "st-5"]
SECONDARY_STUDENTS = ["st-6", "st-7"]
MATH_COMPETENCIES = [1001, 1002, 1003, 1004]


class FakeStore:
    """Same query/upsert surface as GradeStore, backed by dicts."""

    def __init__(self):
        self.fail_writes = False
        self.writes = []
        self.active_period_id = OPEN_PERIOD

        self.years = [
            {"id": 1, "year": 2026, "is_active": True},
            {"id": 0, "year": 2025, "is_active": False},
        ]
        self.periods = {
            OPEN_PERIOD: {"id": OPEN_PERIOD, "name": "I Bimestre", "is_locked": False, "academic_year_id": 1,
                          "start_date": "2026-03-01", "end_date": "2026-05-10"},
            SECOND_PERIOD: {"id": SECOND_PERIOD, "name": "II Bimestre", "is_locked": False, "academic_year_id": 1,
                            "start_date": "2026-05-20", "end_date": "2026-07-20"},
            LOCKED_PERIOD: {"id": LOCKED_PERIOD, "name": "III Bimestre", "is_locked": True, "academic_year_id": 1,
                            "start_date": "2026-08-01", "end_date": "2026-10-05"},
            PAST_YEAR_PERIOD: {"id": PAST_YEAR_PERIOD, "name": "IV Bimestre", "is_locked": True,
                               "academic_year_id": 0, "start_date": "2025-10-15", "end_date": "2025-12-20"},
        }
        self.profiles = {
            DOCENTE_TUTOR: {"id": DOCENTE_TUTOR, "full_name": "Ana Torres", "role": "docente",
                            "tutor_classroom_id": 10, "active": True},
            DOCENTE_PLAIN: {"id": DOCENTE_PLAIN, "full_name": "Luis Vega", "role": "docente",
                            "tutor_classroom_id": None, "active": True},
            SUPERVISOR_ID: {"id": SUPERVISOR_ID, "full_name": "Rosa Paz", "role": "supervisor",
                            "tutor_classroom_id": None, "active": True},
            ADMIN_ID: {"id": ADMIN_ID, "full_name": "Jorge Ruiz", "role": "admin",
                       "tutor_classroom_id": None, "active": True},
            INACTIVE_ID: {"id": INACTIVE_ID, "full_name": "Eva Soto", "role": "docente",
                          "tutor_classroom_id": None, "active": False},
        }
        self.classrooms = [
            {"id": 10, "grade": "1", "section": "A", "level": "primaria", "active": True},
            {"id": 20, "grade": "3", "section": "B", "level": "secundaria", "active": True},
        ]
        self.students = [
            {"id": "st-1", "first_name": "Lucía", "last_name": "Alva", "classroom_id": 10},
            {"id": "st-2", "first_name": "Mateo", "last_name": "Bravo", "classroom_id": 10},
            {"id": "st-3", "first_name": "Sofía", "last_name": "Campos", "classroom_id": 10},
            {"id": "st-4", "first_name": "Diego", "last_name": "Díaz", "classroom_id": 10},
            {"id": "st-5", "first_name": "Valeria", "last_name": "Espinoza", "classroom_id": 10},
            {"id": "st-6", "first_name": "Andrés", "last_name": "Flores", "classroom_id": 20},
            {"id": "st-7", "first_name": "Camila", "last_name": "Gómez", "classroom_id": 20},
        ]
        self.areas = {
            100: {"id": 100, "name": "Matemática", "level": "primaria", "active": True,
                  "competencies": [{"id": cid, "name": f"Competencia {cid}"} for cid in MATH_COMPETENCIES]},
            200: {"id": 200, "name": "Comunicación", "level": "secundaria", "active": True,
                  "competencies": [{"id": 2001, "name": "Lee textos"}, {"id": 2002, "name": "Escribe textos"}]},
            300: {"id": 300, "name": "Arte", "level": "primaria", "active": False,
                  "competencies": [{"id": 3001, "name": "Aprecia manifestaciones"}]},
        }
        self.assignments = [
            {"id": MATH_COURSE, "profile_id": DOCENTE_TUTOR, "classroom_id": 10, "area_id": 100},
            {"id": COMM_COURSE, "profile_id": DOCENTE_PLAIN, "classroom_id": 20, "area_id": 200},
            {"id": ARTS_COURSE, "profile_id": DOCENTE_TUTOR, "classroom_id": 10, "area_id": 300},
        ]
        self.commitments = [
            {"id": 1, "description": "Asiste a reuniones", "active": True},
            {"id": 2, "description": "Revisa la agenda", "active": True},
            {"id": 3, "description": "Compromiso antiguo", "active": False},
        ]

        self.grades = {}          # (student_id, competency_id, period_id) -> row
        self.appreciations = {}   # (student_id, period_id) -> row
        self.behavior = {}        # (student_id, period_id) -> row
        self.family = {}          # (student_id, commitment_id, period_id) -> row

    # ── helpers ──────────────────────────────────────────

    def _check_write(self, table, op, key):
        if self.fail_writes:
            raise StoreError(f"{table}: simulated network failure")
        self.writes.append((table, op, key))

    def _joined(self, assignment):
        classroom = next(c for c in self.classrooms if c["id"] == assignment["classroom_id"])
        return dict(
            assignment,
            classrooms=classroom,
            curricular_areas=self.areas[assignment["area_id"]],
            profiles={"full_name": self.profiles[assignment["profile_id"]]["full_name"]},
        )

    def lock(self, period_id, locked=True):
        self.periods[period_id]["is_locked"] = locked

    # ── periods & people ─────────────────────────────────

    def query_active_year(self):
        return next((y for y in self.years if y["is_active"]), None)

    def query_periods(self, academic_year_id):
        rows = [p for p in self.periods.values() if p["academic_year_id"] == academic_year_id]
        return [map_period(p) for p in sorted(rows, key=lambda p: p["id"])]

    def query_period(self, period_id):
        row = self.periods.get(period_id)
        return map_period(row) if row else None

    def query_active_period(self, today=None):
        return self.query_period(self.active_period_id)

    def query_profile(self, user_id):
        profile = self.profiles.get(user_id)
        return dict(profile) if profile else None

    def query_academic_load(self, profile_id, tutor_classroom_id=None):
        return [map_load(self._joined(a), tutor_classroom_id) for a in self.assignments
                if a["profile_id"] == profile_id and self.areas[a["area_id"]]["active"]]

    def query_course_assignments(self, classroom_id=None):
        return [map_load(self._joined(a)) for a in self.assignments
                if (classroom_id is None or a["classroom_id"] == classroom_id)
                and self.areas[a["area_id"]]["active"]]

    def query_classrooms(self):
        return [{k: c[k] for k in ("id", "grade", "section", "level")} for c in self.classrooms if c["active"]]

    def query_students(self, classroom_ids):
        rows = [s for s in self.students if s["classroom_id"] in set(classroom_ids)]
        return [{"id": s["id"], "full_name": full_name(s["first_name"], s["last_name"]),
                 "classroom_id": s["classroom_id"]}
                for s in sorted(rows, key=lambda s: s["last_name"])]

    def query_tutor_classroom_ids(self):
        return {p["tutor_classroom_id"] for p in self.profiles.values() if p.get("tutor_classroom_id")}

    # ── grades ───────────────────────────────────────────

    def query_grades(self, period_id, student_ids):
        ids = set(student_ids)
        return [dict(g) for (sid, _, pid), g in self.grades.items() if pid == period_id and sid in ids]

    def upsert_grade(self, student_id, competency_id, period_id, grade, conclusion=None):
        self._check_write("student_grades", "upsert", (student_id, competency_id, period_id))
        self.grades[(student_id, competency_id, period_id)] = {
            "student_id": student_id, "competency_id": competency_id, "bimestre_id": period_id,
            "grade": grade, "descriptive_conclusion": conclusion or None,
        }

    def delete_grade(self, student_id, competency_id, period_id):
        self._check_write("student_grades", "delete", (student_id, competency_id, period_id))
        self.grades.pop((student_id, competency_id, period_id), None)

    # ── appreciations ────────────────────────────────────

    def query_appreciations(self, period_id, student_ids=None, include_drafts=True):
        ids = set(student_ids) if student_ids is not None else None
        return [dict(a) for (sid, pid), a in self.appreciations.items()
                if pid == period_id
                and (ids is None or sid in ids)
                and (include_drafts or a.get("is_approved") is not None)]

    def upsert_appreciation(self, student_id, period_id, comment, is_approved, tutor_id=None):
        self._check_write("student_appreciations", "upsert", (student_id, period_id))
        row = dict(self.appreciations.get((student_id, period_id)) or {})
        row.update({"student_id": student_id, "bimestre_id": period_id,
                    "comment": comment, "is_approved": is_approved})
        if tutor_id:
            row["tutor_id"] = tutor_id
        row.setdefault("tutor_id", None)
        self.appreciations[(student_id, period_id)] = row

    # ── behavior & family ────────────────────────────────

    def query_behavior(self, period_id, student_ids):
        ids = set(student_ids)
        return [dict(b) for (sid, pid), b in self.behavior.items() if pid == period_id and sid in ids]

    def upsert_behavior(self, student_id, period_id, behavior_grade, values_grade):
        self._check_write("student_behavior_grades", "upsert", (student_id, period_id))
        self.behavior[(student_id, period_id)] = {
            "student_id": student_id, "bimestre_id": period_id,
            "behavior_grade": behavior_grade or None, "values_grade": values_grade or None,
        }

    def query_family_commitments(self):
        return [{"id": c["id"], "text": c["description"]} for c in self.commitments if c["active"]]

    def query_family_evaluations(self, period_id, student_ids):
        ids = set(student_ids)
        return [dict(f) for (sid, _, pid), f in self.family.items() if pid == period_id and sid in ids]

    def upsert_family_evaluation(self, student_id, commitment_id, period_id, grade):
        self._check_write("family_evaluations", "upsert", (student_id, commitment_id, period_id))
        self.family[(student_id, commitment_id, period_id)] = {
            "student_id": student_id, "commitment_id": commitment_id, "bimestre_id": period_id, "grade": grade,
        }

    def delete_family_evaluation(self, student_id, commitment_id, period_id):
        self._check_write("family_evaluations", "delete", (student_id, commitment_id, period_id))
        self.family.pop((student_id, commitment_id, period_id), None)

    # ── admin ────────────────────────────────────────────

    def query_curricular_areas(self):
        return sorted(({k: a[k] for k in ("id", "name", "level", "active")} for a in self.areas.values()),
                      key=lambda a: a["name"])

    def set_area_active(self, area_id, active):
        self._check_write("curricular_areas", "update", area_id)
        self.areas[area_id]["active"] = active

    # ── seeding ──────────────────────────────────────────

    def seed_grade(self, student_id, competency_id, grade, period_id=OPEN_PERIOD, conclusion=None):
        self.grades[(student_id, competency_id, period_id)] = {
            "student_id": student_id, "competency_id": competency_id, "bimestre_id": period_id,
            "grade": grade, "descriptive_conclusion": conclusion,
        }

    def seed_appreciation(self, student_id, comment, is_approved, period_id=OPEN_PERIOD, tutor_id=DOCENTE_TUTOR):
        self.appreciations[(student_id, period_id)] = {
            "student_id": student_id, "bimestre_id": period_id, "tutor_id": tutor_id,
            "comment": comment, "is_approved": is_approved,
        }

    def seed_behavior(self, student_id, behavior_grade=None, values_grade=None, period_id=OPEN_PERIOD):
        self.behavior[(student_id, period_id)] = {
            "student_id": student_id, "bimestre_id": period_id,
            "behavior_grade": behavior_grade, "values_grade": values_grade,
        }


# ═══════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def _reset_sessions():
    clear_sessions()
    yield
    clear_sessions()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def tutor_session(store):
    """Homeroom teacher with the Matemática course of classroom 10 selected."""
    session = open_session(store, DOCENTE_TUTOR, debounce_seconds=0)
    session.select_course(MATH_COURSE)
    return session


@pytest.fixture
def homeroom_session(store):
    """Same teacher and course in tutor mode: appreciations, behavior and family slots."""
    session = open_session(store, DOCENTE_TUTOR, debounce_seconds=0)
    session.select_course(MATH_COURSE, "tutor")
    return session


@pytest.fixture
def plain_session(store):
    """Subject teacher of classroom 20 who tutors no section."""
    session = open_session(store, DOCENTE_PLAIN, debounce_seconds=0)
    session.select_course(COMM_COURSE)
    return session


@pytest.fixture
def supervisor_session(store):
    session = open_session(store, SUPERVISOR_ID, debounce_seconds=0)
    session.select_course(MATH_COURSE)
    return session


@pytest.fixture
def admin_session(store):
    session = open_session(store, ADMIN_ID, debounce_seconds=0)
    session.select_course(MATH_COURSE)
    return session


def make_token(user_id, secret=JWT_SECRET, expires_in=3600):
    payload = {
        "sub": user_id,
        "email": f"{user_id}@colegio.edu.pe",
        "aud": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def app(store, monkeypatch):
    from libreta.app import create_app
    from libreta.config import config as app_config
    from libreta.store import set_store

    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setattr(app_config, "draft_debounce_seconds", 0)
    flask_app = create_app(store=store)
    flask_app.config["TESTING"] = True
    yield flask_app
    set_store(None)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers():
    def _headers(user_id):
        return {"Authorization": f"Bearer {make_token(user_id)}"}
    return _headers
