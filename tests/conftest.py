import itertools
import os
import sys
from datetime import date

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exam_eval.config import Settings
from exam_eval.db import Base, get_db
from exam_eval.exceptions import DependencyError
from exam_eval.main import create_app
from exam_eval.models import Paper, PaperStatus, User, UserRole
from exam_eval.security import create_access_token, hash_password

# Use in-memory SQLite for testing to ensure isolation
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingMailer:
    """Stands in for SMTP; keeps every code it was asked to send."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send_otp_email(self, to_email: str, code: str) -> None:
        if self.fail:
            raise DependencyError("SMTP unavailable", service="mail")
        self.sent.append((to_email, code))

    def last_code(self, email: str) -> str:
        for to_email, code in reversed(self.sent):
            if to_email == email:
                return code
        raise AssertionError(f"no OTP sent to {email}")


@pytest.fixture(scope="function")
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=SQLALCHEMY_DATABASE_URL,
        upload_dir=tmp_path / "uploads",
        jwt_secret="test-secret",
        jwt_issuer="test-issuer",
        grading_workers=0,
        otp_ttl_seconds=None,
        redis_url=None,
        log_level="WARNING",
    )


@pytest.fixture(scope="function")
def session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def mailer():
    return RecordingMailer()


@pytest.fixture(scope="function")
def app(settings, mailer):
    return create_app(settings, engine=engine, mailer=mailer)


@pytest.fixture(scope="function")
def client(app, session):
    """
    Create a TestClient that uses the override_get_db dependency.
    """
    def override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_user(session):
    """Insert a user directly; returns the ORM row."""
    counter = itertools.count(1)

    def _make(role="student", email=None, name=None, roll_no=None, password="password123",
              section=None, is_active=True):
        role = UserRole(role)
        n = next(counter)
        user = User(
            email=email or f"{role.value}{n}@example.com",
            password_hash=hash_password(password),
            role=role,
            name=name or f"{role.value.title()} {n}",
            roll_no=roll_no,
            section=section,
            is_active=is_active,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture(scope="function")
def auth_headers(settings):
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user, settings)}"}

    return _headers


@pytest.fixture(scope="function")
def session_factory(session):
    return TestingSessionLocal


@pytest.fixture(scope="function")
def make_paper(session, tmp_path):
    """Insert a paper row with real (tiny) files behind it."""

    def _make(student, uploader=None, status=PaperStatus.UPLOADED, subject="Mathematics",
              max_marks=100, exam_date=date(2024, 3, 15), final_score=None, title="Midterm"):
        question = tmp_path / f"question_{student.id}_{title}.pdf"
        answer = tmp_path / f"answer_{student.id}_{title}.pdf"
        question.write_bytes(b"%PDF-1.4 q")
        answer.write_bytes(b"%PDF-1.4 a")
        paper = Paper(
            student_id=student.id,
            roll_no=student.roll_no,
            student_name=student.name,
            section=student.section,
            title=title,
            subject=subject,
            exam_date=exam_date,
            max_marks=max_marks,
            rubric_json={},
            question_paper_path=str(question),
            answer_paper_path=str(answer),
            original_file_name="q.pdf|a.pdf",
            status=status,
            submitted_by=(uploader or student).id,
            final_score=final_score,
        )
        session.add(paper)
        session.commit()
        session.refresh(paper)
        return paper

    return _make


@pytest.fixture(scope="function")
def client_factory(settings, mailer, session):
    """Build extra clients with swapped collaborators (extractor, grader)."""
    opened = []

    def _make(**collaborators):
        app = create_app(settings, engine=engine, mailer=mailer, **collaborators)

        def override_get_db():
            yield session

        app.dependency_overrides[get_db] = override_get_db
        c = TestClient(app)
        c.__enter__()
        opened.append(c)
        return c

    yield _make
    for c in opened:
        c.__exit__(None, None, None)
