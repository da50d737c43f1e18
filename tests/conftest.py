import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tutor_quiz.core.security import create_access_token
from tutor_quiz.db.base import Base
from tutor_quiz.db.models import Quiz, QuizQuestion, User
from tutor_quiz.db.session import get_db
from tutor_quiz.main import app

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def make_user(db):
    def _make(grade="G3", is_teacher=False, general_access=False, name=None):
        name = name or "user-%s" % uuid.uuid4().hex[:8]
        user = User(
            id=uuid.uuid4(),
            name=name,
            email="%s@example.com" % name,
            password_hash="not-a-real-hash",
            grade=grade,
            is_teacher=is_teacher,
            has_general_quiz_access=general_access,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def correct_option_for(position):
    return position % 4 + 1


@pytest.fixture
def make_quiz(db):
    def _make(pool_size=10, questions_to_show=None, duration_minutes=30, grade="G3", correct=None, **flags):
        quiz = Quiz(
            id=uuid.uuid4(),
            name="Quiz %s" % uuid.uuid4().hex[:6],
            grade=grade,
            duration_minutes=duration_minutes,
            questions_to_show=questions_to_show or pool_size,
            **flags,
        )
        db.add(quiz)
        db.flush()
        for i in range(pool_size):
            db.add(QuizQuestion(
                id=uuid.uuid4(),
                quiz_id=quiz.id,
                position=i,
                prompt="Question %d" % i,
                option_1="one",
                option_2="two",
                option_3="three",
                option_4="four",
                correct_option=correct if correct is not None else correct_option_for(i),
            ))
        db.commit()
        db.refresh(quiz)
        return quiz

    return _make


@pytest.fixture
def student(make_user):
    return make_user()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": "Bearer %s" % create_access_token({"sub": str(user.id)})}
