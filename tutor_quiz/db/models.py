import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from tutor_quiz.db.base import Base

OPTION_LABEL_MAX_LENGTH = 50


def utcnow():
    """Function to return current UTC time with timezone info"""
    return datetime.now(timezone.utc)


class AttemptState(str, enum.Enum):
    """Lifecycle of one student's attempt at one quiz.

    EXPIRED is never persisted: an in-progress attempt whose window has
    elapsed is reported as expired until the next access completes it.
    """

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    EXPIRED = "expired"
    COMPLETED = "completed"


class User(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False)
    email = Column(String(150), unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    grade = Column(String(50), nullable=False)
    is_teacher = Column(Boolean, default=False, nullable=False)
    has_general_quiz_access = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # lifetime totals, only ever incremented by quiz finalization
    total_score = Column(Integer, default=0, nullable=False)
    total_questions = Column(Integer, default=0, nullable=False)
    exams_entered = Column(Integer, default=0, nullable=False)

    attempts = relationship("QuizAttempt", back_populates="user")


class Quiz(Base):
    __tablename__ = "quizzes"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    grade = Column(String(50), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    questions_to_show = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_visible = Column(Boolean, default=True, nullable=False)
    is_prepaid = Column(Boolean, default=False, nullable=False)
    price = Column(Float, default=0, nullable=False)
    show_answers_after_completion = Column(Boolean, default=True, nullable=False)
    created_by = Column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    questions = relationship(
        "QuizQuestion",
        back_populates="quiz",
        order_by="QuizQuestion.position",
        cascade="all, delete-orphan",
    )

    @property
    def pool_size(self) -> int:
        return len(self.questions)


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"
    __table_args__ = (
        UniqueConstraint("quiz_id", "position", name="uq_quiz_question_position"),
        CheckConstraint("correct_option BETWEEN 1 AND 4", name="ck_correct_option_range"),
    )
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id"), nullable=False)
    position = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    image = Column(Text, nullable=True)
    option_1 = Column(Text, nullable=False)
    option_2 = Column(Text, nullable=False)
    option_3 = Column(Text, nullable=False)
    option_4 = Column(Text, nullable=False)
    correct_option = Column(Integer, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")

    @property
    def options(self):
        return [self.option_1, self.option_2, self.option_3, self.option_4]


class QuizPurchase(Base):
    __tablename__ = "quiz_purchases"
    __table_args__ = (UniqueConstraint("user_id", "quiz_id", name="uq_purchase_user_quiz"),)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id"), nullable=False)
    code = Column(String(100), nullable=True)
    purchased_at = Column(DateTime(timezone=True), default=utcnow)


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (UniqueConstraint("user_id", "quiz_id", name="uq_attempt_user_quiz"),)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id"), nullable=False, index=True)
    state = Column(
        Enum(AttemptState, name="attempt_state", values_callable=lambda e: [m.value for m in e]),
        default=AttemptState.NOT_STARTED,
        nullable=False,
    )
    selected_indices = Column(JSON, default=list, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    score = Column(Integer, default=0, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    access_granted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="attempts")
    quiz = relationship("Quiz")
    answers = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        order_by="AttemptAnswer.position",
        cascade="all, delete-orphan",
    )

    # Boolean views kept for clients that still read the old flag trio.
    @property
    def started(self) -> bool:
        return self.state != AttemptState.NOT_STARTED

    @property
    def in_progress(self) -> bool:
        return self.state == AttemptState.IN_PROGRESS

    @property
    def is_entered(self) -> bool:
        return self.state == AttemptState.COMPLETED


class AttemptAnswer(Base):
    __tablename__ = "attempt_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "position", name="uq_answer_attempt_position"),)
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    question_id = Column(Uuid, ForeignKey("quiz_questions.id"), nullable=True)
    selected_option = Column(String(OPTION_LABEL_MAX_LENGTH), nullable=False)
    answered_at = Column(DateTime(timezone=True), default=utcnow)

    attempt = relationship("QuizAttempt", back_populates="answers")
