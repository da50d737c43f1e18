from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from tutor_quiz.core.base_config import BaseConfig, UtcDatetime
from tutor_quiz.db.models import OPTION_LABEL_MAX_LENGTH

# --------------------
# CLIENT ANSWERS
# --------------------


class LegacyAnswer(BaseModel):
    """A bare option label from the old plain-array format; its array index is the position."""

    kind: Literal["legacy"] = "legacy"
    position: int
    option_label: str


class StructuredAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["structured"] = "structured"
    position: int = Field(validation_alias=AliasChoices("position", "questionIndex"))
    option_label: str = Field(validation_alias=AliasChoices("option_label", "selectedAnswer", "answer"))
    question_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("question_id", "questionId"))
    answered_at: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("answered_at", "answeredAt"))


ClientAnswer = Annotated[Union[LegacyAnswer, StructuredAnswer], Field(discriminator="kind")]


class SaveAnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    position: int = Field(ge=0, validation_alias=AliasChoices("position", "questionIndex"))
    option_label: str = Field(
        min_length=1,
        max_length=OPTION_LABEL_MAX_LENGTH,
        validation_alias=AliasChoices("option_label", "answer"),
    )
    question_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("question_id", "questionId"))


class FinalizeRequest(BaseModel):
    answers: List[ClientAnswer] = []

    @field_validator("answers", mode="before")
    @classmethod
    def tag_answers(cls, value):
        # plain strings are legacy entries keyed by their array index
        if value is None:
            return []
        tagged = []
        for index, item in enumerate(value):
            if item is None or item == "":
                continue
            if isinstance(item, str):
                tagged.append({"kind": "legacy", "position": index, "option_label": item})
            elif isinstance(item, dict):
                tagged.append({"kind": "structured", **item})
            else:
                tagged.append(item)
        return tagged


# --------------------
# RESPONSES
# --------------------


class StartAttemptResponse(BaseConfig):
    success: bool = True
    status: Literal["started", "resumed", "expired"]
    message: str
    quiz_id: UUID
    start_time: Optional[UtcDatetime] = None
    end_time: Optional[UtcDatetime] = None
    total_questions: int
    duration_minutes: int
    score: Optional[int] = None


class QuestionView(BaseConfig):
    quiz_id: UUID
    question_id: UUID
    display_number: int
    total_questions: int
    prompt: str
    image: Optional[str] = None
    options: List[str]
    saved_answer: Optional[str] = None
    end_time: Optional[UtcDatetime] = None


class SaveAnswerResponse(BaseModel):
    success: bool = True
    message: str = "Answer saved successfully"
    position: int


class FinalizeResponse(BaseModel):
    success: bool = True
    message: str
    score: int
    total_questions: int
    pool_size: int
    max_score: int
    expired: bool = False


class QuestionReview(BaseModel):
    display_number: int
    pool_index: int
    question_id: Optional[UUID] = None
    prompt: Optional[str] = None
    image: Optional[str] = None
    options: List[str] = []
    selected_option: Optional[str] = None
    selected_index: Optional[int] = None
    correct_option: Optional[int] = None
    outcome: Literal["correct", "incorrect", "unanswered"]


class ReviewResponse(BaseConfig):
    quiz_id: UUID
    quiz_name: str
    score: int
    total_questions: int
    pool_size: int
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    completed_at: Optional[UtcDatetime] = None
    questions: List[QuestionReview]
