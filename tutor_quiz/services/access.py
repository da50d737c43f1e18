import enum

from sqlalchemy.orm import Session

from tutor_quiz.crud import crud_quiz
from tutor_quiz.db.models import Quiz, User


class AccessGrant(str, enum.Enum):
    FREE = "free"
    GENERAL_ACCESS = "general_access"
    SPECIFIC_PURCHASE = "specific_purchase"
    DENIED = "denied"


def is_free(quiz: Quiz) -> bool:
    return not quiz.is_prepaid or not quiz.price


def can_attempt(db: Session, user: User, quiz: Quiz) -> AccessGrant:
    """Entitlement of one student for one quiz."""
    if user.is_teacher or user.grade != quiz.grade:
        return AccessGrant.DENIED
    if is_free(quiz):
        return AccessGrant.FREE
    if user.has_general_quiz_access:
        return AccessGrant.GENERAL_ACCESS
    if crud_quiz.has_purchase(db, user.id, quiz.id):
        return AccessGrant.SPECIFIC_PURCHASE
    return AccessGrant.DENIED
