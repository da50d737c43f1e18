from fastapi import APIRouter

from .auth import router as auth
from .users import router as users
from .quizzes import router as quizzes
from .attempts import router as attempts

api_router = APIRouter()

api_router.include_router(auth)
api_router.include_router(users)
api_router.include_router(quizzes)
api_router.include_router(attempts)
