import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tutor_quiz.api.routes import api_router
from tutor_quiz.core.config import settings
from tutor_quiz.core.exceptions import AttemptExpired, QuizEngineError
from tutor_quiz.core.logging_config import configure_logging
from tutor_quiz.db.base import Base
from tutor_quiz.db.session import engine

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create the DB tables (no migrations yet)
Base.metadata.create_all(bind=engine)

app = FastAPI(title="Tutoring Quiz API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuizEngineError)
async def quiz_engine_error_handler(request: Request, exc: QuizEngineError):
    body = {
        "success": False,
        "status": exc.status,
        "detail": exc.detail,
        "redirect": settings.QUIZ_LIST_PATH if exc.redirect else None,
    }
    if isinstance(exc, AttemptExpired):
        body["score"] = exc.score
        body["total_questions"] = exc.total_questions
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(api_router)


@app.get("/")
def root():
    return {"message": "Welcome to the Tutoring Quiz API"}
