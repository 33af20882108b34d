"""FastAPI entrypoint for the course feedback service."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from course_feedback.config import settings
from course_feedback.database import create_db_and_tables, engine
from course_feedback.exceptions import FeedbackError
from course_feedback.logging_config import setup_logging
from course_feedback.routers import api as api_router_module
from course_feedback.routers import feedback as feedback_router_module
from course_feedback.seed import seed_demo_data

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging, create the schema and seed the demo session."""
    setup_logging()
    create_db_and_tables()
    if settings.SEED_DEMO_DATA:
        with Session(engine) as session:
            seed_demo_data(session)
    logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)

    yield


app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)


@app.exception_handler(FeedbackError)
async def feedback_error_handler(request: Request, exc: FeedbackError):
    """Render access and submission errors as JSON for API callers."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


# Signed cookie that holds the participant's anonymous ID
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY, same_site="lax")

# Routers
app.include_router(feedback_router_module.router, tags=["feedback"])
app.include_router(api_router_module.router, prefix="/api", tags=["api"])


@app.get("/")
def home():
    return RedirectResponse(url="/feedback", status_code=303)
