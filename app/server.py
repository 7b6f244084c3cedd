import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.config import settings
from app.db.database import init_db, close_db
from app.errors import AssessmentError
from app.middleware.auth import AuthMiddleware

logger = logging.getLogger(__name__)

# CORS: CORS_ORIGINS (comma-separated) or local dev defaults
if settings.cors_origins:
    _allowed_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
else:
    _allowed_origins = [
        "http://localhost:8000",
        "http://127.0.0.1:8000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(title="Proctored Language Assessment", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)
app.add_middleware(AuthMiddleware)


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Import and register routes
from app.routes.assessments import router as assessments_router
from app.routes.attempts import router as attempts_router
from app.routes.answers import router as answers_router
from app.routes.evaluation import router as evaluation_router
from app.routes.proctoring import router as proctoring_router

app.include_router(assessments_router)
app.include_router(attempts_router)
app.include_router(answers_router)
app.include_router(evaluation_router)
app.include_router(proctoring_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
