import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

load_dotenv()

from core.config import settings  # noqa: E402
from core.database import async_session_maker, create_db_and_tables, engine  # noqa: E402
from core.errors import NudgeError, to_http_exception  # noqa: E402
from core.log_config import configure_logging  # noqa: E402
from routes.auth import router as auth_router  # noqa: E402
from routes.files import router as files_router  # noqa: E402
from routes.invitations import router as invitations_router  # noqa: E402
from routes.projects import router as project_router  # noqa: E402
from routes.subscriptions import router as subscriptions_router  # noqa: E402
from routes.tasks import router as tasks_router  # noqa: E402
from services.billing_service import BillingGateway  # noqa: E402
from services.store import SQLStore  # noqa: E402

configure_logging()
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization + shared services)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    app.state.store = SQLStore(async_session_maker)
    app.state.gateway = BillingGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)
    logger.info("✅ Database tables created on startup.")
    yield
    await engine.dispose()
    logger.info("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Nudge Backend", debug=settings.DEBUG and not settings.IS_PRODUCTION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# ⚠️ Error translation
# =========================================
@app.exception_handler(NudgeError)
async def nudge_error_handler(request: Request, exc: NudgeError):
    return await http_exception_handler(request, to_http_exception(exc))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("❌ Database error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "A database error occurred. Please try again later."},
    )


# =========================================
# 📦 Routers
# =========================================
app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
app.include_router(project_router, prefix="/api/projects", tags=["Projects"])
app.include_router(tasks_router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(files_router, prefix="/api/files", tags=["Files"])
app.include_router(invitations_router, prefix="/api", tags=["Invitations"])
app.include_router(subscriptions_router, prefix="/api/subscriptions", tags=["Subscriptions"])


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running"}


@app.get("/")
def read_root():
    return {"message": "Welcome to Nudge Backend!"}
