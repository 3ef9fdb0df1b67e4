# clinic_billing/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clinic_billing.api.exception_handlers import register_exception_handlers
from clinic_billing.api.router import api_router
from clinic_billing.core.config import settings
from clinic_billing.db.base import Base
from clinic_billing.db.session import engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.on_event("startup")
    def _create_tables():
        if settings.DB_CREATE_ALL:
            Base.metadata.create_all(bind=engine)
            logger.info("database tables ensured")

    # Health
    @app.get("/")
    def root():
        return {"message": f"{settings.PROJECT_NAME} API running", "version": "v1"}

    return app


app = create_app()
