from fastapi import FastAPI

from app.edutrack.api import api_router
from app.edutrack.core.config import settings
from app.edutrack.core.errors import setup_exception_handlers
from app.edutrack.core.logging import configure_logging
from app.edutrack.middleware.identity import IdentityLogContextMiddleware
from app.edutrack.middleware.observability import ObservabilityMiddleware
from app.edutrack.middleware.trace import TraceIdMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.add_middleware(IdentityLogContextMiddleware)
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
