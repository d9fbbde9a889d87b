# backend/autoscuola/main.py
import logging

from fastapi import APIRouter, FastAPI

from . import __version__
from .core.config import settings
from .core.constants import BRAND_NAME
from .errors import register_error_handlers
from .routes import prometheus
from .routes.v1 import appointments as appointments_v1, payments as payments_v1

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{BRAND_NAME} Engine",
        description="Appointment resourcing and payment settlement for driving schools",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1/autoscuola")
    api_v1.include_router(appointments_v1.router)
    api_v1.include_router(payments_v1.router)
    app.include_router(api_v1)
    app.include_router(prometheus.router)

    logger.info(f"{BRAND_NAME} API ready ({settings.environment})")
    return app


app = create_app()
