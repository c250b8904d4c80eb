import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from app.core.config import settings
from app.core.database import engine
from app.api.router import api_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# Close the engine once everything is done and close all the connections
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting SQL AI against {engine.dialect.name} database")
    yield
    await engine.dispose()


app = FastAPI(title="SQL AI", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)
