from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.config import settings
from app.db import create_schema
from app.logging_config import configure_logging
from app.routers import accounts, planner

configure_logging(settings)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if settings.auto_create_schema:
        create_schema()
        logger.info('schema.created')
    yield


app = FastAPI(title='Site Ledger', lifespan=lifespan)

app.include_router(accounts.router)
app.include_router(planner.router)


@app.get('/health')
def health() -> dict:
    return {'ok': True}
