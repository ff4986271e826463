# Run from project root: uvicorn toolquery.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from toolquery.api.routes import router
from toolquery.core.config import LOG_LEVEL
from toolquery.services.datasource import DataSource

logging.basicConfig(level=LOG_LEVEL)
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.datasource = DataSource.from_env()
    try:
        yield
    finally:
        await app.state.datasource.dispose()


app = FastAPI(title="MCP Query Backend", lifespan=lifespan)
app.include_router(router)
