import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from burnlink.api.routes import router
from burnlink.cleaner import start_cleaner
from burnlink.config import CORS_ORIGINS, ENABLE_CLEANER
from burnlink.core.exceptions import register_exception_handlers
from burnlink.core.metrics import metrics
from burnlink.db import dispose_engine, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=False)
    dispose_engine()


app = FastAPI(title="Burnlink API", version="1.0.0", lifespan=lifespan)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("burnlink")

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Password-Hash", "Authorization"],
    expose_headers=["Content-Disposition", "X-Is-Encrypted", "X-Allow-Downloads", "X-Allow-Copying", "X-Views-Remaining"],
)

init_db()

app.include_router(router)
register_exception_handlers(app)

scheduler = start_cleaner(metrics, logger) if ENABLE_CLEANER else None
