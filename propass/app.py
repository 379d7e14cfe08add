import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import cors_origins
from .db import init_db
from .errors import install_exception_handlers
from .middleware import RequestContextMiddleware
from .middleware.rate_limit import RateLimitMiddleware
from .routes_auth import router as auth_router
from .routes_health import router as health_router
from .routes_redeem import router as redeem_router
from .sessions import ensure_sessions


load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("propass")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_sessions(app)
    init_db()
    logger.info("PROPASS started")
    yield


app = FastAPI(title="PROPASS Entitlement API", version="1.0.0", lifespan=lifespan)

origins = cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: the request context decodes the session the limiter keys on.
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestContextMiddleware)

install_exception_handlers(app)

app.include_router(health_router)
app.include_router(redeem_router)
app.include_router(auth_router)

