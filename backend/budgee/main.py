from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from budgee.config import settings
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from budgee.api import admin, plaid, rules, transactions

logger = logging.getLogger(__name__)

# Security: Initialize rate limiter to prevent abuse
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting Budgee API")
    from budgee.database.postgres_db import init_db
    init_db(settings.DATABASE_URL)
    logger.info("Database initialized")

    yield

    logger.info("Shutting down...")
    from budgee.database.postgres_db import close_db
    close_db()


app = FastAPI(
    title="Budgee API",
    description="Bank account sync, transaction classification and rules",
    version="1.0.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

api_router = APIRouter(prefix="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api_router.include_router(plaid.router)
api_router.include_router(rules.router)
api_router.include_router(transactions.router)
api_router.include_router(admin.router)

app.include_router(api_router)

Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    return {
        "message": "Budgee API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "budgee.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
    )
