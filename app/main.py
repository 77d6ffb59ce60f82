import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import auth, avatar, billing, billing_webhook, health, usage
from app.core.config import LOG_LEVEL
from app.core.logging_config import setup_logging
from app.services.avatar_service import AvatarStorage
from app.services.stripe_service import StripeGateway

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)


# ============================================
# FASTAPI APP INIT
# ============================================

app = FastAPI(title="Saffron API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
)

# External clients are built once and shared by every request
app.state.stripe_gateway = StripeGateway.from_config()
app.state.avatar_storage = AvatarStorage.from_config()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# ============================================
# REGISTER ALL ROUTERS
# ============================================

app.include_router(auth.router)
app.include_router(billing.router)
app.include_router(billing_webhook.router)
app.include_router(usage.router)
app.include_router(avatar.router)
app.include_router(health.router)


if os.getenv("RUN_MIGRATIONS") == "1":
    from app.db.migrate import run_migrations
    run_migrations()
else:
    logger.info("RUN_MIGRATIONS not set - skipping migrations")


@app.get("/")
def root():
    return {"status": "Saffron API running"}
