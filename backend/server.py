from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import onboarding, admin_onboarding, payment_requests, payments, webhooks, automation
from services.errors import OnboardingBillingError
from services.stripe_service import _get_api_key, is_stripe_configured

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Business Booster Onboarding API")
    if os.environ.get("PYTEST_RUNNING"):
        yield
        return

    await database.connect()

    stripe_key = _get_api_key()
    if not stripe_key:
        logger.warning("STRIPE_SECRET_KEY is not set. Checkout links will be samples and payments listings demo data.")
    else:
        stripe_mode = "test" if stripe_key.startswith("sk_test_") else "live"
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", stripe_mode)
    if not (os.environ.get("STRIPE_WEBHOOK_SECRET") or "").strip():
        logger.warning("STRIPE_WEBHOOK_SECRET is not set. Webhook signatures will not be verified.")
    if not (os.environ.get("POSTMARK_SERVER_TOKEN") or "").strip():
        logger.warning("POSTMARK_SERVER_TOKEN is not set. Emails will be logged, not sent.")

    yield

    # Shutdown
    logger.info("Shutting down Business Booster Onboarding API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Business Booster Onboarding API",
    description="Client onboarding, launch workflow and billing",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(onboarding.router)
app.include_router(admin_onboarding.router)
app.include_router(payment_requests.router)
app.include_router(payments.router)
app.include_router(webhooks.router)
app.include_router(automation.router)  # Outbox for the automation service

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Business Booster Onboarding",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "stripe_configured": is_stripe_configured(),
    }

# Domain errors carry a user-facing message
@app.exception_handler(OnboardingBillingError)
async def onboarding_billing_exception_handler(request: Request, exc: OnboardingBillingError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "message": exc.message},
    )

def _jsonable_errors(errors):
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": _jsonable_errors(errors), "request_id": request_id},
    )

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
