"""
Public frontend base URL for checkout redirects and sample payment links.
No other code should build frontend links directly.
"""
import os
import logging

logger = logging.getLogger(__name__)


def get_public_app_url() -> str:
    """
    Return normalized public frontend base URL (no trailing slash).
    Fallback order: FRONTEND_PUBLIC_URL, PUBLIC_APP_URL, FRONTEND_URL, VERCEL_URL (as https).
    Falls back to http://localhost:3000 for local development.
    """
    raw = (
        (os.getenv("FRONTEND_PUBLIC_URL") or "").strip()
        or (os.getenv("PUBLIC_APP_URL") or "").strip()
        or (os.getenv("FRONTEND_URL") or "").strip()
    )
    if not raw and os.getenv("VERCEL_URL"):
        raw = f"https://{os.getenv('VERCEL_URL', '').strip()}"
    raw = raw.rstrip("/")
    if not raw:
        return "http://localhost:3000"
    if raw.startswith("http://") and "localhost" not in raw:
        raw = "https://" + raw.split("://", 1)[1]
    return raw


def checkout_success_url() -> str:
    return f"{get_public_app_url()}/dashboard/billing?checkout=success"


def checkout_cancel_url() -> str:
    return f"{get_public_app_url()}/dashboard/billing?checkout=cancelled"


def sample_checkout_url(request_id: str) -> str:
    """Placeholder link used when the payment processor is not configured."""
    return f"{get_public_app_url()}/checkout/{request_id}"
