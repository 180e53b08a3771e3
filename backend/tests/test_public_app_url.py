"""Tests for get_public_app_url (checkout redirect and sample link base URL)."""
import os
from unittest.mock import patch

from utils.public_app_url import (
    checkout_cancel_url,
    checkout_success_url,
    get_public_app_url,
    sample_checkout_url,
)

URL_VARS = ("FRONTEND_PUBLIC_URL", "PUBLIC_APP_URL", "FRONTEND_URL", "VERCEL_URL")


def _env(**values):
    env = {k: v for k, v in os.environ.items() if k not in URL_VARS}
    env.update(values)
    return patch.dict(os.environ, env, clear=True)


def test_prefers_frontend_public_url():
    with _env(FRONTEND_PUBLIC_URL="https://app.booster.test/", PUBLIC_APP_URL="https://other.example.com"):
        url = get_public_app_url()
    assert url == "https://app.booster.test"


def test_vercel_url_gets_https():
    with _env(VERCEL_URL="booster-preview.vercel.app"):
        assert get_public_app_url() == "https://booster-preview.vercel.app"


def test_plain_http_upgraded_except_localhost():
    with _env(FRONTEND_URL="http://app.booster.test"):
        assert get_public_app_url() == "https://app.booster.test"
    with _env(FRONTEND_URL="http://localhost:5173"):
        assert get_public_app_url() == "http://localhost:5173"


def test_defaults_to_localhost():
    with _env():
        assert get_public_app_url() == "http://localhost:3000"


def test_checkout_links():
    with _env(PUBLIC_APP_URL="https://app.booster.test"):
        assert checkout_success_url() == "https://app.booster.test/dashboard/billing?checkout=success"
        assert checkout_cancel_url() == "https://app.booster.test/dashboard/billing?checkout=cancelled"
        assert sample_checkout_url("req-1") == "https://app.booster.test/checkout/req-1"
