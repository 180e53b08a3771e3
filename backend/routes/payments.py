"""
Admin Payments Routes
Processor payments (Stripe PaymentIntents) and per-client billing history.
"""
from fastapi import APIRouter, Depends
from middleware import admin_route_guard
from services.billing_reconciliation import get_billing_history, list_processor_payments
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/payments", tags=["admin-payments"])


@router.get("")
async def list_payments(current_user: dict = Depends(admin_route_guard)):
    """Recent processor payments, newest first. Sample data when Stripe is not configured."""
    return await list_processor_payments()


@router.get("/users/{user_id}")
async def get_user_billing(user_id: str, current_user: dict = Depends(admin_route_guard)):
    return await get_billing_history(user_id)
