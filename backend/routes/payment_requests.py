"""
Admin Payment Request Routes
Create, edit, delete and email manual payment requests for a client.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Any, Optional
from middleware import admin_route_guard
from models import Actor
from services.payment_requests import payment_request_service
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/payment-requests", tags=["admin-payment-requests"])


# ============================================
# MODELS
# ============================================

class CreatePaymentRequest(BaseModel):
    user_id: str
    amount: Any
    currency: str = "usd"
    description: Optional[str] = None
    project_id: Optional[str] = None
    generate_checkout: bool = False


class UpdatePaymentRequest(BaseModel):
    amount: Optional[Any] = None
    currency: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    checkout_url: Optional[str] = None
    email_subject: Optional[str] = None
    email_message: Optional[str] = None
    email_sent: Optional[bool] = None
    project_id: Optional[str] = None


class SendPaymentRequestEmail(BaseModel):
    subject: str = ""
    message: str = ""
    include_link: bool = True
    checkout_url: Optional[str] = None


# ============================================
# ENDPOINTS
# ============================================

@router.get("")
async def list_payment_requests(
    user_id: Optional[str] = None,
    current_user: dict = Depends(admin_route_guard),
):
    requests = await payment_request_service.list(user_id=user_id)
    return {"requests": [r.model_dump(mode="json") for r in requests]}


@router.post("")
async def create_payment_request(body: CreatePaymentRequest, current_user: dict = Depends(admin_route_guard)):
    result = await payment_request_service.create(
        user_id=body.user_id,
        amount_cents=body.amount,
        currency=body.currency,
        description=body.description,
        project_id=body.project_id,
        generate_checkout=body.generate_checkout,
        actor=Actor.STAFF,
        actor_id=current_user.get("user_id"),
    )
    return result.model_dump(mode="json")


@router.get("/{request_id}")
async def get_payment_request(request_id: str, current_user: dict = Depends(admin_route_guard)):
    record = await payment_request_service.get(request_id)
    return {"request": record.model_dump(mode="json")}


@router.patch("/{request_id}")
async def update_payment_request(request_id: str, body: UpdatePaymentRequest,
                                 current_user: dict = Depends(admin_route_guard)):
    fields = body.model_dump(exclude_unset=True)
    if "amount" in fields:
        fields["amount_cents"] = fields.pop("amount")
    result = await payment_request_service.update(
        request_id,
        actor=Actor.STAFF,
        actor_id=current_user.get("user_id"),
        **fields,
    )
    return result.model_dump(mode="json")


@router.delete("/{request_id}")
async def delete_payment_request(request_id: str, current_user: dict = Depends(admin_route_guard)):
    result = await payment_request_service.delete(request_id, actor_id=current_user.get("user_id"))
    return result.model_dump(mode="json")


@router.post("/{request_id}/email")
async def email_payment_request(request_id: str, body: SendPaymentRequestEmail,
                                current_user: dict = Depends(admin_route_guard)):
    """Email the client, with the checkout link appended when available."""
    result = await payment_request_service.send_email(
        request_id,
        subject=body.subject,
        message=body.message,
        include_link=body.include_link,
        checkout_url=body.checkout_url,
        actor_id=current_user.get("user_id"),
    )
    return result.model_dump(mode="json")
