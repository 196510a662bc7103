from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from app.deps import AuthUser, get_current_user
from app.services import payments as payments_service

router = APIRouter()


class CreateOrderRequest(BaseModel):
    package_id: str


@router.get("/packages")
async def packages_list():
    """Credit packages on sale."""
    return {"packages": payments_service.list_packages()}


@router.post("/orders")
async def create_order(
    body: CreateOrderRequest,
    user: AuthUser = Depends(get_current_user),
):
    """Create Razorpay order for a credit package; frontend uses order_id for checkout."""
    return await payments_service.create_order(user.id, body.package_id)


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str | None = Header(None, alias="X-Razorpay-Signature"),
    x_razorpay_event_id: str | None = Header(None, alias="X-Razorpay-Event-Id"),
):
    """Razorpay webhook: payment.captured / order.paid -> grant credits (idempotent)."""
    body = await request.body()
    return await payments_service.handle_webhook(body, x_razorpay_signature, x_razorpay_event_id)
