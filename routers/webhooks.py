from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from database import get_db
from gateways import PaystackGateway, get_paystack
from limiter import limiter
from routers.payments import receive_paystack_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/paystack")
@limiter.exempt
async def paystack(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaystackGateway = Depends(get_paystack),
):
    return await receive_paystack_webhook(request, db, gateway)
