# app/routers/payment_router.py

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from decimal import Decimal
from typing import List, Optional

from app.services.escrow_service import EscrowService
from app.services.payment_processor import PaymentProcessor, get_payment_processor
from app.schemas.payment_schema import (
    EscrowCreate, EscrowIntentOut, EscrowConfirm, RefundRequest, ChargebackFlag,
    FeeEstimateOut, PaymentOut
)

from app.models.payment import PaymentStatus
from app.models.user import User
from app.core.security import get_current_user
from app.core.database import get_db

router = APIRouter(
    prefix="/payments",
    tags=["Payments"]
)

def get_escrow_service(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor)
) -> EscrowService:
    return EscrowService(db, processor)

@router.post(
    "/escrow",
    response_model=EscrowIntentOut,
    status_code=status.HTTP_201_CREATED,
    summary="建立託管付款 (買家)"
)
async def api_initiate_escrow(
    data: EscrowCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家) 為 pending 的訂單建立付款意圖，回傳前端完成付款所需的 client_handle。

    前端重送同一個請求時請帶相同的 `Idempotency-Key` header，避免重複扣款。
    """
    return await service.initiate_escrow(data.order_id, current_user, request_id=idempotency_key)

@router.get(
    "/estimate",
    response_model=FeeEstimateOut,
    summary="手續費試算"
)
async def api_estimate_fees(
    amount: Decimal = Query(..., gt=0),
    current_user: User = Depends(get_current_user)
):
    split = EscrowService.estimate_fees(amount)
    return FeeEstimateOut(
        amount=split.amount,
        platform_fee=split.platform_fee,
        freelancer_amount=split.freelancer_amount,
        total_charge=split.total_charge
    )

@router.get(
    "/my",
    response_model=List[PaymentOut],
    summary="獲取我的付款紀錄"
)
async def api_get_my_payments(
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    return await service.get_my_payments(current_user, payment_status, limit, offset)

@router.get(
    "/{payment_id}",
    response_model=PaymentOut,
    summary="檢視付款詳情"
)
async def api_get_payment(
    payment_id: str,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    return await service.get_payment_details(payment_id, current_user)

@router.post(
    "/{payment_id}/confirm",
    response_model=PaymentOut,
    summary="確認付款，款項進入託管"
)
async def api_confirm_escrow(
    payment_id: str,
    data: EscrowConfirm,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家 / 管理員) 前端完成付款後呼叫，向金流確認扣款成功。
    成功後訂單會從 pending 進入 in-progress。重複呼叫不會重複轉移。
    """
    return await service.confirm_escrow(payment_id, data.processor_charge_id, current_user)

@router.post(
    "/{payment_id}/release",
    response_model=PaymentOut,
    summary="撥款給工作者"
)
async def api_release_escrow(
    payment_id: str,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家 / 管理員) 驗收後撥款，訂單同時標記為完成。
    """
    return await service.release_escrow(payment_id, current_user)

@router.post(
    "/{payment_id}/refund",
    response_model=PaymentOut,
    summary="退款並取消訂單"
)
async def api_refund(
    payment_id: str,
    data: RefundRequest,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    return await service.refund(payment_id, data.reason, current_user)

@router.post(
    "/{payment_id}/abandon",
    response_model=PaymentOut,
    summary="放棄尚未完成的付款"
)
async def api_abandon_escrow(
    payment_id: str,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    return await service.abandon_escrow(payment_id, current_user)

@router.post(
    "/{payment_id}/chargeback",
    response_model=PaymentOut,
    summary="標記金流拒付 (管理員)"
)
async def api_flag_chargeback(
    payment_id: str,
    data: ChargebackFlag,
    service: EscrowService = Depends(get_escrow_service),
    current_user: User = Depends(get_current_user)
):
    return await service.flag_chargeback(payment_id, data.reason, current_user)
