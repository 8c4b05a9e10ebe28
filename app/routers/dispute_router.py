# app/routers/dispute_router.py

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.services.dispute_service import DisputeService
from app.services.payment_processor import PaymentProcessor, get_payment_processor
from app.schemas.dispute_schema import (
    DisputeCreate, EvidenceCreate, DisputeMessageCreate, DisputeResolve, DisputeOut
)

from app.models.dispute import DisputeStatus
from app.models.user import User
from app.core.security import get_current_user
from app.core.database import get_db

router = APIRouter(
    prefix="/disputes",
    tags=["Disputes"]
)

def get_dispute_service(
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor)
) -> DisputeService:
    return DisputeService(db, processor)

@router.post(
    "/",
    response_model=DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="提出爭議"
)
async def api_open_dispute(
    data: DisputeCreate,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家 / 工作者) 對 pending / in-progress / completed 的訂單提出爭議。
    訂單會轉為 disputed，直到管理員仲裁。
    """
    return await service.open_dispute(data.order_id, current_user, data.type, data.reason)

@router.get(
    "/my",
    response_model=List[DisputeOut],
    summary="獲取我的爭議列表"
)
async def api_get_my_disputes(
    dispute_status: Optional[DisputeStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.get_my_disputes(current_user, dispute_status, limit, offset)

@router.get(
    "/admin/all",
    response_model=List[DisputeOut],
    summary="所有爭議 (管理員)"
)
async def api_list_all_disputes(
    dispute_status: Optional[DisputeStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.list_all_disputes(current_user, dispute_status, limit, offset)

@router.get(
    "/{dispute_id}",
    response_model=DisputeOut,
    summary="檢視爭議詳情"
)
async def api_get_dispute(
    dispute_id: str,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.get_dispute_details(dispute_id, current_user)

@router.post(
    "/{dispute_id}/evidence",
    response_model=DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="新增證據"
)
async def api_add_evidence(
    dispute_id: str,
    data: EvidenceCreate,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.add_evidence(
        dispute_id, data.type, data.description, data.file_url, current_user
    )

@router.post(
    "/{dispute_id}/evidence/upload",
    response_model=DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="上傳證據檔案"
)
async def api_upload_evidence(
    dispute_id: str,
    # 檔案上傳時必須用 Form 接收其他欄位
    description: str = Form(..., min_length=1, max_length=500),
    file: UploadFile = File(...),
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    """
    (爭議雙方) 上傳 PDF / PNG / JPEG，圖片會記錄為 screenshot 類型。
    """
    return await service.upload_evidence_file(dispute_id, file, description, current_user)

@router.post(
    "/{dispute_id}/messages",
    response_model=DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="新增爭議訊息"
)
async def api_add_dispute_message(
    dispute_id: str,
    data: DisputeMessageCreate,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.add_message(dispute_id, current_user, data.message)

@router.patch(
    "/{dispute_id}/review",
    response_model=DisputeOut,
    summary="開始審查 (管理員)"
)
async def api_start_review(
    dispute_id: str,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.start_review(dispute_id, current_user)

@router.put(
    "/{dispute_id}/resolve",
    response_model=DisputeOut,
    summary="仲裁爭議 (管理員)"
)
async def api_resolve_dispute(
    dispute_id: str,
    data: DisputeResolve,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    """
    (管理員) 仲裁結果與對訂單 / 付款的影響：
    - refund_full: 全額退款，訂單取消
    - refund_partial: 部分退款 (需帶 refund_amount)，訂單繼續進行
    - continue_work / revision: 訂單繼續進行 (revision 會計入一次修改)
    - cancelled: 取消訂單，不退款
    """
    return await service.resolve(
        dispute_id, data.resolution, data.admin_notes, current_user, data.refund_amount
    )

@router.put(
    "/{dispute_id}/close",
    response_model=DisputeOut,
    summary="結案 (管理員)"
)
async def api_close_dispute(
    dispute_id: str,
    service: DisputeService = Depends(get_dispute_service),
    current_user: User = Depends(get_current_user)
):
    return await service.close(dispute_id, current_user)
