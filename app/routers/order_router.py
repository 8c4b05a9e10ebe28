# app/routers/order_router.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from app.services.order_service import OrderService
from app.schemas.order_schema import (
    OrderCreate, OrderStatusUpdate, OrderMessageCreate, OrderRatingCreate,
    DeliverableCreate, OrderOut
)

from app.models.user import User
from app.core.security import get_current_user # 依賴注入：獲取當前使用者
from app.core.database import get_db # 依賴注入：獲取 DB Session

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)

# 輔助函式：在路由中快速實例化 Service
def get_order_service(db: AsyncSession = Depends(get_db)) -> OrderService:
    return OrderService(db)

@router.post(
    "/",
    response_model=OrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="下單"
)
async def api_place_order(
    order_data: OrderCreate,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家) 購買一項服務。
    金額以下單當下的服務價格為準，訂單狀態為 pending，需再建立託管付款。
    """
    order = await service.place_order(order_data, current_user)
    return OrderOut.from_order(order)

@router.get(
    "/my",
    response_model=List[OrderOut],
    summary="獲取我的訂單列表"
)
async def api_get_my_orders(
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    orders = await service.get_my_orders(current_user)
    return [OrderOut.from_order(o) for o in orders]

@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="檢視訂單詳情"
)
async def api_get_order_details(
    order_id: str,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家 / 工作者 / 管理員) 檢視單一訂單，包含訊息、交付物與評價。
    """
    order = await service.get_order_details(order_id, current_user)
    return OrderOut.from_order(order)

@router.patch(
    "/{order_id}/status",
    response_model=OrderOut,
    summary="訂單狀態流轉 (雙方)"
)
async def api_update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家 / 工作者) 雙方可以執行的狀態變更：
    - pending -> cancelled (付款前取消)
    - in-progress -> completed

    其他轉移 (開始進行、爭議、退款取消) 由託管與爭議流程負責。
    """
    order = await service.transition_status(order_id, data.status, current_user)
    return OrderOut.from_order(order)

@router.post(
    "/{order_id}/messages",
    response_model=OrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="新增訂單訊息"
)
async def api_add_order_message(
    order_id: str,
    data: OrderMessageCreate,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    order = await service.record_message(order_id, current_user, data.message)
    return OrderOut.from_order(order)

@router.post(
    "/{order_id}/rating",
    response_model=OrderOut,
    summary="評價訂單 (買家)"
)
async def api_rate_order(
    order_id: str,
    data: OrderRatingCreate,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    """
    (買家) 訂單完成後評價一次 (1-5 分)，會同步更新服務的平均評分。
    """
    order = await service.rate(order_id, current_user, data)
    return OrderOut.from_order(order)

@router.post(
    "/{order_id}/revisions",
    response_model=OrderOut,
    summary="要求修改 (買家)"
)
async def api_request_revision(
    order_id: str,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    order = await service.request_revision(order_id, current_user)
    return OrderOut.from_order(order)

@router.post(
    "/{order_id}/deliverables",
    response_model=OrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="提交交付物 (工作者)"
)
async def api_add_deliverable(
    order_id: str,
    data: DeliverableCreate,
    service: OrderService = Depends(get_order_service),
    current_user: User = Depends(get_current_user)
):
    order = await service.add_deliverable(order_id, current_user, data)
    return OrderOut.from_order(order)
