# app/core/exceptions.py
# 訂單 / 託管 / 爭議 的錯誤分類
#
# 全部繼承 HTTPException：Service 層直接 raise，
# FastAPI 會自動捕捉並回傳 (與既有 Service 的寫法一致)。
# 每個錯誤都帶一個穩定的 code，前端以 code 判斷，不要解析 detail 文字。
from typing import Any, Optional

from fastapi import HTTPException, status


class MarketplaceError(HTTPException):
    """所有業務錯誤的基底類別"""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "MarketplaceError"
    message: str = "操作失敗"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": self.message, **extra},
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# --- (a) 驗證錯誤：在任何狀態變更前拒絕 ---
class ValidationFailed(MarketplaceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "ValidationFailed"


class SelfOrderNotAllowed(ValidationFailed):
    code = "SelfOrderNotAllowed"
    message = "不能購買自己的服務"


class InvalidDeliveryDate(ValidationFailed):
    code = "InvalidDeliveryDate"
    message = "交付日期必須晚於現在"


class InvalidResolution(ValidationFailed):
    code = "InvalidResolution"
    message = "無效的爭議處理結果"


class InvalidPartialAmount(ValidationFailed):
    code = "InvalidPartialAmount"
    message = "部分退款金額必須大於 0 且不超過訂單金額"


# --- (b) 權限錯誤：訊息保持籠統，不透露資源是否存在 ---
class AuthorizationFailed(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "AuthorizationFailed"
    message = "無權執行此操作"


class NotAuthorized(AuthorizationFailed):
    code = "NotAuthorized"


class NotOrderOwner(AuthorizationFailed):
    code = "NotOrderOwner"


class NotOrderParty(AuthorizationFailed):
    code = "NotOrderParty"


class NotDisputeParty(AuthorizationFailed):
    code = "NotDisputeParty"


class NotAdmin(AuthorizationFailed):
    code = "NotAdmin"
    message = "僅限系統管理員操作"


# --- 找不到資源 ---
class ResourceNotFound(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "ResourceNotFound"


class OrderNotFound(ResourceNotFound):
    code = "OrderNotFound"
    message = "訂單不存在"


class PaymentNotFound(ResourceNotFound):
    code = "PaymentNotFound"
    message = "付款紀錄不存在"


class DisputeNotFound(ResourceNotFound):
    code = "DisputeNotFound"
    message = "爭議不存在"


class GigUnavailable(ResourceNotFound):
    code = "GigUnavailable"
    message = "服務不存在或已下架"


# --- (c) 狀態衝突：回報目前狀態與要求的狀態 ---
class StateConflict(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = "StateConflict"


class InvalidTransition(StateConflict):
    code = "InvalidTransition"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"不合法的狀態轉移: {current} -> {requested}",
            current_status=current,
            requested_status=requested,
        )


class AlreadyPaid(StateConflict):
    code = "AlreadyPaid"
    message = "此訂單已付款或付款進行中"


class OrderNotPayable(StateConflict):
    code = "OrderNotPayable"
    message = "此訂單目前無法付款"


class NotInEscrow(StateConflict):
    code = "NotInEscrow"
    message = "款項不在託管中"


class NotRefundable(StateConflict):
    code = "NotRefundable"
    message = "此筆款項無法退款"


class NotCompleted(StateConflict):
    code = "NotCompleted"
    message = "只能評價已完成的訂單"


class AlreadyRated(StateConflict):
    code = "AlreadyRated"
    message = "此訂單已評價"


class RevisionLimitReached(StateConflict):
    code = "RevisionLimitReached"
    message = "修改次數已達上限"


class OrderNotInProgress(StateConflict):
    code = "OrderNotInProgress"
    message = "訂單不在進行中"


class PaymentNotPending(StateConflict):
    code = "PaymentNotPending"
    message = "只有尚未完成付款的款項可以放棄"


class DuplicateDispute(StateConflict):
    code = "DuplicateDispute"
    message = "此訂單已有進行中的爭議"


class OrderNotDisputable(StateConflict):
    code = "OrderNotDisputable"
    message = "此訂單狀態無法提出爭議"


class AlreadyTerminal(StateConflict):
    code = "AlreadyTerminal"
    message = "爭議已結案"


class ConcurrentModification(StateConflict):
    code = "ConcurrentModification"
    message = "資料已被其他操作更新，請重新整理後再試"


# --- (d) 外部相依錯誤 ---
class PaymentNotSucceeded(MarketplaceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PaymentNotSucceeded"
    message = "付款尚未完成"


class PaymentDeclined(MarketplaceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "PaymentDeclined"
    message = "付款被拒絕"


class PaymentProcessorUnavailable(MarketplaceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PaymentProcessorUnavailable"
    message = "金流服務暫時無法使用，請稍後再試"
