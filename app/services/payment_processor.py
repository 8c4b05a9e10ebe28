# app/services/payment_processor.py
# 金流服務的抽象介面與 Stripe 實作
#
# 託管流程只依賴 PaymentProcessor 這三個方法：
#   create_charge / retrieve_charge / create_refund
# 測試時可以換成假的實作 (見 tests/conftest.py)

import asyncio
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

import stripe

from app.core.config import settings
from app.utils.money import to_minor_units

logger = logging.getLogger(__name__)


class ChargeStatus(str, enum.Enum):
    succeeded = "succeeded"
    pending = "pending"     # 買家尚未完成付款 / 金流處理中
    failed = "failed"       # 已取消或失敗，不會再成功


@dataclass
class ChargeResult:
    charge_id: str
    client_handle: str      # 前端完成付款所需的 handle (Stripe: client_secret)


@dataclass
class ChargeInfo:
    charge_id: str
    status: ChargeStatus
    charge_reference: Optional[str] = None


# --- 金流錯誤 (由 EscrowService 轉成對外的 MarketplaceError) ---
class ProcessorError(Exception):
    """無法重試的金流錯誤 (設定錯誤、參數錯誤等)"""


class ProcessorTransientError(ProcessorError):
    """連線逾時、限流等暫時性錯誤，可用同一個 idempotency key 重試"""


class ProcessorDeclinedError(ProcessorError):
    """付款方式被拒"""


class PaymentProcessor:
    """金流介面"""

    async def create_charge(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: str
    ) -> ChargeResult:
        raise NotImplementedError

    async def retrieve_charge(self, charge_id: str) -> ChargeInfo:
        raise NotImplementedError

    async def create_refund(
        self,
        charge_id: str,
        reason: str,
        idempotency_key: str,
        amount: Optional[Decimal] = None
    ) -> str:
        raise NotImplementedError


# Stripe PaymentIntent 狀態 -> ChargeStatus
_STRIPE_STATUS_MAP = {
    "succeeded": ChargeStatus.succeeded,
    "canceled": ChargeStatus.failed,
}


class StripePaymentProcessor(PaymentProcessor):
    """
    以 Stripe PaymentIntent 實作。
    Stripe SDK 是同步的，所有呼叫都放到 thread 中執行，避免卡住 event loop。
    """

    def __init__(self, api_key: str):
        self.api_key = api_key

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.CardError as e:
            raise ProcessorDeclinedError(e.user_message or str(e)) from e
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise ProcessorTransientError(str(e)) from e
        except stripe.APIError as e:
            # Stripe 端 5xx
            raise ProcessorTransientError(str(e)) from e
        except stripe.StripeError as e:
            raise ProcessorError(str(e)) from e

    async def create_charge(self, amount, currency, metadata, idempotency_key) -> ChargeResult:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency,
            metadata=metadata,
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )
        return ChargeResult(charge_id=intent["id"], client_handle=intent["client_secret"])

    async def retrieve_charge(self, charge_id: str) -> ChargeInfo:
        intent = await self._call(stripe.PaymentIntent.retrieve, charge_id)
        latest_charge = intent.get("latest_charge")
        if latest_charge is not None and not isinstance(latest_charge, str):
            latest_charge = latest_charge["id"]
        return ChargeInfo(
            charge_id=intent["id"],
            status=_STRIPE_STATUS_MAP.get(intent["status"], ChargeStatus.pending),
            charge_reference=latest_charge,
        )

    async def create_refund(self, charge_id, reason, idempotency_key, amount=None) -> str:
        params = {
            "payment_intent": charge_id,
            "reason": "requested_by_customer",
            "metadata": {"reason": reason[:500]},
            "idempotency_key": idempotency_key,
        }
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        refund = await self._call(stripe.Refund.create, **params)
        return refund["id"]


def get_payment_processor() -> PaymentProcessor:
    """FastAPI Dependency: 取得金流實作 (測試時以 dependency_overrides 替換)"""
    return StripePaymentProcessor(settings.STRIPE_SECRET_KEY)
