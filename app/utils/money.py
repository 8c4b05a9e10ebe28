# app/utils/money.py
# 金額計算 (一律使用 Decimal，避免 float 造成手續費拆分的誤差)
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from app.core.config import settings

CENT = Decimal("0.01")

def to_money(value) -> Decimal:
    """轉成 Decimal 並四捨五入到分 (float 先轉 str，避免二進位誤差被帶進來)"""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def to_minor_units(amount: Decimal) -> int:
    """Decimal 金額 -> 金流需要的最小單位 (cents)"""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class FeeSplit:
    amount: Decimal             # 訂單金額 (服務價格)
    platform_fee: Decimal       # 平台手續費
    freelancer_amount: Decimal  # 工作者實收
    total_charge: Decimal       # 買家實付 = amount + platform_fee


def calculate_fee_split(amount, fee_rate: Optional[Decimal] = None) -> FeeSplit:
    """
    計算手續費拆分。託管建立與前端試算都走這個函式。
    freelancer_amount 由 amount - platform_fee 推得，所以兩者相加必等於 amount。
    """
    rate = settings.PLATFORM_FEE_RATE if fee_rate is None else Decimal(fee_rate)
    base = to_money(amount)
    platform_fee = to_money(base * rate)
    return FeeSplit(
        amount=base,
        platform_fee=platform_fee,
        freelancer_amount=base - platform_fee,
        total_charge=base + platform_fee,
    )
