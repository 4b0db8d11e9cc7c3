"""
單位換算服務：人類可讀金額 <-> base units

帳本內部所有金額都是整數 base units（credit_decimals 位小數），
避免浮點誤差；例如 decimals=6 時 0.8 credit = 800_000
"""
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from config import get_settings


def _decimals(decimals: Optional[int]) -> int:
    return get_settings().credit_decimals if decimals is None else decimals


def to_base_units(amount: Union[Decimal, str, int], decimals: Optional[int] = None) -> int:
    """
    把金額轉成 base units

    範例（decimals=6）：
        to_base_units("0.8") -> 800000
        to_base_units(2) -> 2000000

    異常：
        ValueError: 不是數字、為負，或小數位數超過 decimals
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Not a number: {amount!r}")

    if value < 0:
        raise ValueError(f"Amount must be non-negative, got {amount}")

    scaled = value.scaleb(_decimals(decimals))
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {_decimals(decimals)} decimal places")
    return int(scaled)


def from_base_units(units: int, decimals: Optional[int] = None) -> Decimal:
    """把 base units 轉回金額（to_base_units 的反向）"""
    return Decimal(units).scaleb(-_decimals(decimals))
