"""
時間來源

帳本只用時間做資料比較（截止時間檢查），所以時間以注入的方式提供，
測試可以用 FrozenClock 直接跳到截止時間之後
"""
import time
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> int:
        """目前的 unix timestamp（秒）"""
        ...


class SystemClock:
    def now(self) -> int:
        return int(time.time())


class FrozenClock:
    """固定時間，只有呼叫 set / advance 才會前進"""

    def __init__(self, start: Optional[int] = None):
        self._now = int(time.time()) if start is None else start

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now
