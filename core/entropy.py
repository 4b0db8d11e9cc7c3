"""
隨機來源：結算時選出中獎位置

RandomnessSource 是注入的能力，選獎邏輯本身是純計算：
    index = source.next() % len(stake_slots)

BlockEntropySource 重現「用區塊資訊當亂數」的行為：
值由目前時間與區塊序號雜湊而來，知道時間的人可以預測結果。
這是已知的弱點，這裡照原樣保留。
"""
import hashlib
import itertools
import secrets
import threading
from typing import Iterable, Optional, Protocol

from core.clock import Clock, SystemClock


class RandomnessSource(Protocol):
    def next(self) -> int:
        ...


class BlockEntropySource:
    """
    模擬區塊層級的亂數（timestamp + block number 的 sha256）

    timestamp 取自注入的 clock，與 LedgerManager 使用同一個時間來源
    """

    def __init__(self, clock: Optional[Clock] = None, start_block: int = 0):
        self.clock = clock or SystemClock()
        self._blocks = itertools.count(start_block)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            block_number = next(self._blocks)
        seed = f"{self.clock.now()}:{block_number}".encode()
        return int.from_bytes(hashlib.sha256(seed).digest(), "big")


class SystemEntropySource:
    def next(self) -> int:
        return secrets.randbits(256)


class FixedEntropySource:
    """
    依序回傳預先給定的值（測試用）

    值用完之後會從頭循環
    """

    def __init__(self, values: Iterable[int]):
        values = list(values)
        if not values:
            raise ValueError("FixedEntropySource needs at least one value")
        self._values = itertools.cycle(values)

    def next(self) -> int:
        return next(self._values)


def build_entropy_source(name: str, clock: Optional[Clock] = None) -> RandomnessSource:
    """依設定名稱建立隨機來源（"block" 或 "system"）"""
    if name == "block":
        return BlockEntropySource(clock)
    if name == "system":
        return SystemEntropySource()
    raise ValueError(f"Unknown entropy source: {name}")


def select_winner_index(entropy: int, slot_count: int) -> int:
    """
    由亂數值計算中獎位置

    參數：
        entropy: 隨機來源提供的整數
        slot_count: 本回合下注數量（必須 > 0）

    返回：
        0 <= index < slot_count
    """
    if slot_count <= 0:
        raise ValueError("Cannot select a winner without stakes")
    return entropy % slot_count
