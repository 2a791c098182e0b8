"""
Snowflake ID 生成器

所有表的主键都用 64 位 Snowflake ID：订单 ID 同时作为支付网关侧的
externalReference（关联 ID），因此必须在写库之前就能在本进程内生成。

ID 结构：41 位毫秒时间戳 | 10 位节点 ID | 12 位序列号
"""
from __future__ import annotations

import threading
import time

from edustore.core.config import settings

# 2024-01-01T00:00:00Z
_EPOCH_MS = 1704067200000
_MAX_NODE_ID = 0x3FF
_SEQ_MASK = 0xFFF
# 超过这个回拨幅度直接拒绝生成，避免产生重复 ID
_MAX_BACKWARDS_MS = 5000


class Snowflake:
    """线程安全的 Snowflake 生成器，每个服务实例一个节点 ID。"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= _MAX_NODE_ID):
            raise ValueError(f"SNOWFLAKE_NODE_ID must be in [0, {_MAX_NODE_ID}]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return time.time_ns() // 1_000_000

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts

    def next_id(self) -> int:
        """
        生成下一个 ID

        Raises:
            RuntimeError: 时钟回拨超过 5 秒
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARDS_MS:
                    raise RuntimeError(f"Clock moved backwards by {drift}ms, refusing to generate ids")
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    # 同一毫秒内序列号用完，借用下一毫秒
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq


_GENERATOR: Snowflake | None = None
_GENERATOR_LOCK = threading.Lock()


def generate_id() -> int:
    """生成一个全局唯一 ID（进程内单例生成器）。"""
    global _GENERATOR
    if _GENERATOR is None:
        with _GENERATOR_LOCK:
            if _GENERATOR is None:
                _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()
