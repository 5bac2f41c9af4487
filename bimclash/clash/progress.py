#!/usr/bin/env python3
"""
干渉チェック - 進捗通知

走査ループから切り離した進捗コールバックを、一定間隔以上あけて呼び出します。
ワーカーからの通知は外側ループ1行ごとに行い、ペア単位のホットパスには入りません。
"""

import threading
import time
from typing import Callable, Optional

from .. import get_logger
from .types import ProgressInfo

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressInfo], None]


def log_progress(info: ProgressInfo) -> None:
    """既定の進捗コールバック（ログ出力）"""
    logger.info(
        f"Progress {info.ratio * 100.0:.1f}% "
        f"({info.pairs_done}/{info.pairs_total} pairs), "
        f"triangle tests {info.triangle_time_ratio * 100.0:.1f}% of {info.elapsed_s:.1f}s"
    )


class ProgressReporter:
    """間隔制御付きの進捗通知"""

    def __init__(
        self,
        pairs_total: int,
        callback: Optional[ProgressCallback] = None,
        interval_s: float = 5.0
    ):
        self.pairs_total = pairs_total
        self.callback = callback
        self.interval_s = interval_s

        self._lock = threading.Lock()
        self._start_time = time.perf_counter()
        self._last_report = self._start_time
        self._pairs_done = 0
        self._triangle_time_s = 0.0

    def advance(self, pairs: int, triangle_time_s: float = 0.0) -> None:
        """
        完了ペア数を加算し、間隔を過ぎていればコールバックを呼ぶ

        Args:
            pairs: 今回完了したペア数
            triangle_time_s: 今回の三角形判定時間（秒）
        """
        with self._lock:
            self._pairs_done += pairs
            self._triangle_time_s += triangle_time_s
            if self.callback is None:
                return
            now = time.perf_counter()
            if now - self._last_report < self.interval_s:
                return
            self._last_report = now
            info = self._snapshot(now)

        self.callback(info)

    def finish(self) -> Optional[ProgressInfo]:
        """最終進捗を通知"""
        with self._lock:
            info = self._snapshot(time.perf_counter())
        if self.callback is not None:
            self.callback(info)
        return info

    def _snapshot(self, now: float) -> ProgressInfo:
        return ProgressInfo(
            pairs_done=self._pairs_done,
            pairs_total=self.pairs_total,
            elapsed_s=now - self._start_time,
            triangle_time_s=self._triangle_time_s,
        )
