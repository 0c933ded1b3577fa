# -*- coding: utf-8 -*-
"""
ハイライト状態（同時に1件のみ）

- highlight(code) で前のタイマーを取り消し、新しいタイマーを仕掛ける
- タイマー発火時は、仕掛けた時のコードがまだ有効な場合だけクリアする
- clear() は無条件にアイドルへ戻す
"""
from __future__ import annotations

import threading
from typing import Callable, Optional

HIGHLIGHT_DURATION_SEC = 5.0


class HighlightController:
    def __init__(
        self,
        duration: float = HIGHLIGHT_DURATION_SEC,
        timer_factory: Callable[..., "threading.Timer"] = threading.Timer,
        on_change: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self.duration = duration
        self.timer_factory = timer_factory
        self.on_change = on_change
        self.active_code: Optional[str] = None
        self._timer = None
        self.lock = threading.Lock()

    @property
    def state(self) -> str:
        return "idle" if self.active_code is None else "highlighted"

    def highlight(self, code: str) -> None:
        with self.lock:
            self._cancel_timer()
            self.active_code = code
            timer = self.timer_factory(self.duration, self._expire, args=(code,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        self._notify(code)

    def clear(self) -> None:
        with self.lock:
            self._cancel_timer()
            changed = self.active_code is not None
            self.active_code = None
        if changed:
            self._notify(None)

    # タイマーから呼ばれる
    def _expire(self, code: str) -> None:
        with self.lock:
            # 古いタイマーは何もしない
            if self.active_code != code:
                return
            self.active_code = None
            self._timer = None
        self._notify(None)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self, code: Optional[str]) -> None:
        if self.on_change:
            self.on_change(code)
