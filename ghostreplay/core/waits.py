"""
待機戦略 — 条件待機プリミティブ・キャンセルトークン・ステップ前待機

再生中の待機は全て wait_until() を通して行い、一時停止とキャンセルを
同じ地点（ポーリングの合間）で観測する。

主な機能:
  - CancellationToken: 一時停止・キャンセルの協調シグナル
  - Deadline: 一時停止時間を除外した期限
  - wait_until: 述語が真になるまでのポーリング待機
  - WaitStrategy: ステップの待機ヒントに応じた実行前待機
  - StabilityMonitor: ページ安定性を判定する外部コラボレータの Protocol
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import time
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from ..dsl.schema import WaitKind
from .errors import ManualCancellationError

if TYPE_CHECKING:
    from ..dsl.schema import Step

logger = logging.getLogger(__name__)

# ポーリング間隔のデフォルト（ミリ秒）
DEFAULT_POLL_INTERVAL_MS = 100


# ---------------------------------------------------------------------------
# キャンセルトークン
# ---------------------------------------------------------------------------

class CancellationToken:
    """一時停止とキャンセルを伝える協調シグナル。

    制御側は pause() / resume() / cancel() を呼ぶだけで、実行側は
    checkpoint() を呼んだ地点でのみそれを観測する。実行中の操作を
    途中で中断することはない。
    """

    def __init__(self, poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS) -> None:
        self._cancelled = False
        self._paused = False
        self._paused_seconds = 0.0
        self._poll_interval = poll_interval_ms / 1000.0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def paused_seconds(self) -> float:
        """checkpoint() で一時停止していた累計秒数。"""
        return self._paused_seconds

    def cancel(self) -> None:
        self._cancelled = True

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def raise_if_cancelled(self) -> None:
        """キャンセル済みなら ManualCancellationError を送出する。"""
        if self._cancelled:
            raise ManualCancellationError()

    async def checkpoint(self) -> None:
        """中断地点。一時停止中は再開まで待ち、キャンセル済みなら例外を送出する。

        Raises:
            ManualCancellationError: キャンセル済みの場合
        """
        self.raise_if_cancelled()
        if not self._paused:
            return

        started = time.perf_counter()
        try:
            while self._paused and not self._cancelled:
                await asyncio.sleep(self._poll_interval)
        finally:
            self._paused_seconds += time.perf_counter() - started
        self.raise_if_cancelled()

    async def sleep(self, duration_ms: float) -> None:
        """一時停止・キャンセルを観測しながら待機する。"""
        await wait_until(
            lambda: False, duration_ms, self._poll_interval * 1000, token=self,
        )


# ---------------------------------------------------------------------------
# 期限
# ---------------------------------------------------------------------------

class Deadline:
    """一時停止時間を除外して経過時間を計測する期限。"""

    def __init__(
        self, timeout_ms: Optional[float], token: Optional[CancellationToken] = None
    ) -> None:
        """
        Args:
            timeout_ms: 期限（ミリ秒）。None の場合は無期限
            token: 一時停止時間の計測に使うトークン
        """
        self._timeout_ms = timeout_ms
        self._token = token
        self._started = time.perf_counter()
        self._paused_at_start = token.paused_seconds if token is not None else 0.0

    def elapsed_ms(self) -> float:
        """一時停止時間を除いた経過時間（ミリ秒）を返す。"""
        paused = 0.0
        if self._token is not None:
            paused = self._token.paused_seconds - self._paused_at_start
        return (time.perf_counter() - self._started - paused) * 1000

    def remaining_ms(self) -> float:
        """残り時間（ミリ秒）を返す。無期限の場合は inf。"""
        if self._timeout_ms is None:
            return math.inf
        return max(0.0, self._timeout_ms - self.elapsed_ms())

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0


# ---------------------------------------------------------------------------
# 条件待機プリミティブ
# ---------------------------------------------------------------------------

async def wait_until(
    predicate: Callable[[], Any],
    timeout_ms: Optional[float],
    interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
    token: Optional[CancellationToken] = None,
) -> Any:
    """述語が真になるまで一定間隔でポーリングする。

    述語は同期関数・コルーチン関数のどちらでもよい。最初の評価は即座に行い、
    期限切れ後は評価しない。各評価の前に token.checkpoint() を呼ぶ。

    Args:
        predicate: 評価する述語。真値を返した時点で待機を終える
        timeout_ms: タイムアウト（ミリ秒）。None の場合は無期限。0 の場合は1回だけ評価
        interval_ms: ポーリング間隔（ミリ秒）
        token: 一時停止・キャンセルの観測に使うトークン

    Returns:
        述語が最後に返した真値。タイムアウトした場合は None

    Raises:
        ManualCancellationError: token がキャンセルされた場合
    """
    deadline = Deadline(timeout_ms, token)

    while True:
        if token is not None:
            await token.checkpoint()

        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return result

        remaining = deadline.remaining_ms()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval_ms, remaining) / 1000.0)


# ---------------------------------------------------------------------------
# ページ安定性コラボレータ
# ---------------------------------------------------------------------------

@runtime_checkable
class StabilityMonitor(Protocol):
    """ページ安定性の判定を担う外部コラボレータ。

    いずれのメソッドも timeout_ms 以内に条件を満たさなければ TimeoutError を送出する。
    """

    async def wait_for_network_idle(self, timeout_ms: int) -> None: ...

    async def wait_for_dom_settled(self, quiet_ms: int, timeout_ms: int) -> None: ...

    async def wait_for_element(self, selector: str, timeout_ms: int) -> None: ...

    async def wait_for_stable(self, timeout_ms: int) -> None: ...


# ---------------------------------------------------------------------------
# WaitStrategy 本体
# ---------------------------------------------------------------------------

# コラボレータ不在時の待機時間（ミリ秒）
_FALLBACK_NETWORK_IDLE_MS = 500
_FALLBACK_ELEMENT_APPEARED_MS = 300
_FALLBACK_LOADING_COMPLETE_MS = 1000
_DEFAULT_DOM_SETTLE_MS = 500
_DEFAULT_DURATION_MS = 300


class WaitStrategy:
    """ステップの待機ヒントに応じて、要素解決の前に待機する。

    待機時間の指定は max_wait_ms（デフォルト 3 秒）で頭打ちにする。
    コラボレータのタイムアウトはログに残すだけでステップを失敗させない。
    """

    def __init__(
        self,
        monitor: Optional[StabilityMonitor] = None,
        *,
        timeout_ms: int = 10_000,
        max_wait_ms: int = 3_000,
    ) -> None:
        """
        Args:
            monitor: ページ安定性コラボレータ。None の場合は固定時間の待機に縮退する
            timeout_ms: コラボレータ呼び出しのタイムアウト（ミリ秒）
            max_wait_ms: 時間指定の待機の上限（ミリ秒）
        """
        self._monitor = monitor
        self._timeout_ms = timeout_ms
        self._max_wait_ms = max_wait_ms

    async def wait(self, step: Step, token: Optional[CancellationToken] = None) -> None:
        """ステップの待機ヒントに従って待機する。

        Args:
            step: 実行前のステップ
            token: 一時停止・キャンセルの観測に使うトークン
        """
        hint = step.waitHint
        if hint is None or hint.type in (WaitKind.NONE, WaitKind.IMMEDIATE):
            return

        if hint.type == WaitKind.DURATION:
            await self._sleep(min(hint.duration or _DEFAULT_DURATION_MS, self._max_wait_ms), token)
            return

        if self._monitor is None:
            await self._sleep(self._fallback_ms(hint.type, hint.duration), token)
            return

        try:
            await self._wait_with_monitor(step, hint.type, hint.duration, token)
        except (TimeoutError, asyncio.TimeoutError):
            logger.warning(
                "安定待機 (%s) がタイムアウトしました。そのまま続行します: %s",
                hint.type.value, step.describe(),
            )

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    async def _wait_with_monitor(
        self,
        step: Step,
        kind: WaitKind,
        duration: Optional[int],
        token: Optional[CancellationToken],
    ) -> None:
        """コラボレータに待機を依頼する。"""
        monitor = self._monitor
        if kind == WaitKind.NETWORK_IDLE:
            await monitor.wait_for_network_idle(self._timeout_ms)
        elif kind == WaitKind.DOM_SETTLED:
            quiet = min(duration or _DEFAULT_DOM_SETTLE_MS, self._max_wait_ms)
            await monitor.wait_for_dom_settled(quiet, self._timeout_ms)
        elif kind == WaitKind.ELEMENT_APPEARED:
            selector = _css_selector_for(step)
            if selector is None:
                await self._sleep(_FALLBACK_ELEMENT_APPEARED_MS, token)
            else:
                await monitor.wait_for_element(selector, self._timeout_ms)
        elif kind == WaitKind.LOADING_COMPLETE:
            await monitor.wait_for_stable(self._timeout_ms)

    def _fallback_ms(self, kind: WaitKind, duration: Optional[int]) -> int:
        """コラボレータ不在時の待機時間を返す。"""
        if kind == WaitKind.NETWORK_IDLE:
            return _FALLBACK_NETWORK_IDLE_MS
        if kind == WaitKind.DOM_SETTLED:
            return min(duration or _DEFAULT_DOM_SETTLE_MS, self._max_wait_ms)
        if kind == WaitKind.ELEMENT_APPEARED:
            return _FALLBACK_ELEMENT_APPEARED_MS
        if kind == WaitKind.LOADING_COMPLETE:
            return _FALLBACK_LOADING_COMPLETE_MS
        return 0

    async def _sleep(self, duration_ms: float, token: Optional[CancellationToken]) -> None:
        logger.debug("%.0fms 待機します", duration_ms)
        if token is not None:
            await token.sleep(duration_ms)
        else:
            await asyncio.sleep(duration_ms / 1000.0)


def _css_selector_for(step: Step) -> Optional[str]:
    """element-appeared 待機に使う CSS セレクタ（推奨ロケータ）を返す。"""
    if step.locatorSet is None:
        return None
    recommended = step.locatorSet.recommended
    return recommended.value if recommended.is_css else None
