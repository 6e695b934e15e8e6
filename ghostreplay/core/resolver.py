"""
要素リゾルバ — 記録済み LocatorSet から操作可能な要素を再特定

confidence の高い順にロケータを試し、全ロケータで見つからなければ
間隔を空けてロケータの列全体を再試行する。上位のセレクタが壊れていても
下位のセレクタで見つかれば、その要素を使う。

アルゴリズム:
  - 試行 1..attempts のそれぞれで、全ロケータを confidence 順に1回ずつ即時検査する
  - 即時検査で見つからなければ、各ロケータを timeout/3 まで一定間隔でポーリングする
  - 操作可能（ElementState.interactable）な最初の候補を採用する
  - 試行の間に attempt × backoff ミリ秒待つ
  - 解決全体は timeout で打ち切り、期限後は検査しない

リゾルバは状態を持たない。同じページに同じ LocatorSet を与えれば同じ要素を返す。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..dsl.schema import Locator, LocatorSet
from .capability import Element, PageCapabilities
from .errors import ElementNotFoundError
from .lookup import query_locator
from .waits import DEFAULT_POLL_INTERVAL_MS, CancellationToken, Deadline, wait_until

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 500


# ---------------------------------------------------------------------------
# 解決失敗時の候補情報
# ---------------------------------------------------------------------------

@dataclass
class CandidateFailure:
    """解決に使えなかったロケータの情報。

    Attributes:
        index: LocatorSet 内のインデックス（0始まり）
        locator_desc: ロケータの説明文字列
        reason: 最後に観測した失敗理由
    """

    index: int
    locator_desc: str
    reason: str


# ---------------------------------------------------------------------------
# ElementResolver 本体
# ---------------------------------------------------------------------------

class ElementResolver:
    """LocatorSet から操作可能な要素を解決する。

    使用例::

        resolver = ElementResolver(caps)
        element = await resolver.resolve(locator_set, timeout_ms=10_000, token=token)
    """

    def __init__(
        self,
        caps: PageCapabilities,
        *,
        attempts: int = DEFAULT_RETRY_ATTEMPTS,
        backoff_ms: int = DEFAULT_RETRY_DELAY_MS,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ) -> None:
        """
        Args:
            caps: ページ操作インターフェース
            attempts: ロケータ列全体の試行回数
            backoff_ms: 試行間の待機の基準値（attempt × backoff_ms 待つ）
            poll_interval_ms: ロケータごとのポーリング間隔
        """
        if attempts < 1:
            raise ValueError(f"attempts は 1 以上を指定してください: {attempts}")
        self._caps = caps
        self._attempts = attempts
        self._backoff_ms = backoff_ms
        self._poll_interval_ms = poll_interval_ms

    # -------------------------------------------------------------------
    # パブリック API
    # -------------------------------------------------------------------

    async def resolve(
        self,
        locator_set: LocatorSet,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        token: Optional[CancellationToken] = None,
    ) -> Optional[Element]:
        """操作可能な要素を返す。見つからなければ None を返す。

        Args:
            locator_set: 記録済みのロケータ集合
            timeout_ms: 解決全体のタイムアウト（ミリ秒）
            token: 一時停止・キャンセルの観測に使うトークン

        Returns:
            解決された要素、または None

        Raises:
            ManualCancellationError: token がキャンセルされた場合
        """
        element, _ = await self._resolve(locator_set, timeout_ms, token)
        return element

    async def resolve_or_raise(
        self,
        locator_set: LocatorSet,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        token: Optional[CancellationToken] = None,
    ) -> Element:
        """resolve() と同じだが、見つからなければ全ロケータの失敗理由付きで例外を送出する。

        Raises:
            ElementNotFoundError: 全ロケータ・全試行で見つからなかった場合
            ManualCancellationError: token がキャンセルされた場合
        """
        element, failures = await self._resolve(locator_set, timeout_ms, token)
        if element is not None:
            return element

        details = "\n".join(
            f"  [{f.index}] {f.locator_desc}: {f.reason}" for f in failures
        )
        raise ElementNotFoundError(
            f"要素が見つかりません: {locator_set.humanLabel or '(ラベルなし)'}"
            f"（{len(locator_set.locators)} 候補を {timeout_ms}ms 試行）\n"
            f"試行結果:\n{details}"
        )

    # -------------------------------------------------------------------
    # 解決ループ
    # -------------------------------------------------------------------

    async def _resolve(
        self,
        locator_set: LocatorSet,
        timeout_ms: int,
        token: Optional[CancellationToken],
    ) -> tuple[Optional[Element], list[CandidateFailure]]:
        locators = locator_set.locators
        deadline = Deadline(timeout_ms, token)
        window_ms = timeout_ms / 3
        reasons: dict[int, str] = {}

        async def check(index: int) -> Optional[Element]:
            element, reason = await self._find_interactable(locators[index])
            if element is None:
                reasons[index] = reason
            return element

        for attempt in range(1, self._attempts + 1):
            # 全ロケータの即時検査
            for index in range(len(locators)):
                if deadline.expired:
                    break
                if token is not None:
                    await token.checkpoint()
                element = await check(index)
                if element is not None:
                    self._log_hit(locators, index, attempt)
                    return element, []

            # ロケータごとのポーリング
            for index in range(len(locators)):
                if deadline.expired:
                    break
                element = await wait_until(
                    lambda i=index: check(i),
                    min(window_ms, deadline.remaining_ms()),
                    self._poll_interval_ms,
                    token,
                )
                if element is not None:
                    self._log_hit(locators, index, attempt)
                    return element, []

            if deadline.expired or attempt == self._attempts:
                break

            backoff = min(attempt * self._backoff_ms, deadline.remaining_ms())
            logger.debug(
                "試行 %d/%d で見つかりませんでした。%.0fms 後に再試行します: %s",
                attempt, self._attempts, backoff, locator_set.humanLabel,
            )
            if token is not None:
                await token.sleep(backoff)
            else:
                await wait_until(lambda: False, backoff, self._poll_interval_ms)

        logger.info(
            "要素を解決できませんでした（%.0fms 経過）: %s",
            deadline.elapsed_ms(), locator_set.humanLabel,
        )
        failures = [
            CandidateFailure(i, describe_locator(loc), reasons.get(i, "未検査"))
            for i, loc in enumerate(locators)
        ]
        return None, failures

    def _log_hit(self, locators: list[Locator], index: int, attempt: int) -> None:
        level = logging.DEBUG if index == 0 and attempt == 1 else logging.INFO
        logger.log(
            level,
            "要素を解決しました: 候補 %d (%s)、試行 %d 回目",
            index, describe_locator(locators[index]), attempt,
        )

    async def _find_interactable(self, locator: Locator) -> tuple[Optional[Element], str]:
        """ロケータに一致する候補のうち、最初に操作可能なものを返す。"""
        try:
            matches = await query_locator(self._caps, locator)
        except Exception as exc:  # noqa: BLE001
            return None, f"検索エラー: {exc}"

        if not matches:
            return None, "要素が見つかりません（0件ヒット）"

        # 検索後の再描画・遷移で要素が破棄された場合は未検出として扱う
        state_error = ""
        for element in matches:
            try:
                state = await self._caps.get_state(element)
            except Exception as exc:  # noqa: BLE001
                logger.debug("要素の状態取得に失敗しました: %s: %s", describe_locator(locator), exc)
                state_error = f"状態取得エラー: {exc}"
                continue
            if state.interactable:
                return element, ""
        if state_error and len(matches) == 1:
            return None, state_error
        return None, f"{len(matches)} 件ヒットしましたが操作可能な要素がありません"


def describe_locator(locator: Locator) -> str:
    """ロケータの人間可読な説明文字列を返す。"""
    return f"{locator.strategy.value}='{locator.value}' ({locator.confidence:.2f})"
