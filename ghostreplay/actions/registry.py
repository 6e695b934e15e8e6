"""
アクションレジストリ — ステップ種別から Executor を引く

ステップ種別（click, type, select 等）ごとに Executor を登録し、
再生時は種別名で検索してディスパッチする。未登録の種別は
UnsupportedActionError として報告され、黙って無視されることはない。

主な構成:
  - ActionExecutor Protocol: Executor の共通インターフェース
  - ActionContext: Executor 実行時のコンテキスト情報
  - ActionInfo: アクションのメタ情報（名前、説明、要素の要否）
  - ActionRegistry: Executor の登録・検索・一覧
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from ..core.errors import UnsupportedActionError

if TYPE_CHECKING:
    from ..core.capability import Element, PageCapabilities
    from ..core.resolver import ElementResolver
    from ..core.waits import CancellationToken
    from ..dsl.schema import Step

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 実行コンテキスト
# ---------------------------------------------------------------------------

@dataclass
class ActionContext:
    """Executor の execute() に渡されるコンテキスト情報。

    Attributes:
        caps: ページ操作インターフェース
        resolver: 2つ目の要素（drag のドロップ先）の解決に使うリゾルバ
        token: 一時停止・キャンセルの観測に使うトークン
        timeout_ms: 要素解決のタイムアウト（ミリ秒）
        type_char_delay_ms: type で1文字ごとに空ける間隔（ミリ秒）
    """

    caps: PageCapabilities
    resolver: ElementResolver
    token: Optional[CancellationToken] = None
    timeout_ms: int = 10_000
    type_char_delay_ms: int = 10


# ---------------------------------------------------------------------------
# アクションメタ情報
# ---------------------------------------------------------------------------

@dataclass
class ActionInfo:
    """アクションのメタ情報。

    Attributes:
        name: ステップ種別名
        description: 説明文
        requires_element: 実行前に locatorSet の解決が必要か
    """

    name: str
    description: str
    requires_element: bool = True


# ---------------------------------------------------------------------------
# ActionExecutor Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class ActionExecutor(Protocol):
    """Executor の共通インターフェース。"""

    async def execute(
        self,
        element: Optional[Element],
        value: Optional[str],
        step: Step,
        context: ActionContext,
    ) -> None:
        """記録された操作を再現する。

        Args:
            element: 解決済みの要素（要素不要のアクションでは None）
            value: 変数注入済みの値
            step: 変数注入済みのステップ
            context: 実行コンテキスト
        """
        ...


# ---------------------------------------------------------------------------
# ActionRegistry 本体
# ---------------------------------------------------------------------------

class ActionRegistry:
    """Executor の登録・検索・一覧を管理するレジストリ。

    使用例::

        registry = ActionRegistry()
        registry.register("click", ClickExecutor(), info=ActionInfo(...))
        executor = registry.get("click")
    """

    def __init__(self) -> None:
        self._executors: dict[str, ActionExecutor] = {}
        self._info: dict[str, ActionInfo] = {}

    def register(
        self,
        name: str,
        executor: ActionExecutor,
        *,
        info: Optional[ActionInfo] = None,
    ) -> None:
        """Executor を登録する。同名の Executor は上書きする（警告を出力）。

        Raises:
            TypeError: executor が ActionExecutor Protocol を満たさない場合
        """
        if not isinstance(executor, ActionExecutor):
            raise TypeError(
                f"executor は ActionExecutor Protocol を満たす必要があります: "
                f"{type(executor).__name__}"
            )

        if name in self._executors:
            logger.warning(
                "アクション '%s' の Executor を上書きします（既存: %s → 新規: %s）",
                name,
                type(self._executors[name]).__name__,
                type(executor).__name__,
            )

        self._executors[name] = executor
        if info is not None:
            self._info[name] = info
        elif name not in self._info:
            self._info[name] = ActionInfo(name=name, description=f"{name} アクション")

        logger.debug("アクション '%s' を登録しました: %s", name, type(executor).__name__)

    def get(self, name: str) -> ActionExecutor:
        """種別名で Executor を取得する。

        Raises:
            UnsupportedActionError: 指定名の Executor が未登録の場合
        """
        if name not in self._executors:
            raise UnsupportedActionError(name, self.names)
        return self._executors[name]

    def info(self, name: str) -> ActionInfo:
        """種別名でメタ情報を取得する。

        Raises:
            UnsupportedActionError: 指定名の Executor が未登録の場合
        """
        if name not in self._info:
            raise UnsupportedActionError(name, self.names)
        return self._info[name]

    def list_all(self) -> list[ActionInfo]:
        """登録済み全アクションのメタ情報を名前順で返す。"""
        return sorted(self._info.values(), key=lambda a: a.name)

    def has(self, name: str) -> bool:
        return name in self._executors

    @property
    def names(self) -> list[str]:
        """登録済み全アクション名をソート済みリストで返す。"""
        return sorted(self._executors.keys())
