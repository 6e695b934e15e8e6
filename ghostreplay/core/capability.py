"""
ページ操作インターフェース — コアが依存するホスト環境のプリミティブ

セレクタ合成・要素解決・アクション実行は全てこの PageCapabilities を通して
ページにアクセスする。実ブラウザでは PlaywrightPage が、テストでは
フェイク実装がこれを満たす。

要素は実装ごとの不透明なハンドルとして扱い、コア側では中身を参照しない。
同一性の判定は same_element() に委ねる。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

# 実装ごとの要素ハンドル（Playwright の ElementHandle、フェイクの要素オブジェクト等）
Element = Any


# ---------------------------------------------------------------------------
# 値オブジェクト
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rect:
    """ビューポート座標系の矩形。"""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        """矩形の中心座標を返す。"""
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class ElementSnapshot:
    """要素の静的な情報。

    Attributes:
        tag: 小文字のタグ名
        attributes: 属性名から値へのマップ
        text: 要素のテキスト内容（前後の空白を除去済み）
    """

    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""

    def attr(self, name: str) -> Optional[str]:
        """属性値を返す。空文字は未設定として None を返す。"""
        value = self.attributes.get(name)
        return value if value else None


@dataclass(frozen=True)
class ElementState:
    """要素の表示・操作可能状態。

    Attributes:
        rect: 表示矩形。DOM から外れている場合は None
        display: 算出スタイルの display
        visibility: 算出スタイルの visibility
        opacity: 算出スタイルの opacity（文字列のまま）
        disabled: disabled 属性・プロパティが有効か
    """

    rect: Optional[Rect]
    display: str = "block"
    visibility: str = "visible"
    opacity: str = "1"
    disabled: bool = False

    @property
    def interactable(self) -> bool:
        """操作可能かを返す。

        要素解決とアクション実行は同じこの判定を使う。
        矩形がゼロサイズ、display:none、visibility:hidden、opacity 0、
        disabled のいずれかに該当すれば操作不可とする。
        """
        if self.rect is None or self.rect.width <= 0 or self.rect.height <= 0:
            return False
        if self.display == "none" or self.visibility == "hidden":
            return False
        try:
            if float(self.opacity) == 0:
                return False
        except ValueError:
            pass
        return not self.disabled


@dataclass(frozen=True)
class SelectOption:
    """select 要素の選択肢。"""

    value: str
    text: str


# ---------------------------------------------------------------------------
# PageCapabilities Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class PageCapabilities(Protocol):
    """コアがホストページに要求するプリミティブ一式。"""

    # --- 検索 ---

    async def query_css(self, selector: str, root: Optional[Element] = None) -> list[Element]:
        """CSS セレクタに一致する要素を文書順で返す。

        root が指定された場合はその配下（Shadow root を含む）だけを検索する。
        Shadow DOM は貫通しない。
        """
        ...

    async def query_xpath(self, expression: str, root: Optional[Element] = None) -> list[Element]:
        """XPath 式に一致する要素を文書順で返す。

        root（Shadow root）が指定された場合はそれを文脈ノードとして評価する。
        """
        ...

    # --- 読み取り ---

    async def describe(self, element: Element) -> ElementSnapshot:
        """タグ名・属性・テキストを返す。"""
        ...

    async def get_state(self, element: Element) -> ElementState:
        """表示矩形と操作可能状態を返す。"""
        ...

    async def parent(self, element: Element) -> Optional[Element]:
        """親要素を返す。文書ルートまたは Shadow root の直下では None。"""
        ...

    async def children(self, element: Element) -> list[Element]:
        """子要素を文書順で返す。"""
        ...

    async def shadow_host(self, element: Element) -> Optional[Element]:
        """要素が Shadow tree 内にあれば、そのホスト要素を返す。"""
        ...

    async def shadow_root(self, element: Element) -> Optional[Element]:
        """要素が持つ open な Shadow root を返す。"""
        ...

    async def same_element(self, a: Element, b: Element) -> bool:
        """2つのハンドルが同一の要素を指すかを返す。"""
        ...

    # --- 操作 ---

    async def scroll_into_view(self, element: Element) -> None: ...

    async def dispatch(
        self, element: Element, event_type: str, init: Optional[dict[str, Any]] = None
    ) -> None:
        """合成イベントを要素に送出する。"""
        ...

    async def create_data_transfer(self) -> Any:
        """ドラッグ操作間で共有する DataTransfer を生成する。"""
        ...

    async def focus(self, element: Element) -> None: ...

    async def blur(self, element: Element) -> None: ...

    async def get_value(self, element: Element) -> str: ...

    async def set_value(self, element: Element, value: str) -> None: ...

    async def is_content_editable(self, element: Element) -> bool:
        """contenteditable な編集領域かを返す。"""
        ...

    async def set_text(self, element: Element, text: str) -> None:
        """contenteditable 要素の textContent を置き換える。"""
        ...

    async def select_options(self, element: Element) -> list[SelectOption]: ...

    # --- ページ・タブ ---

    async def navigate(self, url: str) -> None: ...

    async def scroll_to(self, x: float, y: float) -> None: ...

    async def open_tab(self, url: Optional[str] = None) -> None: ...

    async def switch_tab(
        self, index: Optional[int] = None, title: Optional[str] = None
    ) -> None: ...

    async def close_tab(self) -> None: ...
