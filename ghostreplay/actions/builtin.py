"""
標準アクション — 記録された操作を合成イベントで再現する Executor 群

各 Executor は ActionExecutor Protocol を満たし、ActionRegistry に登録される。
要素に対する操作は全て PageCapabilities 経由で行う。

カテゴリ:
  - 要素操作: click, dblclick, hover, type, select, keypress, submit, drag
  - ページ操作: navigate, scroll
  - タブ操作: newTab, switchTab, closeTab
  - 手動操作: fileUpload（自動化せず常にテイクオーバーに回す）

Executor の失敗は自動リトライしない。リトライは要素解決だけに適用される。
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

from ..core.capability import Rect, SelectOption
from ..core.errors import (
    ActionExecutionError,
    ElementNotFoundError,
    ManualInterventionRequired,
    MappingFailureError,
)
from .registry import ActionContext, ActionInfo, ActionRegistry

if TYPE_CHECKING:
    from ..core.capability import Element, PageCapabilities
    from ..dsl.schema import Step

logger = logging.getLogger(__name__)


# ===========================================================================
# 共通ヘルパー
# ===========================================================================

async def ensure_interactable(caps: PageCapabilities, element: Element) -> Rect:
    """要素が操作可能であることを確認し、表示矩形を返す。

    要素解決と同じ ElementState.interactable で判定する。

    Raises:
        ActionExecutionError: 要素が消えた、または操作不可になった場合
    """
    state = await caps.get_state(element)
    if not state.interactable or state.rect is None:
        raise ActionExecutionError("要素が操作可能な状態ではありません（非表示・無効化・DOM から削除）")
    return state.rect


def _mouse_init(rect: Rect, **extra: Any) -> dict[str, Any]:
    """要素中心を座標とするマウスイベントの初期化辞書を生成する。"""
    x, y = rect.center
    init: dict[str, Any] = {
        "bubbles": True,
        "cancelable": True,
        "clientX": x,
        "clientY": y,
        "button": 0,
    }
    init.update(extra)
    return init


def _key_code(key: str) -> str:
    """キー名から KeyboardEvent.code 相当の値を返す。"""
    if len(key) == 1 and key.isalpha():
        return f"Key{key.upper()}"
    if len(key) == 1 and key.isdigit():
        return f"Digit{key}"
    if key == " ":
        return "Space"
    return key


def _key_init(key: str, modifiers: Optional[list[str]] = None) -> dict[str, Any]:
    """キーボードイベントの初期化辞書を生成する。"""
    modifiers = modifiers or []
    return {
        "key": key,
        "code": _key_code(key),
        "bubbles": True,
        "cancelable": True,
        "ctrlKey": "Control" in modifiers,
        "shiftKey": "Shift" in modifiers,
        "altKey": "Alt" in modifiers,
        "metaKey": "Meta" in modifiers,
    }


async def find_form(caps: PageCapabilities, element: Element) -> Optional[Element]:
    """要素自身または最も近い祖先の form 要素を返す。"""
    current: Optional[Element] = element
    while current is not None:
        if (await caps.describe(current)).tag == "form":
            return current
        current = await caps.parent(current)
    return None


def match_option(options: list[SelectOption], target: str) -> Optional[SelectOption]:
    """値に対応する選択肢を返す。

    照合順: 値の完全一致 → 表示テキストの完全一致（大文字小文字無視）
    → 表示テキストの部分一致 → 値の部分一致。最初に一致したものを返す。
    """
    folded = target.strip().casefold()
    for option in options:
        if option.value == target:
            return option
    for option in options:
        if option.text.strip().casefold() == folded:
            return option
    for option in options:
        if folded and folded in option.text.casefold():
            return option
    for option in options:
        if folded and folded in option.value.casefold():
            return option
    return None


def _require(element: Optional[Element], action: str) -> Element:
    if element is None:
        raise ActionExecutionError(f"{action} には操作対象の要素が必要です")
    return element


# ===========================================================================
# 要素操作
# ===========================================================================

class ClickExecutor:
    """要素の中心で mousedown → mouseup → click を送出する。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "click")
        await caps.scroll_into_view(element)
        rect = await ensure_interactable(caps, element)
        for event in ("mousedown", "mouseup", "click"):
            await caps.dispatch(element, event, _mouse_init(rect, detail=1, button=step.button))


class DblClickExecutor:
    """クリックを2回送出した後に dblclick を送出する。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "dblclick")
        await caps.scroll_into_view(element)
        rect = await ensure_interactable(caps, element)
        for detail in (1, 2):
            for event in ("mousedown", "mouseup", "click"):
                await caps.dispatch(
                    element, event, _mouse_init(rect, detail=detail, button=step.button),
                )
        await caps.dispatch(element, "dblclick", _mouse_init(rect, detail=2, button=step.button))


class HoverExecutor:
    """要素の中心で mouseover → mouseenter → mousemove を送出する。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "hover")
        await caps.scroll_into_view(element)
        rect = await ensure_interactable(caps, element)
        await caps.dispatch(element, "mouseover", _mouse_init(rect))
        await caps.dispatch(element, "mouseenter", _mouse_init(rect, bubbles=False))
        await caps.dispatch(element, "mousemove", _mouse_init(rect))


class TypeExecutor:
    """1文字ずつ入力イベントを送出して値を入力する。

    入力マスクやオートコンプリートのような、入力途中の値に反応する
    ページ側のロジックを再現するため、値を一括では設定しない。
    contenteditable の編集領域には value ではなく textContent を書き込む。
    """

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "type")
        text = value or ""

        await ensure_interactable(caps, element)
        if await caps.is_content_editable(element):
            write = caps.set_text
        else:
            write = caps.set_value

        await caps.focus(element)
        await write(element, "")
        await caps.dispatch(element, "input", {"bubbles": True})

        typed = ""
        for char in text:
            await caps.dispatch(element, "keydown", _key_init(char))
            await caps.dispatch(element, "keypress", _key_init(char))
            typed += char
            await write(element, typed)
            await caps.dispatch(
                element, "input",
                {"bubbles": True, "data": char, "inputType": "insertText"},
            )
            await caps.dispatch(element, "keyup", _key_init(char))
            if context.type_char_delay_ms > 0:
                await asyncio.sleep(context.type_char_delay_ms / 1000.0)

        await caps.dispatch(element, "change", {"bubbles": True})
        await caps.blur(element)


class SelectExecutor:
    """select 要素の選択肢を値またはテキストで選ぶ。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "select")
        await ensure_interactable(caps, element)

        target = value or ""
        options = await caps.select_options(element)
        option = match_option(options, target)
        if option is None:
            available = ", ".join(f"{o.value}({o.text})" for o in options) or "(なし)"
            raise MappingFailureError(
                f"'{target}' に一致する選択肢がありません。選択肢: {available}"
            )

        logger.debug("選択肢を選択します: %s（入力値: %s）", option.value, target)
        await caps.set_value(element, option.value)
        await caps.dispatch(element, "input", {"bubbles": True})
        await caps.dispatch(element, "change", {"bubbles": True})


class KeypressExecutor:
    """keydown → keypress → keyup を送出する。Enter はフォーム送信も行う。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "keypress")
        key = step.key or value
        if not key:
            raise ActionExecutionError("keypress のキー名が指定されていません")

        init = _key_init(key, step.modifiers)
        for event in ("keydown", "keypress", "keyup"):
            await caps.dispatch(element, event, init)

        if key == "Enter":
            form = await find_form(caps, element)
            if form is not None:
                logger.debug("Enter キーによりフォームを送信します")
                await caps.dispatch(form, "submit", {"bubbles": True, "cancelable": True})


class SubmitExecutor:
    """要素を含むフォームに submit を送出する。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        element = _require(element, "submit")
        form = await find_form(caps, element)
        if form is None:
            raise ActionExecutionError("送信対象のフォームが見つかりません")
        await caps.dispatch(form, "submit", {"bubbles": True, "cancelable": True})


class DragExecutor:
    """ドラッグ元からドロップ先へ、1つの DataTransfer を共有してドラッグする。

    ドロップ先は secondaryLocatorSet から解決する。見つからなければ
    ElementNotFoundError としてテイクオーバー判断に回す。
    """

    async def execute(self, element, value, step, context: ActionContext) -> None:
        caps = context.caps
        source = _require(element, "drag")
        if step.secondaryLocatorSet is None:
            raise ActionExecutionError("drag にはドロップ先（secondaryLocatorSet）が必要です")

        target = await context.resolver.resolve(
            step.secondaryLocatorSet, context.timeout_ms, context.token,
        )
        if target is None:
            raise ElementNotFoundError(
                f"ドロップ先が見つかりません: {step.secondaryLocatorSet.humanLabel}"
            )

        source_rect = await ensure_interactable(caps, source)
        target_rect = await ensure_interactable(caps, target)
        transfer = await caps.create_data_transfer()

        await caps.dispatch(source, "dragstart", _mouse_init(source_rect, dataTransfer=transfer))
        await caps.dispatch(target, "dragover", _mouse_init(target_rect, dataTransfer=transfer))
        await caps.dispatch(target, "drop", _mouse_init(target_rect, dataTransfer=transfer))
        await caps.dispatch(source, "dragend", _mouse_init(source_rect, dataTransfer=transfer))


class FileUploadExecutor:
    """ファイル選択はプログラムから行わず、常に手動操作を求める。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        raise ManualInterventionRequired(
            "ファイル選択はブラウザのセキュリティ制約により自動化できません。"
            "手動でファイルを選択してください。"
        )


# ===========================================================================
# ページ・タブ操作
# ===========================================================================

class NavigateExecutor:
    """指定 URL へ遷移する。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        url = step.url or value
        if not url:
            raise ActionExecutionError("navigate の遷移先 URL が指定されていません")
        await context.caps.navigate(url)


class ScrollExecutor:
    """ページを記録時の座標までスクロールする。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        x = step.scrollTo.x if step.scrollTo else 0
        y = step.scrollTo.y if step.scrollTo else 0
        await context.caps.scroll_to(x, y)


class NewTabExecutor:
    """新しいタブを開いて切り替える。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        await context.caps.open_tab(step.url or value)


class SwitchTabExecutor:
    """タブ番号またはタイトルでタブを切り替える。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        if step.tabIndex is None and not step.tabTitle:
            raise ActionExecutionError("switchTab にはタブ番号またはタイトルが必要です")
        await context.caps.switch_tab(index=step.tabIndex, title=step.tabTitle)


class CloseTabExecutor:
    """現在のタブを閉じる。"""

    async def execute(self, element, value, step, context: ActionContext) -> None:
        await context.caps.close_tab()


# ===========================================================================
# デフォルトレジストリ生成
# ===========================================================================

_BUILTIN_ACTIONS: list[tuple[str, type, str, bool]] = [
    ("click", ClickExecutor, "要素をクリックする", True),
    ("dblclick", DblClickExecutor, "要素をダブルクリックする", True),
    ("hover", HoverExecutor, "要素にマウスを重ねる", True),
    ("type", TypeExecutor, "1文字ずつ値を入力する", True),
    ("select", SelectExecutor, "select 要素の選択肢を選ぶ", True),
    ("keypress", KeypressExecutor, "キーを押下する（Enter はフォーム送信）", True),
    ("submit", SubmitExecutor, "フォームを送信する", True),
    ("drag", DragExecutor, "要素をドロップ先までドラッグする", True),
    ("fileUpload", FileUploadExecutor, "ファイル選択（常に手動操作）", False),
    ("navigate", NavigateExecutor, "URL へ遷移する", False),
    ("scroll", ScrollExecutor, "ページをスクロールする", False),
    ("newTab", NewTabExecutor, "新しいタブを開く", False),
    ("switchTab", SwitchTabExecutor, "タブを切り替える", False),
    ("closeTab", CloseTabExecutor, "現在のタブを閉じる", False),
]


def create_default_registry() -> ActionRegistry:
    """標準アクションが全て登録された ActionRegistry を生成する。"""
    registry = ActionRegistry()
    for name, executor_cls, description, requires_element in _BUILTIN_ACTIONS:
        registry.register(
            name,
            executor_cls(),
            info=ActionInfo(
                name=name,
                description=description,
                requires_element=requires_element,
            ),
        )
    return registry
