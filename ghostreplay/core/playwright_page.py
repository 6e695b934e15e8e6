"""
Playwright アダプタ — PageCapabilities / StabilityMonitor / ElementHighlighter の実ブラウザ実装

Playwright の非同期 API で PageCapabilities を満たす。要素は ElementHandle として扱う。
query_css は Shadow DOM を貫通しない（Playwright の CSS エンジンは貫通するため、
document.querySelectorAll を直接評価する）。

タブ操作は BrowserContext のページ一覧で行い、以降の操作は切り替え先のページに向く。
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from .capability import ElementSnapshot, ElementState, Rect, SelectOption

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, ElementHandle, JSHandle, Page

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ページ内で評価する JavaScript
# ---------------------------------------------------------------------------

_QUERY_CSS_JS = """
([root, selector]) => Array.from((root || document).querySelectorAll(selector))
"""

_QUERY_XPATH_JS = """
([root, expression]) => {
  const result = document.evaluate(
    expression, root || document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
  const out = [];
  for (let i = 0; i < result.snapshotLength; i++) {
    const node = result.snapshotItem(i);
    if (node.nodeType === Node.ELEMENT_NODE) out.push(node);
  }
  return out;
}
"""

_DESCRIBE_JS = """
(e) => {
  const attributes = {};
  for (const a of e.attributes) attributes[a.name] = a.value;
  const text = (e.innerText ?? e.textContent ?? '').trim();
  return { tag: e.tagName.toLowerCase(), attributes, text };
}
"""

_STATE_JS = """
(e) => {
  if (!e.isConnected) return { rect: null };
  const r = e.getBoundingClientRect();
  const style = window.getComputedStyle(e);
  return {
    rect: { x: r.x, y: r.y, width: r.width, height: r.height },
    display: style.display,
    visibility: style.visibility,
    opacity: style.opacity,
    disabled: !!e.disabled || e.getAttribute('aria-disabled') === 'true',
  };
}
"""

_SHADOW_HOST_JS = """
(e) => {
  const root = e.getRootNode();
  return root instanceof ShadowRoot ? root.host : null;
}
"""

# React 等が value の setter を差し替えていても反映されるよう、プロトタイプの setter を使う
_SET_VALUE_JS = """
(e, value) => {
  const desc = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(e), 'value');
  if (desc && desc.set) desc.set.call(e, value);
  else e.value = value;
}
"""

_DOM_SETTLED_JS = """
([quietMs, timeoutMs]) => new Promise((resolve) => {
  let quiet = null;
  let limit = null;
  const observer = new MutationObserver(() => {
    clearTimeout(quiet);
    quiet = setTimeout(() => finish(true), quietMs);
  });
  const finish = (settled) => {
    observer.disconnect();
    clearTimeout(quiet);
    clearTimeout(limit);
    resolve(settled);
  };
  observer.observe(document.documentElement, {
    childList: true, subtree: true, attributes: true, characterData: true,
  });
  quiet = setTimeout(() => finish(true), quietMs);
  limit = setTimeout(() => finish(false), timeoutMs);
})
"""

# ローディング表示とみなすセレクタ
LOADING_INDICATOR_SELECTORS = (
    ".loading",
    ".spinner",
    ".loader",
    '[aria-busy="true"]',
    "[data-loading]",
    ".skeleton",
    ".shimmer",
)

_LOADING_VISIBLE_JS = """
(selectors) => selectors.some((s) => Array.from(document.querySelectorAll(s)).some((e) => {
  const r = e.getBoundingClientRect();
  const style = window.getComputedStyle(e);
  return r.width > 0 && r.height > 0 && style.display !== 'none' && style.visibility !== 'hidden';
}))
"""

_HIGHLIGHT_JS = """
(e, durationMs) => {
  const outline = e.style.outline;
  const offset = e.style.outlineOffset;
  e.style.outline = '3px solid #ff3b30';
  e.style.outlineOffset = '2px';
  setTimeout(() => {
    e.style.outline = outline;
    e.style.outlineOffset = offset;
  }, durationMs);
}
"""


# ---------------------------------------------------------------------------
# PlaywrightPage 本体
# ---------------------------------------------------------------------------

class PlaywrightPage:
    """Playwright の Page を PageCapabilities として公開するアダプタ。

    使用例::

        context = await browser.new_context()
        caps = PlaywrightPage(context, await context.new_page())
        await caps.navigate("https://example.com")
    """

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self._context = context
        self._page = page

    @property
    def page(self) -> Page:
        """現在操作対象のページ。"""
        return self._page

    # -------------------------------------------------------------------
    # 検索
    # -------------------------------------------------------------------

    async def query_css(
        self, selector: str, root: Optional[ElementHandle] = None
    ) -> list[ElementHandle]:
        return await self._collect(_QUERY_CSS_JS, [root, selector])

    async def query_xpath(
        self, expression: str, root: Optional[JSHandle] = None
    ) -> list[ElementHandle]:
        return await self._collect(_QUERY_XPATH_JS, [root, expression])

    async def _collect(self, expression: str, arg: Any) -> list[ElementHandle]:
        """配列を返す式を評価し、要素ハンドルのリストに変換する。"""
        array = await self._page.evaluate_handle(expression, arg)
        try:
            properties = await array.get_properties()
            indexed = sorted(
                (int(key), handle) for key, handle in properties.items() if key.isdigit()
            )
            elements = []
            for _, handle in indexed:
                element = handle.as_element()
                if element is not None:
                    elements.append(element)
            return elements
        finally:
            await array.dispose()

    # -------------------------------------------------------------------
    # 読み取り
    # -------------------------------------------------------------------

    async def describe(self, element: ElementHandle) -> ElementSnapshot:
        data = await element.evaluate(_DESCRIBE_JS)
        return ElementSnapshot(
            tag=data["tag"], attributes=dict(data["attributes"]), text=data["text"],
        )

    async def get_state(self, element: ElementHandle) -> ElementState:
        data = await element.evaluate(_STATE_JS)
        if data.get("rect") is None:
            return ElementState(rect=None)
        rect = data["rect"]
        return ElementState(
            rect=Rect(rect["x"], rect["y"], rect["width"], rect["height"]),
            display=data["display"],
            visibility=data["visibility"],
            opacity=str(data["opacity"]),
            disabled=bool(data["disabled"]),
        )

    async def parent(self, element: ElementHandle) -> Optional[ElementHandle]:
        return await self._element_or_none(element, "(e) => e.parentElement")

    async def children(self, element: ElementHandle) -> list[ElementHandle]:
        array = await element.evaluate_handle("(e) => Array.from(e.children)")
        try:
            properties = await array.get_properties()
            indexed = sorted(
                (int(key), handle) for key, handle in properties.items() if key.isdigit()
            )
            return [h.as_element() for _, h in indexed if h.as_element() is not None]
        finally:
            await array.dispose()

    async def shadow_host(self, element: ElementHandle) -> Optional[ElementHandle]:
        return await self._element_or_none(element, _SHADOW_HOST_JS)

    async def shadow_root(self, element: ElementHandle) -> Optional[JSHandle]:
        if not await element.evaluate("(e) => !!e.shadowRoot"):
            return None
        return await element.evaluate_handle("(e) => e.shadowRoot")

    async def same_element(self, a: ElementHandle, b: ElementHandle) -> bool:
        return bool(await self._page.evaluate("([a, b]) => a === b", [a, b]))

    async def _element_or_none(
        self, element: ElementHandle, expression: str
    ) -> Optional[ElementHandle]:
        handle = await element.evaluate_handle(expression)
        result = handle.as_element()
        if result is None:
            await handle.dispose()
        return result

    # -------------------------------------------------------------------
    # 操作
    # -------------------------------------------------------------------

    async def scroll_into_view(self, element: ElementHandle) -> None:
        await element.evaluate(
            "(e) => e.scrollIntoView({ block: 'center', inline: 'center' })"
        )

    async def dispatch(
        self, element: ElementHandle, event_type: str, init: Optional[dict[str, Any]] = None
    ) -> None:
        await element.dispatch_event(event_type, init or {})

    async def create_data_transfer(self) -> JSHandle:
        return await self._page.evaluate_handle("() => new DataTransfer()")

    async def focus(self, element: ElementHandle) -> None:
        await element.focus()

    async def blur(self, element: ElementHandle) -> None:
        await element.evaluate("(e) => e.blur()")

    async def get_value(self, element: ElementHandle) -> str:
        return await element.evaluate("(e) => e.value ?? ''")

    async def set_value(self, element: ElementHandle, value: str) -> None:
        await element.evaluate(_SET_VALUE_JS, value)

    async def is_content_editable(self, element: ElementHandle) -> bool:
        return bool(await element.evaluate("(e) => !!e.isContentEditable"))

    async def set_text(self, element: ElementHandle, text: str) -> None:
        await element.evaluate("(e, text) => { e.textContent = text; }", text)

    async def select_options(self, element: ElementHandle) -> list[SelectOption]:
        options = await element.evaluate(
            "(e) => Array.from(e.options || []).map((o) => ({ value: o.value, text: o.text }))"
        )
        return [SelectOption(o["value"], o["text"]) for o in options]

    # -------------------------------------------------------------------
    # ページ・タブ
    # -------------------------------------------------------------------

    async def navigate(self, url: str) -> None:
        await self._page.goto(url)
        await self._page.wait_for_load_state("domcontentloaded")

    async def scroll_to(self, x: float, y: float) -> None:
        await self._page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])

    async def open_tab(self, url: Optional[str] = None) -> None:
        page = await self._context.new_page()
        if url:
            await page.goto(url)
            await page.wait_for_load_state("domcontentloaded")
        self._page = page
        logger.debug("新しいタブを開きました: %s", url or "about:blank")

    async def switch_tab(
        self, index: Optional[int] = None, title: Optional[str] = None
    ) -> None:
        """インデックスまたはタイトル（部分一致）でタブを切り替える。

        Raises:
            ValueError: 該当するタブがない場合
        """
        pages = self._context.pages
        target: Optional[Page] = None
        if index is not None:
            if not 0 <= index < len(pages):
                raise ValueError(f"タブ {index} は存在しません（{len(pages)} タブ）")
            target = pages[index]
        elif title is not None:
            for page in pages:
                if title in await page.title():
                    target = page
                    break
            if target is None:
                raise ValueError(f"タイトルに '{title}' を含むタブがありません")
        else:
            raise ValueError("tabIndex または tabTitle を指定してください")

        await target.bring_to_front()
        self._page = target
        logger.debug("タブを切り替えました: %s", target.url)

    async def close_tab(self) -> None:
        closing = self._page
        await closing.close()
        remaining = [p for p in self._context.pages if p is not closing]
        if remaining:
            self._page = remaining[-1]
            await self._page.bring_to_front()
        logger.debug("タブを閉じました（残り %d タブ）", len(remaining))


# ---------------------------------------------------------------------------
# ページ安定性
# ---------------------------------------------------------------------------

class PlaywrightStabilityMonitor:
    """StabilityMonitor の Playwright 実装。

    どのメソッドもタイムアウト時は TimeoutError を送出する。
    タブ切り替えに追従するため、PlaywrightPage の現在ページを都度参照する。
    """

    def __init__(self, caps: PlaywrightPage) -> None:
        self._caps = caps

    async def wait_for_network_idle(self, timeout_ms: int) -> None:
        try:
            await self._caps.page.wait_for_load_state("networkidle", timeout=timeout_ms)
            logger.debug("ネットワークが安定しました")
        except Exception as exc:
            raise TimeoutError(
                f"ネットワークが {timeout_ms}ms 以内に安定しませんでした: {exc}"
            ) from exc

    async def wait_for_dom_settled(self, quiet_ms: int, timeout_ms: int) -> None:
        settled = await self._caps.page.evaluate(_DOM_SETTLED_JS, [quiet_ms, timeout_ms])
        if not settled:
            raise TimeoutError(f"DOM が {timeout_ms}ms 以内に安定しませんでした")
        logger.debug("DOM が %dms 変化しませんでした", quiet_ms)

    async def wait_for_element(self, selector: str, timeout_ms: int) -> None:
        try:
            await self._caps.page.wait_for_selector(
                selector, state="visible", timeout=timeout_ms,
            )
        except Exception as exc:
            raise TimeoutError(
                f"要素 '{selector}' が {timeout_ms}ms 以内に表示されませんでした: {exc}"
            ) from exc

    async def wait_for_stable(self, timeout_ms: int) -> None:
        """ローディング表示が消えた後、ネットワークが安定するまで待つ。"""
        start = time.perf_counter()
        deadline_sec = timeout_ms / 1000.0
        page = self._caps.page

        while await page.evaluate(_LOADING_VISIBLE_JS, list(LOADING_INDICATOR_SELECTORS)):
            if time.perf_counter() - start >= deadline_sec:
                raise TimeoutError(f"ローディング表示が {timeout_ms}ms 以内に消えませんでした")
            await page.wait_for_timeout(100)

        remaining = max(1, int(timeout_ms - (time.perf_counter() - start) * 1000))
        await self.wait_for_network_idle(remaining)


# ---------------------------------------------------------------------------
# 強調表示
# ---------------------------------------------------------------------------

class PlaywrightHighlighter:
    """操作対象の要素に一時的な枠線を付ける。元のスタイルは時間経過で戻す。"""

    async def highlight(self, element: ElementHandle, duration_ms: int) -> None:
        await element.evaluate(_HIGHLIGHT_JS, duration_ms)
