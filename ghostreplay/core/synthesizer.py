"""
セレクタ合成 — 記録対象要素から順位付きロケータ集合を生成

1つの要素に対して複数の戦略でロケータ候補を生成し、
想定される安定度（confidence）の降順に並べた LocatorSet を返す。
どの単一セレクタもページ変更の全てには耐えられないため、
再生側は上位から順に試して縮退できるようにしておく。

生成順と基本 confidence:
  testId (0.95) → id (0.90) → aria (0.85) → name (0.80) → text (0.75)
  → role (0.70) → shadowDOM (0.60) → class (0.50) → cssPath (0.30) → xpath (0.20)

xpath 以外の候補は、query_locator() で再検索して「ちょうど1件」かつ
「元の要素そのもの」が返った場合だけ採用する。xpath は無条件に採用するため、
結果が空になることはない。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ..dsl.schema import BoundingBox, Locator, LocatorSet, LocatorStrategy
from .capability import Element, ElementSnapshot, PageCapabilities
from .lookup import (
    SHADOW_SEPARATOR,
    accessible_name,
    css_string,
    implicit_role,
    normalize_text,
    query_locator,
    role_locator_value,
    short_text,
    text_locator_value,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 戦略定数
# ---------------------------------------------------------------------------

CONFIDENCE = {
    LocatorStrategy.TEST_ID: 0.95,
    LocatorStrategy.ID: 0.90,
    LocatorStrategy.ARIA: 0.85,
    LocatorStrategy.NAME: 0.80,
    LocatorStrategy.TEXT: 0.75,
    LocatorStrategy.ROLE: 0.70,
    LocatorStrategy.SHADOW_DOM: 0.60,
    LocatorStrategy.CLASS: 0.50,
    LocatorStrategy.CSS_PATH: 0.30,
    LocatorStrategy.XPATH: 0.20,
}

TEST_ID_ATTRIBUTES = ("data-testid", "data-test", "data-cy", "data-test-id", "data-qa")

# name 属性を使うフォーム要素
_FORM_TAGS = frozenset({"input", "select", "textarea", "button"})

# text 戦略の対象となるクリック可能なタグ
_CLICKABLE_TAGS = frozenset({"button", "a", "label"})

# 人間向けラベルの所在に使うランドマーク
_LANDMARK_TAGS = frozenset({"header", "footer", "nav", "main", "aside", "section", "form", "dialog"})
_LANDMARK_ROLES = frozenset({
    "banner", "contentinfo", "navigation", "main", "complementary",
    "region", "form", "dialog", "search",
})

# 自動生成された ID（UUID・連番・React useId）
_DYNAMIC_ID_PATTERNS = (
    re.compile(r"^[a-f0-9-]{20,}$", re.IGNORECASE),
    re.compile(r"^\d+$"),
    re.compile(r":r[0-9a-z]*:"),
)

# CSS-in-JS 等が生成するクラス
_DYNAMIC_CLASS_PATTERNS = (
    re.compile(r"^[a-z]{1,3}-[a-f0-9]+$", re.IGNORECASE),
    re.compile(r"^css-[a-z0-9]+$", re.IGNORECASE),
    re.compile(r"^\d+$"),
)

_CSS_IDENT = re.compile(r"^-?[A-Za-z_][A-Za-z0-9_-]*$")

_MAX_CLASSES = 3


def is_dynamic_id(value: str) -> bool:
    """自動生成と思われる ID かどうかを返す。"""
    return any(p.search(value) for p in _DYNAMIC_ID_PATTERNS)


def stable_classes(class_attr: Optional[str]) -> list[str]:
    """class 属性から安定していそうなクラス名だけを出現順で返す。"""
    if not class_attr:
        return []
    result = []
    for name in class_attr.split():
        if len(name) < 3 or not _CSS_IDENT.match(name):
            continue
        if any(p.match(name) for p in _DYNAMIC_CLASS_PATTERNS):
            continue
        if name not in result:
            result.append(name)
    return result


def id_selector(value: str) -> str:
    """ID の CSS セレクタを返す。識別子として使えない ID は属性セレクタにする。"""
    if _CSS_IDENT.match(value):
        return f"#{value}"
    return f"[id={css_string(value)}]"


# ---------------------------------------------------------------------------
# 生成候補
# ---------------------------------------------------------------------------

@dataclass
class _Candidate:
    strategy: LocatorStrategy
    value: str


# ---------------------------------------------------------------------------
# SelectorSynthesizer 本体
# ---------------------------------------------------------------------------

class SelectorSynthesizer:
    """要素から LocatorSet を合成する。

    状態を持たず、同じページ・同じ要素に対しては同じ結果を返す。

    使用例::

        synthesizer = SelectorSynthesizer(caps)
        locator_set = await synthesizer.synthesize(element)
    """

    def __init__(self, caps: PageCapabilities) -> None:
        self._caps = caps

    # -------------------------------------------------------------------
    # パブリック API
    # -------------------------------------------------------------------

    async def synthesize(self, element: Element) -> LocatorSet:
        """要素のロケータ集合を生成する。

        Args:
            element: 記録対象の要素

        Returns:
            confidence 降順の LocatorSet（常に1件以上）
        """
        snapshot = await self._caps.describe(element)
        hosts = await self._shadow_hosts(element)

        accepted: list[Locator] = []
        for group in await self._generate(element, snapshot, hosts):
            # グループ内は具体的な順に並んでおり、最初に一意になったものだけを採用する
            for candidate in group:
                if await self._is_unique_match(candidate, element):
                    accepted.append(_make_locator(candidate))
                    break
                logger.debug(
                    "候補を棄却しました（一意でないか別要素に一致）: %s=%s",
                    candidate.strategy.value, candidate.value,
                )

        xpath = _Candidate(LocatorStrategy.XPATH, await self._xpath(element))
        accepted.append(_make_locator(xpath))

        # 安定ソート: 同一 confidence は生成順を保つ
        accepted.sort(key=lambda loc: -loc.confidence)

        state = await self._caps.get_state(element)
        box = None
        if state.rect is not None:
            box = BoundingBox(
                x=state.rect.x, y=state.rect.y,
                width=state.rect.width, height=state.rect.height,
            )

        shadow_path = None
        if hosts:
            shadow_path = [await self._simple_selector(h) for h in hosts]

        locator_set = LocatorSet(
            locators=accepted,
            humanLabel=await self.human_label(element, snapshot),
            boundingBox=box,
            shadowPath=shadow_path,
            tagName=snapshot.tag,
        )
        logger.debug(
            "ロケータ集合を生成しました: %s（%d 件、推奨: %s）",
            locator_set.humanLabel, len(accepted), locator_set.recommended.value,
        )
        return locator_set

    async def human_label(
        self, element: Element, snapshot: Optional[ElementSnapshot] = None
    ) -> str:
        """診断・テイクオーバー表示用の説明文を生成する。

        形式: "<説明> <ロール|type|タグ> in <ランドマーク>"
        """
        if snapshot is None:
            snapshot = await self._caps.describe(element)

        descriptor = await self._descriptor(snapshot)
        if snapshot.attr("role"):
            kind = snapshot.attr("role")
        elif snapshot.tag == "input":
            kind = snapshot.attr("type") or "text"
        else:
            kind = implicit_role(snapshot) or snapshot.tag

        label = f"{descriptor} {kind}" if descriptor else kind
        landmark = await self._landmark_name(element)
        if landmark:
            label += f" in {landmark}"
        return label

    # -------------------------------------------------------------------
    # 候補生成
    # -------------------------------------------------------------------

    async def _generate(
        self, element: Element, snapshot: ElementSnapshot, hosts: list[Element]
    ) -> list[list[_Candidate]]:
        """xpath 以外の候補を戦略ごとのグループにして生成順に返す。"""
        tag = snapshot.tag
        groups: list[list[_Candidate]] = []

        for attr in TEST_ID_ATTRIBUTES:
            value = snapshot.attr(attr)
            if value:
                groups.append([_Candidate(
                    LocatorStrategy.TEST_ID, f"[{attr}={css_string(value)}]",
                )])
                break

        element_id = snapshot.attr("id")
        if element_id and not is_dynamic_id(element_id):
            groups.append([_Candidate(LocatorStrategy.ID, id_selector(element_id))])

        aria_label = snapshot.attr("aria-label")
        labelledby = snapshot.attr("aria-labelledby")
        if aria_label:
            groups.append([_Candidate(
                LocatorStrategy.ARIA, f"{tag}[aria-label={css_string(aria_label)}]",
            )])
        elif labelledby:
            groups.append([_Candidate(
                LocatorStrategy.ARIA, f"[aria-labelledby={css_string(labelledby)}]",
            )])

        name = snapshot.attr("name")
        if name and tag in _FORM_TAGS:
            groups.append([_Candidate(
                LocatorStrategy.NAME, f"{tag}[name={css_string(name)}]",
            )])

        text = short_text(snapshot.text)
        if text and (tag in _CLICKABLE_TAGS or snapshot.attr("role") == "button"):
            groups.append([_Candidate(LocatorStrategy.TEXT, text_locator_value(tag, text))])

        role = implicit_role(snapshot)
        accessible = accessible_name(snapshot)
        if role and accessible:
            groups.append([_Candidate(LocatorStrategy.ROLE, role_locator_value(role, accessible))])

        if hosts:
            chain = [await self._simple_selector(h) for h in hosts]
            chain.append(await self._simple_selector(element, snapshot))
            groups.append([_Candidate(
                LocatorStrategy.SHADOW_DOM, SHADOW_SEPARATOR.join(chain),
            )])

        # クラス数の多い組み合わせから試す
        classes = stable_classes(snapshot.attr("class"))[:_MAX_CLASSES]
        if classes:
            groups.append([
                _Candidate(LocatorStrategy.CLASS, tag + "".join(f".{c}" for c in classes[:count]))
                for count in range(len(classes), 0, -1)
            ])

        css_path = await self._css_path(element)
        if css_path:
            groups.append([_Candidate(LocatorStrategy.CSS_PATH, css_path)])

        return groups

    async def _is_unique_match(self, candidate: _Candidate, element: Element) -> bool:
        """候補を再検索し、一致がちょうど1件で元の要素そのものかを返す。"""
        try:
            matches = await query_locator(self._caps, _make_locator(candidate))
        except Exception as exc:  # noqa: BLE001
            logger.debug("候補の再検索に失敗しました: %s: %s", candidate.value, exc)
            return False
        return len(matches) == 1 and await self._caps.same_element(matches[0], element)

    # -------------------------------------------------------------------
    # 構造パス
    # -------------------------------------------------------------------

    async def _css_path(self, element: Element) -> Optional[str]:
        """安定 ID を持つ祖先または body からの構造パスを生成する。"""
        parts: list[str] = []
        current: Optional[Element] = element

        while current is not None:
            snapshot = await self._caps.describe(current)
            if snapshot.tag in ("body", "html"):
                parts.insert(0, snapshot.tag)
                break

            element_id = snapshot.attr("id")
            if current is not element and element_id and not is_dynamic_id(element_id):
                parts.insert(0, id_selector(element_id))
                break

            parent = await self._caps.parent(current)
            segment = snapshot.tag
            if parent is not None:
                index, same_tag = await self._position(parent, current, snapshot.tag)
                if same_tag > 1:
                    segment += f":nth-of-type({index})"
            parts.insert(0, segment)
            current = parent

        if len(parts) <= 1:
            return None
        return " > ".join(parts)

    async def _xpath(self, element: Element) -> str:
        """文書ルートからの絶対 XPath を生成する。

        Shadow tree 内の要素は、ホストの絶対 XPath に Shadow root からの
        相対 XPath を " >>> " で連ねる。
        """
        segments: list[str] = []
        current: Optional[Element] = element

        while current is not None:
            parts: list[str] = []
            top = current
            while current is not None:
                snapshot = await self._caps.describe(current)
                parent = await self._caps.parent(current)
                index = 1
                if parent is not None:
                    index, _ = await self._position(parent, current, snapshot.tag)
                else:
                    index = await self._root_position(current, snapshot.tag)
                parts.insert(0, f"{snapshot.tag}[{index}]")
                top = current
                current = parent

            host = await self._caps.shadow_host(top)
            if host is None:
                segments.insert(0, "/" + "/".join(parts))
            else:
                segments.insert(0, "./" + "/".join(parts))
            current = host

        return SHADOW_SEPARATOR.join(segments)

    async def _root_position(self, element: Element, tag: str) -> int:
        """Shadow root 直下の要素について、同じタグの兄弟の中での位置を返す。"""
        host = await self._caps.shadow_host(element)
        if host is None:
            return 1
        root = await self._caps.shadow_root(host)
        if root is None:
            return 1
        index, _ = await self._position(root, element, tag)
        return index

    async def _position(
        self, parent: Element, element: Element, tag: str
    ) -> tuple[int, int]:
        """同じタグの兄弟の中での 1 始まりの位置と、その兄弟数を返す。"""
        index = 0
        count = 0
        for sibling in await self._caps.children(parent):
            if (await self._caps.describe(sibling)).tag != tag:
                continue
            count += 1
            if index == 0 and await self._caps.same_element(sibling, element):
                index = count
        return index or 1, count

    # -------------------------------------------------------------------
    # Shadow DOM
    # -------------------------------------------------------------------

    async def _shadow_hosts(self, element: Element) -> list[Element]:
        """要素を内包する Shadow ホストを外側から順に返す。"""
        hosts: list[Element] = []
        host = await self._caps.shadow_host(element)
        while host is not None:
            hosts.insert(0, host)
            host = await self._caps.shadow_host(host)
        return hosts

    async def _simple_selector(
        self, element: Element, snapshot: Optional[ElementSnapshot] = None
    ) -> str:
        """Shadow チェーン用の単純セレクタ（tag#id、tag.class、tag）を返す。"""
        if snapshot is None:
            snapshot = await self._caps.describe(element)
        element_id = snapshot.attr("id")
        if element_id and not is_dynamic_id(element_id) and _CSS_IDENT.match(element_id):
            return f"{snapshot.tag}#{element_id}"
        classes = stable_classes(snapshot.attr("class"))
        if classes:
            return f"{snapshot.tag}.{classes[0]}"
        return snapshot.tag

    # -------------------------------------------------------------------
    # 人間向けラベル
    # -------------------------------------------------------------------

    async def _descriptor(self, snapshot: ElementSnapshot) -> Optional[str]:
        """明示ラベル、aria-label、title、placeholder、name、短いテキストの順で説明語を返す。"""
        label = await self._explicit_label(snapshot)
        if label:
            return label
        for attr in ("aria-label", "title", "placeholder", "name"):
            value = snapshot.attr(attr)
            if value:
                return normalize_text(value)
        return short_text(snapshot.text)

    async def _explicit_label(self, snapshot: ElementSnapshot) -> Optional[str]:
        """<label for="id"> のテキストを返す。"""
        element_id = snapshot.attr("id")
        if not element_id:
            return None
        for label in await self._caps.query_css(f"label[for={css_string(element_id)}]"):
            text = short_text((await self._caps.describe(label)).text)
            if text:
                return text
        return None

    async def _landmark_name(self, element: Element) -> Optional[str]:
        """最も近いランドマーク祖先の名前（aria-label、id、タグの順）を返す。"""
        current = await self._caps.parent(element)
        while current is not None:
            snapshot = await self._caps.describe(current)
            if snapshot.tag in _LANDMARK_TAGS or snapshot.attr("role") in _LANDMARK_ROLES:
                return (
                    snapshot.attr("aria-label")
                    or snapshot.attr("id")
                    or snapshot.tag
                )
            current = await self._caps.parent(current)
        return None


def _make_locator(candidate: _Candidate) -> Locator:
    strategy = candidate.strategy
    return Locator(
        strategy=strategy,
        value=candidate.value,
        confidence=CONFIDENCE[strategy],
        isTextBased=strategy == LocatorStrategy.TEXT,
        isRoleBased=strategy == LocatorStrategy.ROLE,
        isShadowPiercing=strategy == LocatorStrategy.SHADOW_DOM,
    )
