"""
ロケータ検索 — 戦略ごとの要素検索ルーチン

SelectorSynthesizer の一意性検査と ElementResolver の要素解決は、
同じ query_locator() を使う。合成時に受理されたロケータは、
再生時にも同じ規則で検索される。

戦略ごとの検索方法:
  - testId / id / aria / name / class / cssPath: CSS セレクタの直接検索
  - xpath: XPath 式の直接検索。Shadow tree 内の要素は " >>> " 区切りで
    ホストの絶対 XPath と Shadow root からの相対 XPath を連ねる
  - text: タグで候補を絞り、表示テキストを走査
  - role: ロール候補を絞り、ロールとアクセシブルネームを走査
  - shadowDOM: " >>> " で区切られたホスト列を順に辿って Shadow root 内を検索
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..dsl.schema import Locator, LocatorStrategy
from .capability import Element, ElementSnapshot, PageCapabilities

logger = logging.getLogger(__name__)

# Shadow DOM 貫通チェーンの区切り
SHADOW_SEPARATOR = " >>> "

# text / role 戦略に使うテキストの最大長
MAX_TEXT_LENGTH = 50

_TEXT_VALUE = re.compile(r'^(?P<tag>[a-z][a-z0-9-]*|\*):has-text\("(?P<text>(?:[^"\\]|\\.)*)"\)$')
_ROLE_VALUE = re.compile(r'^role=(?P<role>[a-z]+)\[name="(?P<name>(?:[^"\\]|\\.)*)"\]$')
_UNESCAPE = re.compile(r"\\(.)")
_WHITESPACE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# 暗黙ロール
# ---------------------------------------------------------------------------

_TAG_ROLES = {
    "button": "button",
    "select": "combobox",
    "textarea": "textbox",
    "img": "img",
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
    "aside": "complementary",
    "form": "form",
    "dialog": "dialog",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
    "table": "table",
    "tr": "row",
    "td": "cell",
    "th": "columnheader",
    "option": "option",
    "h1": "heading",
    "h2": "heading",
    "h3": "heading",
    "h4": "heading",
    "h5": "heading",
    "h6": "heading",
}

_INPUT_TYPE_ROLES = {
    "button": "button",
    "submit": "button",
    "reset": "button",
    "image": "button",
    "checkbox": "checkbox",
    "radio": "radio",
    "range": "slider",
    "number": "spinbutton",
    "search": "searchbox",
    "text": "textbox",
    "email": "textbox",
    "tel": "textbox",
    "url": "textbox",
}


def implicit_role(snapshot: ElementSnapshot) -> Optional[str]:
    """明示的な role 属性、なければタグから導かれる暗黙ロールを返す。"""
    explicit = snapshot.attr("role")
    if explicit:
        return explicit.split()[0].lower()
    if snapshot.tag == "a":
        return "link" if snapshot.attr("href") else None
    if snapshot.tag == "input":
        return _INPUT_TYPE_ROLES.get((snapshot.attr("type") or "text").lower())
    return _TAG_ROLES.get(snapshot.tag)


def _role_candidates_css(role: str) -> str:
    """ロールを持ちうる要素を絞り込む CSS セレクタを返す。"""
    parts = [f'[role="{role}"]']
    parts.extend(tag for tag, r in _TAG_ROLES.items() if r == role)
    if role == "link":
        parts.append("a[href]")
    if role in _INPUT_TYPE_ROLES.values():
        parts.append("input")
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# テキストユーティリティ
# ---------------------------------------------------------------------------

def css_string(value: str) -> str:
    """CSS 属性セレクタ用にダブルクォートで囲んだ文字列を返す。"""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unescape(value: str) -> str:
    return _UNESCAPE.sub(r"\1", value)


def normalize_text(text: str) -> str:
    """空白を1つにまとめて前後を除去する。"""
    return _WHITESPACE.sub(" ", text).strip()


def short_text(text: str) -> Optional[str]:
    """text 戦略に使える短いテキスト（1行目、50文字以内）を返す。"""
    for line in text.splitlines():
        line = normalize_text(line)
        if line:
            return line if len(line) <= MAX_TEXT_LENGTH else None
    return None


def accessible_name(snapshot: ElementSnapshot) -> Optional[str]:
    """簡易的なアクセシブルネーム（aria-label、title、テキスト先頭50文字の順）を返す。"""
    name = snapshot.attr("aria-label") or snapshot.attr("title")
    if name:
        return normalize_text(name)
    text = normalize_text(snapshot.text)
    return text[:MAX_TEXT_LENGTH].strip() or None


def _same_text(a: Optional[str], b: str) -> bool:
    return a is not None and a.casefold() == normalize_text(b).casefold()


# ---------------------------------------------------------------------------
# ロケータ値の生成
# ---------------------------------------------------------------------------

def text_locator_value(tag: str, text: str) -> str:
    """text 戦略のロケータ値を生成する。"""
    return f"{tag}:has-text({css_string(text)})"


def role_locator_value(role: str, name: str) -> str:
    """role 戦略のロケータ値を生成する。"""
    return f"role={role}[name={css_string(name)}]"


# ---------------------------------------------------------------------------
# 検索ルーチン
# ---------------------------------------------------------------------------

async def query_locator(caps: PageCapabilities, locator: Locator) -> list[Element]:
    """ロケータに一致する全要素を文書順で返す。

    操作可能かどうかは判定しない。値の形式が戦略に合わない場合は空リストを返す。

    Args:
        caps: ページ操作インターフェース
        locator: 検索するロケータ

    Returns:
        一致した要素のリスト
    """
    if locator.strategy == LocatorStrategy.XPATH:
        return await query_xpath_chain(caps, locator.value)
    if locator.strategy == LocatorStrategy.TEXT:
        return await _query_text(caps, locator.value)
    if locator.strategy == LocatorStrategy.ROLE:
        return await _query_role(caps, locator.value)
    if locator.strategy == LocatorStrategy.SHADOW_DOM:
        return await query_shadow_chain(caps, locator.value)
    return await caps.query_css(locator.value)


async def _query_text(caps: PageCapabilities, value: str) -> list[Element]:
    """タグで候補を絞り、表示テキストが一致する要素を返す。"""
    match = _TEXT_VALUE.match(value)
    if match is None:
        logger.debug("text ロケータの形式が不正です: %s", value)
        return []
    text = _unescape(match.group("text"))

    found = []
    for element in await caps.query_css(match.group("tag")):
        snapshot = await caps.describe(element)
        if _same_text(short_text(snapshot.text), text):
            found.append(element)
    return found


async def _query_role(caps: PageCapabilities, value: str) -> list[Element]:
    """ロールとアクセシブルネームが一致する要素を返す。"""
    match = _ROLE_VALUE.match(value)
    if match is None:
        logger.debug("role ロケータの形式が不正です: %s", value)
        return []
    role = match.group("role")
    name = _unescape(match.group("name"))

    found = []
    for element in await caps.query_css(_role_candidates_css(role)):
        snapshot = await caps.describe(element)
        if implicit_role(snapshot) == role and _same_text(accessible_name(snapshot), name):
            found.append(element)
    return found


async def query_shadow_chain(caps: PageCapabilities, value: str) -> list[Element]:
    """" >>> " 区切りのホスト列を辿り、最内の Shadow root 内で検索する。"""
    parts = [part.strip() for part in value.split(SHADOW_SEPARATOR.strip())]
    roots: list[Optional[Element]] = [None]

    for part in parts[:-1]:
        next_roots: list[Optional[Element]] = []
        for root in roots:
            for host in await caps.query_css(part, root):
                shadow = await caps.shadow_root(host)
                if shadow is not None:
                    next_roots.append(shadow)
        if not next_roots:
            return []
        roots = next_roots

    found: list[Element] = []
    for root in roots:
        found.extend(await caps.query_css(parts[-1], root))
    return found


async def query_xpath_chain(caps: PageCapabilities, value: str) -> list[Element]:
    """XPath を評価する。" >>> " を含む場合は Shadow root を文脈ノードにして順に辿る。

    先頭は文書ルートからの絶対パス、以降は各 Shadow root からの相対パス
    （"./tag[n]/..."）とする。
    """
    parts = [part.strip() for part in value.split(SHADOW_SEPARATOR.strip())]
    roots: list[Optional[Element]] = [None]

    for part in parts[:-1]:
        next_roots: list[Optional[Element]] = []
        for root in roots:
            for host in await caps.query_xpath(part, root):
                shadow = await caps.shadow_root(host)
                if shadow is not None:
                    next_roots.append(shadow)
        if not next_roots:
            return []
        roots = next_roots

    found: list[Element] = []
    for root in roots:
        found.extend(await caps.query_xpath(parts[-1], root))
    return found
