"""
ロケータ検索ルーチンのユニットテスト

テスト対象:
  - implicit_role() / accessible_name() / short_text()
  - query_locator(): text・role・shadowDOM・xpath（Shadow root 経由を含む）・CSS の各戦略
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from fake_page import FakeElement, FakePage
from ghostreplay.core.capability import ElementSnapshot
from ghostreplay.core.lookup import (
    accessible_name,
    implicit_role,
    query_locator,
    role_locator_value,
    short_text,
    text_locator_value,
)
from ghostreplay.dsl.schema import Locator, LocatorStrategy


def _locator(strategy: str, value: str) -> Locator:
    return Locator(strategy=LocatorStrategy(strategy), value=value, confidence=0.5)


# ---------------------------------------------------------------------------
# テキスト・ロールのユーティリティ
# ---------------------------------------------------------------------------

class TestImplicitRole:
    """implicit_role() のテスト。"""

    @pytest.mark.parametrize("tag,attrs,expected", [
        ("button", {}, "button"),
        ("a", {"href": "/home"}, "link"),
        ("a", {}, None),
        ("input", {}, "textbox"),
        ("input", {"type": "checkbox"}, "checkbox"),
        ("input", {"type": "submit"}, "button"),
        ("select", {}, "combobox"),
        ("div", {"role": "Tab extra"}, "tab"),
        ("div", {}, None),
    ])
    def test_roles(self, tag, attrs, expected):
        assert implicit_role(ElementSnapshot(tag, attrs)) == expected


class TestTextHelpers:
    """テキストユーティリティのテスト。"""

    def test_short_text_uses_first_line(self):
        assert short_text("\n  保存  する \n二行目") == "保存 する"

    def test_short_text_rejects_long_text(self):
        assert short_text("あ" * 51) is None

    def test_accessible_name_prefers_aria_label(self):
        snapshot = ElementSnapshot("button", {"aria-label": "閉じる"}, "×")
        assert accessible_name(snapshot) == "閉じる"

    def test_accessible_name_empty(self):
        assert accessible_name(ElementSnapshot("div")) is None

    @given(st.text(
        alphabet=st.characters(whitelist_categories=("L", "N"), whitelist_characters=" \"\\"),
        min_size=1, max_size=20,
    ).filter(str.strip))
    async def test_text_locator_round_trip(self, text):
        """引用符やバックスラッシュを含むテキストもエスケープ後に再検索できる。"""
        target = FakeElement("button", text=text)
        page = FakePage(target)
        value = text_locator_value("button", text)
        assert await query_locator(page, _locator("text", value)) == [target]


# ---------------------------------------------------------------------------
# query_locator
# ---------------------------------------------------------------------------

class TestQueryLocator:
    """query_locator() のテスト。"""

    async def test_css(self):
        target = FakeElement("input", {"id": "email"})
        page = FakePage(target, FakeElement("input", {"id": "other"}))
        assert await query_locator(page, _locator("id", "#email")) == [target]

    async def test_text_matches_case_insensitively(self):
        target = FakeElement("button", text="Save  Draft")
        page = FakePage(FakeElement("button", text="Cancel"), target)
        found = await query_locator(page, _locator("text", 'button:has-text("save draft")'))
        assert found == [target]

    async def test_text_with_escaped_quote(self):
        target = FakeElement("a", {"href": "#"}, text='Say "hi"')
        page = FakePage(target)
        value = text_locator_value("a", 'Say "hi"')
        assert await query_locator(page, _locator("text", value)) == [target]

    async def test_malformed_text_value_returns_empty(self):
        page = FakePage(FakeElement("button", text="保存"))
        assert await query_locator(page, _locator("text", "保存")) == []

    async def test_role_checks_role_and_name(self):
        target = FakeElement("button", text="送信")
        link = FakeElement("a", {"href": "/send"}, text="送信")
        page = FakePage(link, target, FakeElement("div", {"role": "button"}, text="戻る"))
        assert await query_locator(page, _locator("role", role_locator_value("button", "送信"))) == [target]
        assert await query_locator(page, _locator("role", role_locator_value("link", "送信"))) == [link]

    async def test_role_explicit_attribute(self):
        target = FakeElement("div", {"role": "button"}, text="戻る")
        page = FakePage(target)
        assert await query_locator(page, _locator("role", 'role=button[name="戻る"]')) == [target]

    async def test_shadow_chain(self):
        inner = FakeElement("button", {"class": "inner-btn"}, text="OK")
        host = FakeElement("my-widget", {"id": "widget"})
        host.attach_shadow(inner)
        page = FakePage(host)

        # 文書からの通常検索では Shadow tree に届かない
        assert await query_locator(page, _locator("cssPath", "button.inner-btn")) == []
        found = await query_locator(
            page, _locator("shadowDOM", "my-widget#widget >>> button.inner-btn"),
        )
        assert found == [inner]

    async def test_shadow_chain_missing_host(self):
        page = FakePage(FakeElement("div"))
        assert await query_locator(page, _locator("shadowDOM", "x-host >>> button")) == []

    async def test_xpath(self):
        first = FakeElement("input")
        second = FakeElement("input")
        page = FakePage(first, second)
        found = await query_locator(page, _locator("xpath", "/html[1]/body[1]/input[2]"))
        assert found == [second]

    async def test_xpath_through_shadow_root(self):
        inner = FakeElement("button", text="OK")
        host = FakeElement("my-widget")
        host.attach_shadow(FakeElement("button", text="戻る"), inner)
        page = FakePage(host)

        value = "/html[1]/body[1]/my-widget[1] >>> ./button[2]"
        assert await query_locator(page, _locator("xpath", value)) == [inner]
        assert await query_locator(page, _locator("xpath", "/html[1]/body[1]/button[2]")) == []

    async def test_xpath_chain_missing_host(self):
        page = FakePage(FakeElement("div"))
        value = "/html[1]/body[1]/my-widget[1] >>> ./button[1]"
        assert await query_locator(page, _locator("xpath", value)) == []
