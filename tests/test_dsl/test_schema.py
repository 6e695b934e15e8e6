"""
スクリプトスキーマのユニットテスト

テスト対象:
  - Locator / LocatorSet: confidence 範囲、降順の検証、推奨ロケータ
  - WaitHint: 省略記法（整数・文字列・ハイフン表記）
  - Step: 修飾キー検証、マウスボタン、describe()
  - Script: デフォルト値、未知のステップ種別の保持
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from conftest import confidences
from ghostreplay.dsl.schema import (
    Locator,
    LocatorSet,
    LocatorStrategy,
    Script,
    Step,
    WaitHint,
    WaitKind,
)


# ---------------------------------------------------------------------------
# Locator / LocatorSet
# ---------------------------------------------------------------------------

class TestLocator:
    """Locator のテスト。"""

    def test_confidence_out_of_range_rejected(self):
        """confidence が 0〜1 の範囲外ならエラーになる。"""
        with pytest.raises(ValidationError):
            Locator(strategy="id", value="#a", confidence=1.5)

    def test_empty_value_rejected(self):
        with pytest.raises(ValidationError):
            Locator(strategy="id", value="", confidence=0.9)

    def test_is_css(self):
        """CSS として直接使える戦略だけ is_css が True になる。"""
        assert Locator(strategy="testId", value="[data-testid=\"a\"]", confidence=0.95).is_css
        assert Locator(strategy="cssPath", value="body > a", confidence=0.3).is_css
        assert not Locator(strategy="xpath", value="/html[1]", confidence=0.2).is_css
        assert not Locator(strategy="role", value='role=button[name="OK"]', confidence=0.7).is_css

    def test_frozen(self):
        loc = Locator(strategy="id", value="#a", confidence=0.9)
        with pytest.raises(ValidationError):
            loc.value = "#b"


class TestLocatorSet:
    """LocatorSet のテスト。"""

    def test_empty_locators_rejected(self):
        """ロケータが0件の LocatorSet は作れない。"""
        with pytest.raises(ValidationError):
            LocatorSet(locators=[])

    def test_ascending_order_rejected(self):
        """confidence が昇順に並んでいるとエラーになる。"""
        with pytest.raises(ValidationError, match="降順"):
            LocatorSet(locators=[
                Locator(strategy="xpath", value="/html[1]", confidence=0.2),
                Locator(strategy="id", value="#a", confidence=0.9),
            ])

    def test_recommended_is_first(self):
        ls = LocatorSet(locators=[
            Locator(strategy="id", value="#a", confidence=0.9),
            Locator(strategy="xpath", value="/html[1]", confidence=0.2),
        ])
        assert ls.recommended.strategy == LocatorStrategy.ID

    @given(st.lists(confidences, min_size=1, max_size=8))
    def test_sorted_confidences_always_accepted(self, values: list[float]):
        """降順に並べた confidence 列は常に受理される。"""
        ordered = sorted(values, reverse=True)
        ls = LocatorSet(locators=[
            Locator(strategy="cssPath", value=f"div:nth-of-type({i + 1})", confidence=c)
            for i, c in enumerate(ordered)
        ])
        assert [loc.confidence for loc in ls.locators] == ordered


# ---------------------------------------------------------------------------
# WaitHint
# ---------------------------------------------------------------------------

class TestWaitHint:
    """WaitHint の省略記法のテスト。"""

    def test_integer_shorthand_is_duration(self):
        hint = WaitHint.model_validate(1500)
        assert hint.type == WaitKind.DURATION
        assert hint.duration == 1500

    def test_string_shorthand(self):
        assert WaitHint.model_validate("networkIdle").type == WaitKind.NETWORK_IDLE

    @pytest.mark.parametrize("alias,kind", [
        ("network-idle", WaitKind.NETWORK_IDLE),
        ("dom-settled", WaitKind.DOM_SETTLED),
        ("element-appeared", WaitKind.ELEMENT_APPEARED),
        ("loading-complete", WaitKind.LOADING_COMPLETE),
    ])
    def test_hyphen_aliases(self, alias: str, kind: WaitKind):
        assert WaitHint.model_validate({"type": alias}).type == kind

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            WaitHint.model_validate({"type": "forever"})

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            WaitHint(type="duration", duration=-1)


# ---------------------------------------------------------------------------
# Step / Script
# ---------------------------------------------------------------------------

class TestStep:
    """Step のテスト。"""

    def test_unknown_modifier_rejected(self):
        with pytest.raises(ValidationError, match="修飾キー"):
            Step(type="keypress", key="a", modifiers=["Hyper"])

    def test_valid_modifiers(self):
        step = Step(type="keypress", key="a", modifiers=["Control", "Shift"])
        assert step.modifiers == ["Control", "Shift"]

    def test_describe_prefers_name(self):
        step = Step(type="click", name="保存ボタン")
        assert step.describe() == "click: 保存ボタン"

    def test_describe_uses_human_label(self):
        step = Step(type="click", locatorSet={
            "locators": [{"strategy": "id", "value": "#save", "confidence": 0.9}],
            "humanLabel": "保存 button",
        })
        assert step.describe() == "click: 保存 button"

    def test_describe_falls_back_to_url_then_type(self):
        assert Step(type="navigate", url="http://x/").describe() == "navigate: http://x/"
        assert Step(type="closeTab").describe() == "closeTab"

    def test_empty_type_rejected(self):
        with pytest.raises(ValidationError):
            Step(type="")

    def test_mouse_button(self):
        assert Step(type="click").button == 0
        assert Step.model_validate({"type": "click", "button": 2}).button == 2
        with pytest.raises(ValidationError):
            Step(type="click", button=5)


class TestScript:
    """Script のテスト。"""

    def test_defaults(self):
        script = Script()
        assert script.title == "untitled"
        assert script.steps == []

    def test_unknown_step_type_is_kept(self):
        """未知のステップ種別でも読み込みは成功する。"""
        script = Script.model_validate({"steps": [{"type": "teleport"}]})
        assert script.steps[0].type == "teleport"

    def test_loads_sample(self, sample_script_dict: dict):
        script = Script.model_validate(sample_script_dict)
        assert len(script.steps) == 3
        assert script.steps[2].waitHint.type == WaitKind.NETWORK_IDLE
