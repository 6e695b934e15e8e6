"""
スクリプトスキーマ定義 — ロケータ・ステップ・スクリプトの Pydantic v2 モデル

記録スクリプト（JSON / YAML）の構造を表現する。フィールド名は
記録側が出力する JSON と同じ camelCase を使う。

主な構成:
  - Locator / LocatorSet: 1つの記録対象要素に対するロケータ候補の順位付き集合
  - WaitHint: ステップ実行前の待機ヒント
  - Step: 1つの記録操作と再生に必要なメタ情報
  - Script: ステップの順序付き列

LocatorSet は記録時に一度だけ生成され、再生中は読み取り専用として扱う。
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# ロケータ戦略
# ---------------------------------------------------------------------------

class LocatorStrategy(str, Enum):
    """ロケータの指定方式。定義順が合成時の生成順となる。"""

    TEST_ID = "testId"
    ID = "id"
    ARIA = "aria"
    NAME = "name"
    TEXT = "text"
    ROLE = "role"
    SHADOW_DOM = "shadowDOM"
    CLASS = "class"
    CSS_PATH = "cssPath"
    XPATH = "xpath"


# 値がそのまま CSS セレクタとして使える戦略
CSS_STRATEGIES = frozenset({
    LocatorStrategy.TEST_ID,
    LocatorStrategy.ID,
    LocatorStrategy.ARIA,
    LocatorStrategy.NAME,
    LocatorStrategy.CLASS,
    LocatorStrategy.CSS_PATH,
})


# ---------------------------------------------------------------------------
# Locator / LocatorSet
# ---------------------------------------------------------------------------

class Locator(BaseModel):
    """1つのロケータ候補。生成後は変更しない。"""

    model_config = ConfigDict(frozen=True)

    strategy: LocatorStrategy = Field(..., description="指定方式")
    value: str = Field(..., min_length=1, description="方式ごとのセレクタ文字列")
    confidence: float = Field(..., ge=0.0, le=1.0, description="合成時の安定度推定値")
    isTextBased: bool = Field(default=False, description="表示テキストに依存するか")
    isRoleBased: bool = Field(default=False, description="ARIA ロールに依存するか")
    isShadowPiercing: bool = Field(default=False, description="Shadow DOM を貫通するか")

    @property
    def is_css(self) -> bool:
        """値がそのまま CSS セレクタとして使えるかを返す。"""
        return self.strategy in CSS_STRATEGIES


class BoundingBox(BaseModel):
    """記録時点の要素の表示矩形（ビューポート座標）。"""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class LocatorSet(BaseModel):
    """1つの記録対象要素に対するロケータ候補の集合。

    locators は confidence の降順に並び、必ず1件以上を含む。
    末尾の絶対 XPath は無条件に生成されるため、合成結果が空になることはない。
    """

    model_config = ConfigDict(frozen=True)

    locators: list[Locator] = Field(
        ..., min_length=1, description="confidence 降順のロケータ候補",
    )
    humanLabel: str = Field(default="", description="診断・テイクオーバー表示用の説明")
    boundingBox: Optional[BoundingBox] = Field(
        default=None, description="記録時点の表示矩形",
    )
    shadowPath: Optional[list[str]] = Field(
        default=None, description="Shadow ホストのセレクタ列（外側から順）",
    )
    tagName: Optional[str] = Field(default=None, description="記録時点のタグ名")

    @field_validator("locators")
    @classmethod
    def validate_order(cls, v: list[Locator]) -> list[Locator]:
        """locators が confidence の非増加順であることを検証する。"""
        for prev, cur in zip(v, v[1:]):
            if cur.confidence > prev.confidence:
                raise ValueError(
                    "locators は confidence の降順で並べてください: "
                    f"{prev.strategy.value}({prev.confidence}) の後に "
                    f"{cur.strategy.value}({cur.confidence})"
                )
        return v

    @property
    def recommended(self) -> Locator:
        """最も信頼度の高いロケータ（先頭要素）を返す。"""
        return self.locators[0]


# ---------------------------------------------------------------------------
# 待機ヒント
# ---------------------------------------------------------------------------

class WaitKind(str, Enum):
    """記録時に検出された待機の種類。"""

    NONE = "none"
    IMMEDIATE = "immediate"
    NETWORK_IDLE = "networkIdle"
    DOM_SETTLED = "domSettled"
    ELEMENT_APPEARED = "elementAppeared"
    LOADING_COMPLETE = "loadingComplete"
    DURATION = "duration"


# ハイフン区切り表記の別名
_WAIT_KIND_ALIASES = {
    "network-idle": "networkIdle",
    "dom-settled": "domSettled",
    "element-appeared": "elementAppeared",
    "loading-complete": "loadingComplete",
}


class WaitHint(BaseModel):
    """ステップ実行前の待機ヒント。

    整数のみが指定された場合は {type: duration, duration: <整数>} として扱う。
    """

    model_config = ConfigDict(frozen=True)

    type: WaitKind = Field(default=WaitKind.NONE, description="待機の種類")
    duration: Optional[int] = Field(default=None, ge=0, description="待機時間（ミリ秒）")

    @model_validator(mode="before")
    @classmethod
    def coerce_shorthand(cls, data: Any) -> Any:
        """整数や文字列だけの省略記法を辞書形式に変換する。"""
        if isinstance(data, bool):
            return data
        if isinstance(data, (int, float)):
            return {"type": WaitKind.DURATION.value, "duration": int(data)}
        if isinstance(data, str):
            data = {"type": data}
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            kind = data["type"]
            if kind in _WAIT_KIND_ALIASES:
                data = {**data, "type": _WAIT_KIND_ALIASES[kind]}
        return data


# ---------------------------------------------------------------------------
# ステップ
# ---------------------------------------------------------------------------

# 変数プレースホルダ {{identifier}}
PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Za-z_][A-Za-z0-9_]*)\}\}")


class ScrollPosition(BaseModel):
    """scroll ステップのスクロール先座標。"""

    x: float = 0.0
    y: float = 0.0


class Step(BaseModel):
    """1つの記録操作と、再生に必要なメタ情報。

    type は読み込み時には文字列のまま保持する。未知の種別を含むスクリプトも
    読み込みは成功し、そのステップだけが再生時に UnsupportedAction として失敗する。
    """

    type: str = Field(..., min_length=1, description="ステップ種別（click, type 等）")
    name: Optional[str] = Field(default=None, description="ステップ名（任意）")
    locatorSet: Optional[LocatorSet] = Field(default=None, description="操作対象の要素")
    secondaryLocatorSet: Optional[LocatorSet] = Field(
        default=None, description="2つ目の操作対象（drag のドロップ先）",
    )
    value: Optional[str] = Field(
        default=None, description="入力値。{{identifier}} プレースホルダを含められる",
    )
    key: Optional[str] = Field(default=None, description="keypress のキー名")
    modifiers: list[str] = Field(
        default_factory=list, description="修飾キー（Control, Shift, Alt, Meta）",
    )
    url: Optional[str] = Field(default=None, description="navigate / newTab の遷移先")
    scrollTo: Optional[ScrollPosition] = Field(default=None, description="scroll の座標")
    tabIndex: Optional[int] = Field(default=None, ge=0, description="switchTab の対象タブ番号")
    tabTitle: Optional[str] = Field(default=None, description="switchTab の対象タブタイトル")
    button: int = Field(
        default=0, ge=0, le=4,
        description="click / dblclick のマウスボタン（0: 左, 1: 中, 2: 右, 3: 戻る, 4: 進む）",
    )
    waitHint: Optional[WaitHint] = Field(default=None, description="実行前の待機ヒント")
    pauseBeforeExecute: bool = Field(
        default=False, description="実行前に操作者の確認を求めるか",
    )

    @field_validator("modifiers")
    @classmethod
    def validate_modifiers(cls, v: list[str]) -> list[str]:
        """修飾キー名を検証する。"""
        allowed = {"Control", "Shift", "Alt", "Meta"}
        unknown = [m for m in v if m not in allowed]
        if unknown:
            raise ValueError(
                f"不正な修飾キーです: {', '.join(unknown)}。"
                f"使用可能: {', '.join(sorted(allowed))}"
            )
        return v

    def describe(self) -> str:
        """進捗表示用の簡潔な説明文字列を返す。"""
        if self.name:
            return f"{self.type}: {self.name}"
        if self.locatorSet is not None and self.locatorSet.humanLabel:
            return f"{self.type}: {self.locatorSet.humanLabel}"
        if self.url:
            return f"{self.type}: {self.url}"
        return self.type


# ---------------------------------------------------------------------------
# Script 定義
# ---------------------------------------------------------------------------

class Script(BaseModel):
    """記録スクリプトのルートモデル。再生の入力として変更されない。"""

    model_config = ConfigDict(frozen=True)

    title: str = Field(default="untitled", description="スクリプト名")
    startUrl: Optional[str] = Field(default=None, description="再生開始時に開く URL")
    steps: list[Step] = Field(default_factory=list, description="ステップ列")
