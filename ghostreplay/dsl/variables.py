"""
変数注入 — {{identifier}} プレースホルダの置換と変数一覧の抽出

再生直前にステップの value / url に含まれるプレースホルダを置換する。
バインディングに存在しない識別子はエラーにせず、そのまま残す。
残ったプレースホルダは InjectionResult.missing として呼び出し元に報告する。

主な機能:
  - inject / inject_detailed: テキスト内のプレースホルダ置換
  - VariableInjector: バインディングを保持してステップ単位で置換
  - extract_variables: スクリプト全体から変数と使用箇所を抽出
  - validate_bindings: 必須変数に対する不足・空値の検出
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .schema import PLACEHOLDER_PATTERN, Script, Step

logger = logging.getLogger(__name__)

# 置換対象となるステップのフィールド
_INJECTABLE_FIELDS = ("value", "url")


# ---------------------------------------------------------------------------
# 結果データクラス
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InjectionResult:
    """プレースホルダ置換の結果。

    Attributes:
        text: 置換後のテキスト
        missing: バインディングに存在せず残った識別子（出現順、重複なし）
    """

    text: str
    missing: tuple[str, ...] = ()


@dataclass
class VariableUsage:
    """変数の使用箇所。"""

    step_index: int
    field: str
    action_type: str


@dataclass
class VariableInfo:
    """スクリプト内で参照される1つの変数。

    Attributes:
        name: 識別子
        usages: 使用箇所のリスト
    """

    name: str
    usages: list[VariableUsage] = field(default_factory=list)


@dataclass
class BindingValidation:
    """バインディング検証の結果。"""

    valid: bool
    missing: list[str] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        """検証結果の説明文を返す。"""
        parts = []
        if self.missing:
            parts.append(f"未指定の変数: {', '.join(self.missing)}")
        if self.empty:
            parts.append(f"空の変数: {', '.join(self.empty)}")
        return " / ".join(parts) if parts else "全ての変数が指定されています"


# ---------------------------------------------------------------------------
# 置換
# ---------------------------------------------------------------------------

def inject_detailed(text: str, bindings: Mapping[str, str]) -> InjectionResult:
    """テキスト内の {{identifier}} を置換し、残った識別子も返す。

    Args:
        text: 置換対象のテキスト
        bindings: 識別子から値へのマップ

    Returns:
        置換結果と未解決の識別子
    """
    missing: list[str] = []

    def _replace(match) -> str:
        name = match.group(1)
        if name in bindings:
            return str(bindings[name])
        if name not in missing:
            missing.append(name)
        return match.group(0)

    return InjectionResult(PLACEHOLDER_PATTERN.sub(_replace, text), tuple(missing))


def inject(text: str, bindings: Mapping[str, str]) -> str:
    """テキスト内の {{identifier}} を置換する。未知の識別子はそのまま残す。"""
    return inject_detailed(text, bindings).text


def has_variables(text: Optional[str]) -> bool:
    """テキストにプレースホルダが含まれるかを返す。"""
    return bool(text) and PLACEHOLDER_PATTERN.search(text) is not None


def get_variable_names(text: Optional[str]) -> list[str]:
    """テキスト内の識別子を出現順・重複なしで返す。"""
    if not text:
        return []
    names: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(text):
        if match.group(1) not in names:
            names.append(match.group(1))
    return names


def create_placeholder(name: str) -> str:
    """識別子からプレースホルダ文字列を生成する。

    Raises:
        ValueError: 識別子として不正な名前の場合
    """
    placeholder = "{{" + name + "}}"
    if not PLACEHOLDER_PATTERN.fullmatch(placeholder):
        raise ValueError(f"変数名として使用できません: {name!r}")
    return placeholder


# ---------------------------------------------------------------------------
# VariableInjector 本体
# ---------------------------------------------------------------------------

class VariableInjector:
    """バインディングを保持し、ステップ単位でプレースホルダを置換する。"""

    def __init__(self, bindings: Mapping[str, str]) -> None:
        self._bindings: dict[str, str] = dict(bindings)

    @property
    def bindings(self) -> dict[str, str]:
        """バインディングの読み取り専用コピーを返す。"""
        return dict(self._bindings)

    def inject_step(self, step: Step) -> tuple[Step, tuple[str, ...]]:
        """ステップの value / url を置換した新しいステップを返す。

        元のステップは変更しない。

        Args:
            step: 置換対象のステップ

        Returns:
            (置換後のステップ, 未解決の識別子)
        """
        updates: dict[str, str] = {}
        missing: list[str] = []
        for name in _INJECTABLE_FIELDS:
            original = getattr(step, name)
            if original is None:
                continue
            result = inject_detailed(original, self._bindings)
            updates[name] = result.text
            missing.extend(m for m in result.missing if m not in missing)

        if missing:
            logger.warning(
                "未定義の変数はそのまま残します: %s（ステップ: %s）",
                ", ".join(missing), step.describe(),
            )
        return step.model_copy(update=updates), tuple(missing)


# ---------------------------------------------------------------------------
# スクリプト全体の変数抽出・検証
# ---------------------------------------------------------------------------

def extract_variables(script: Script) -> list[VariableInfo]:
    """スクリプト内で参照される全変数を、初出順に使用箇所付きで返す。

    Args:
        script: 対象スクリプト

    Returns:
        VariableInfo のリスト
    """
    found: dict[str, VariableInfo] = {}
    for index, step in enumerate(script.steps):
        for name in _INJECTABLE_FIELDS:
            for var in get_variable_names(getattr(step, name)):
                info = found.setdefault(var, VariableInfo(name=var))
                info.usages.append(VariableUsage(index, name, step.type))
    return list(found.values())


def validate_bindings(
    required: list[str], provided: Mapping[str, str]
) -> BindingValidation:
    """必須変数に対してバインディングの不足と空値を検出する。

    Args:
        required: 必須の識別子
        provided: 指定されたバインディング

    Returns:
        検証結果
    """
    missing = [name for name in required if name not in provided]
    empty = [
        name for name in required
        if name in provided and not str(provided[name]).strip()
    ]
    return BindingValidation(valid=not missing and not empty, missing=missing, empty=empty)


def inject_step(step: Step, bindings: Mapping[str, str]) -> tuple[Step, tuple[str, ...]]:
    """VariableInjector を使わずに1ステップだけ置換する。"""
    return VariableInjector(bindings).inject_step(step)
