"""
スクリプト Linter — 記録スクリプトの静的解析

再生前にスクリプトを検査し、再生時に確実に失敗する構成や
壊れやすい記録を報告する。

検出ルール:
  - 要素が必要なステップに locatorSet がない → error
  - drag に secondaryLocatorSet（ドロップ先）がない → error
  - 未登録のステップ種別 → error
  - fileUpload ステップ（再生時は常に手動操作になる） → info
  - 最も confidence の高いロケータが 0.5 未満 → warning
  - パスワード系フィールドへの type 値がプレースホルダでない → warning

各 lint 結果にはステップ名、行番号、重大度（error/warning/info）を含む。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from .schema import Script, Step
from .variables import has_variables

if TYPE_CHECKING:
    from ..actions.registry import ActionRegistry

# この値未満の confidence しか持たない LocatorSet は壊れやすいとみなす
LOW_CONFIDENCE_THRESHOLD = 0.5


# ---------------------------------------------------------------------------
# Lint 重大度
# ---------------------------------------------------------------------------

class LintSeverity(Enum):
    """Lint 結果の重大度レベル。"""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ---------------------------------------------------------------------------
# Lint 検出結果
# ---------------------------------------------------------------------------

@dataclass
class LintIssue:
    """Lint で検出された問題。

    Attributes:
        step_name: 問題が検出されたステップの説明
        line_number: steps 配列内のインデックス + 1
        severity: 重大度（error / warning / info）
        rule: 適用されたルール名
        message: 問題の説明メッセージ
    """

    step_name: str
    line_number: int
    severity: LintSeverity
    rule: str
    message: str


# パスワード系フィールドを検出するためのキーワードパターン（大文字小文字不問）
_PASSWORD_KEYWORDS = re.compile(
    r"(password|パスワード|secret|token|credential|passphrase|pin|暗証)",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# ScriptLinter 本体
# ---------------------------------------------------------------------------

class ScriptLinter:
    """記録スクリプトの静的解析を行う Linter。

    使用例::

        issues = ScriptLinter().lint(script)
        errors = [i for i in issues if i.severity == LintSeverity.ERROR]
    """

    def __init__(self, registry: Optional[ActionRegistry] = None) -> None:
        """
        Args:
            registry: 登録済みステップ種別の判定に使うレジストリ。
                None の場合は標準アクションのレジストリを使う
        """
        if registry is None:
            from ..actions.builtin import create_default_registry

            registry = create_default_registry()
        self._registry = registry

    def lint(self, script: Script) -> list[LintIssue]:
        """全 lint ルールを適用し、問題を検出する。

        Args:
            script: 検査対象のスクリプト

        Returns:
            検出された LintIssue のリスト（問題なしの場合は空リスト）
        """
        issues: list[LintIssue] = []
        for index, step in enumerate(script.steps):
            line_number = index + 1

            if not self._registry.has(step.type):
                issues.append(self._issue(
                    step, line_number, LintSeverity.ERROR, "unknown-step-type",
                    f"未登録のステップ種別です: {step.type}"
                    f"（使用可能: {', '.join(self._registry.names)}）",
                ))
                continue

            for check in (
                self._check_missing_locator_set,
                self._check_drag_target,
                self._check_file_upload,
                self._check_low_confidence,
                self._check_plain_password,
            ):
                issue = check(step, line_number)
                if issue is not None:
                    issues.append(issue)

        return issues

    # -----------------------------------------------------------------
    # Lint ルール
    # -----------------------------------------------------------------

    def _check_missing_locator_set(self, step: Step, line_number: int) -> Optional[LintIssue]:
        if not self._registry.info(step.type).requires_element or step.locatorSet is not None:
            return None
        return self._issue(
            step, line_number, LintSeverity.ERROR, "missing-locator-set",
            f"{step.type} ステップに locatorSet がありません。再生時に要素を特定できません。",
        )

    def _check_drag_target(self, step: Step, line_number: int) -> Optional[LintIssue]:
        if step.type != "drag" or step.secondaryLocatorSet is not None:
            return None
        return self._issue(
            step, line_number, LintSeverity.ERROR, "missing-drop-target",
            "drag ステップにドロップ先の secondaryLocatorSet がありません。",
        )

    def _check_file_upload(self, step: Step, line_number: int) -> Optional[LintIssue]:
        if step.type != "fileUpload":
            return None
        return self._issue(
            step, line_number, LintSeverity.INFO, "manual-file-upload",
            "ファイル選択は自動再生できません。再生時は手動操作を求めます。",
        )

    def _check_low_confidence(self, step: Step, line_number: int) -> Optional[LintIssue]:
        """最良のロケータでも confidence が低い記録を warning として報告する。"""
        if step.locatorSet is None:
            return None
        best = step.locatorSet.recommended
        if best.confidence >= LOW_CONFIDENCE_THRESHOLD:
            return None
        return self._issue(
            step, line_number, LintSeverity.WARNING, "low-confidence-locator",
            f"最良のロケータでも confidence が {best.confidence:.2f} です"
            f"（{best.strategy.value}='{best.value}'）。"
            "ページ構造の変化で壊れやすいため、testId 等の付与を推奨します。",
        )

    def _check_plain_password(self, step: Step, line_number: int) -> Optional[LintIssue]:
        """パスワード系フィールドに平文の値が記録されている場合に warning を出力する。"""
        if step.type != "type" or not step.value or has_variables(step.value):
            return None

        for text in self._collect_password_hint_texts(step):
            if _PASSWORD_KEYWORDS.search(text):
                return self._issue(
                    step, line_number, LintSeverity.WARNING, "plain-password",
                    "パスワード関連のフィールドに値がそのまま記録されています。"
                    "{{password}} のようなプレースホルダに置き換え、再生時に渡すことを推奨します。",
                )
        return None

    # -----------------------------------------------------------------
    # ヘルパーメソッド
    # -----------------------------------------------------------------

    def _collect_password_hint_texts(self, step: Step) -> list[str]:
        """ステップ名・ラベル・ロケータ値を検出対象テキストとして集める。"""
        texts: list[str] = []
        if step.name:
            texts.append(step.name)
        if step.locatorSet is not None:
            if step.locatorSet.humanLabel:
                texts.append(step.locatorSet.humanLabel)
            texts.extend(loc.value for loc in step.locatorSet.locators)
        return texts

    def _issue(
        self,
        step: Step,
        line_number: int,
        severity: LintSeverity,
        rule: str,
        message: str,
    ) -> LintIssue:
        return LintIssue(
            step_name=step.describe(),
            line_number=line_number,
            severity=severity,
            rule=rule,
            message=message,
        )
