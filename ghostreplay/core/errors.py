"""
再生エラー定義 — 失敗種別と例外クラス

全ての再生失敗はちょうど1つの FailureKind に分類される。
利用側は kind を見て、種別ごとに異なる対処（テイクオーバー、スキップ、再記録等）を提示する。

伝播の規則:
  - ElementNotFoundError / MappingFailureError: ステップ単位で回復可能。
    テイクオーバー / スキップ / キャンセルの判断に回される
  - ActionExecutionError: StepResult に記録される。自動リトライはしない
  - ManualCancellationError: セッションを Idle に戻す
  - FatalStepError: セッションを常に Error で停止する
"""

from __future__ import annotations

import enum
from typing import Optional


# ---------------------------------------------------------------------------
# 失敗種別
# ---------------------------------------------------------------------------

class FailureKind(enum.Enum):
    """ステップ失敗の分類。"""

    ELEMENT_NOT_FOUND = "element_not_found"
    MAPPING_FAILURE = "mapping_failure"
    ACTION_EXECUTION = "action_execution"
    UNSUPPORTED_ACTION = "unsupported_action"
    MANUAL_CANCELLATION = "manual_cancellation"
    FATAL = "fatal"


# ---------------------------------------------------------------------------
# 例外クラス
# ---------------------------------------------------------------------------

class ReplayError(Exception):
    """再生処理の例外基底クラス。"""

    kind: FailureKind = FailureKind.FATAL


class ElementNotFoundError(ReplayError):
    """全ロケータ・全試行で要素を解決できなかった。"""

    kind = FailureKind.ELEMENT_NOT_FOUND


class MappingFailureError(ReplayError):
    """値を要素の選択肢に対応付けられなかった（select の該当オプションなし等）。"""

    kind = FailureKind.MAPPING_FAILURE


class ActionExecutionError(ReplayError):
    """解決済み要素に対する操作中に失敗した。"""

    kind = FailureKind.ACTION_EXECUTION


class ManualInterventionRequired(ActionExecutionError):
    """自動化できない操作（ファイル選択等）。常にテイクオーバーに回される。

    Attributes:
        reason: 操作者に提示する説明
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class UnsupportedActionError(ReplayError):
    """レジストリに Executor が登録されていないステップ種別。"""

    kind = FailureKind.UNSUPPORTED_ACTION

    def __init__(self, action_type: str, registered: Optional[list[str]] = None) -> None:
        self.action_type = action_type
        message = f"未対応のステップ種別です: '{action_type}'"
        if registered:
            message += f"（登録済み: [{', '.join(registered)}]）"
        super().__init__(message)


class ManualCancellationError(ReplayError):
    """操作者による再生キャンセル。"""

    kind = FailureKind.MANUAL_CANCELLATION

    def __init__(self, message: str = "再生がキャンセルされました") -> None:
        super().__init__(message)


class FatalStepError(ReplayError):
    """予期しない例外。セッションを Error で停止する。"""

    kind = FailureKind.FATAL


class InvalidStateTransition(RuntimeError):
    """現在の状態では許可されない制御操作が呼ばれた。"""
