"""
アクション実行モジュール

ステップ種別ごとの Executor と、種別名から Executor を引くレジストリを提供する。

主要エクスポート:
  - ActionRegistry: Executor の登録・検索・一覧
  - ActionExecutor: Executor の共通 Protocol
  - ActionContext: Executor 実行コンテキスト
  - ActionInfo: アクションのメタ情報
  - create_default_registry: 標準アクション登録済みレジストリの生成
"""

from .builtin import create_default_registry
from .registry import ActionContext, ActionExecutor, ActionInfo, ActionRegistry

__all__ = [
    "ActionContext",
    "ActionExecutor",
    "ActionInfo",
    "ActionRegistry",
    "create_default_registry",
]
