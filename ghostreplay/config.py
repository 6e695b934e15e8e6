"""
再生設定 — 環境変数・CLI 引数からの設定読み込み

CLI 引数 > 環境変数 > デフォルト値 の優先順位で適用される。

環境変数一覧:
  GHOSTREPLAY_STEP_DELAY_MS   : ステップ間の待機（ミリ秒、デフォルト: 100）
  GHOSTREPLAY_TIMEOUT_MS      : 要素解決のタイムアウト（ミリ秒、デフォルト: 10000）
  GHOSTREPLAY_STOP_ON_ERROR   : 失敗時に再生を止めるか（true/false、デフォルト: false）
  GHOSTREPLAY_HIGHLIGHT       : 操作対象を強調表示するか（true/false、デフォルト: true）
  GHOSTREPLAY_RETRY_ATTEMPTS  : 要素解決の試行回数（デフォルト: 3）
  GHOSTREPLAY_RETRY_DELAY_MS  : 試行間の待機の基準値（ミリ秒、デフォルト: 500）
  GHOSTREPLAY_HEADED          : ブラウザ表示モード（true/false、デフォルト: true）
  GHOSTREPLAY_VIEWPORT_WIDTH  : ビューポート幅（デフォルト: 1280）
  GHOSTREPLAY_VIEWPORT_HEIGHT : ビューポート高さ（デフォルト: 720）
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 環境変数キー定数
# ---------------------------------------------------------------------------

_ENV_STEP_DELAY_MS = "GHOSTREPLAY_STEP_DELAY_MS"
_ENV_TIMEOUT_MS = "GHOSTREPLAY_TIMEOUT_MS"
_ENV_STOP_ON_ERROR = "GHOSTREPLAY_STOP_ON_ERROR"
_ENV_HIGHLIGHT = "GHOSTREPLAY_HIGHLIGHT"
_ENV_RETRY_ATTEMPTS = "GHOSTREPLAY_RETRY_ATTEMPTS"
_ENV_RETRY_DELAY_MS = "GHOSTREPLAY_RETRY_DELAY_MS"
_ENV_HEADED = "GHOSTREPLAY_HEADED"
_ENV_VIEWPORT_WIDTH = "GHOSTREPLAY_VIEWPORT_WIDTH"
_ENV_VIEWPORT_HEIGHT = "GHOSTREPLAY_VIEWPORT_HEIGHT"


# ---------------------------------------------------------------------------
# 設定データクラス
# ---------------------------------------------------------------------------

@dataclass
class ReplayOptions:
    """1回の再生セッションの設定。

    Attributes:
        step_delay_ms: ステップ間の待機（ミリ秒）
        timeout_ms: 要素解決のタイムアウト（ミリ秒）
        stop_on_error: ステップ失敗時に再生を Error で止めるか
        highlight_elements: 操作前に対象要素を強調表示するか
        start_from_step: 再生を開始するステップ番号（0始まり）
        retry_attempts: 要素解決でロケータ列全体を試行する回数
        retry_delay_ms: 試行間の待機の基準値（attempt × retry_delay_ms 待つ）
        poll_interval_ms: ポーリング間隔（ミリ秒）
        type_char_delay_ms: type で1文字ごとに空ける間隔（ミリ秒）
        highlight_duration_ms: 強調表示の時間（ミリ秒）
        max_wait_ms: 待機ヒントの時間指定の上限（ミリ秒）
    """

    step_delay_ms: int = 100
    timeout_ms: int = 10_000
    stop_on_error: bool = False
    highlight_elements: bool = True
    start_from_step: int = 0
    retry_attempts: int = 3
    retry_delay_ms: int = 500
    poll_interval_ms: int = 100
    type_char_delay_ms: int = 10
    highlight_duration_ms: int = 500
    max_wait_ms: int = 3_000


@dataclass
class LaunchConfig:
    """CLI がブラウザを起動するときの設定。"""

    headed: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720


# ---------------------------------------------------------------------------
# 環境変数からの読み込み
# ---------------------------------------------------------------------------

def _parse_bool(value: str) -> bool:
    """文字列を bool に変換する。

    Args:
        value: "true", "1", "yes" → True、それ以外 → False
    """
    return value.lower() in ("true", "1", "yes")


def _read_int(env: Mapping[str, str], key: str) -> Optional[int]:
    """整数の環境変数を読む。不正な値は警告して無視する。"""
    if key not in env:
        return None
    try:
        value = int(env[key])
    except ValueError:
        logger.warning("%s の値が不正です: %s", key, env[key])
        return None
    if value < 0:
        logger.warning("%s に負の値は指定できません: %s", key, value)
        return None
    return value


def load_options_from_env(env: Optional[Mapping[str, str]] = None) -> ReplayOptions:
    """環境変数から ReplayOptions を生成する。

    Args:
        env: 環境変数辞書。None の場合は os.environ を使う

    Returns:
        環境変数を反映した設定
    """
    env = os.environ if env is None else env
    options = ReplayOptions()

    for key, attr in (
        (_ENV_STEP_DELAY_MS, "step_delay_ms"),
        (_ENV_TIMEOUT_MS, "timeout_ms"),
        (_ENV_RETRY_ATTEMPTS, "retry_attempts"),
        (_ENV_RETRY_DELAY_MS, "retry_delay_ms"),
    ):
        value = _read_int(env, key)
        if value is not None:
            setattr(options, attr, value)

    if options.retry_attempts < 1:
        logger.warning("%s は 1 以上を指定してください。1 を使用します", _ENV_RETRY_ATTEMPTS)
        options.retry_attempts = 1

    if _ENV_STOP_ON_ERROR in env:
        options.stop_on_error = _parse_bool(env[_ENV_STOP_ON_ERROR])
    if _ENV_HIGHLIGHT in env:
        options.highlight_elements = _parse_bool(env[_ENV_HIGHLIGHT])

    logger.debug("再生設定を読み込みました: %s", options)
    return options


def load_launch_config_from_env(env: Optional[Mapping[str, str]] = None) -> LaunchConfig:
    """環境変数から LaunchConfig を生成する。"""
    env = os.environ if env is None else env
    config = LaunchConfig()

    if _ENV_HEADED in env:
        config.headed = _parse_bool(env[_ENV_HEADED])
    width = _read_int(env, _ENV_VIEWPORT_WIDTH)
    if width:
        config.viewport_width = width
    height = _read_int(env, _ENV_VIEWPORT_HEIGHT)
    if height:
        config.viewport_height = height
    return config


def apply_cli_args(options: ReplayOptions, **overrides: Any) -> ReplayOptions:
    """CLI 引数を ReplayOptions に適用する。None の引数は上書きしない。

    Args:
        options: ベースとなる設定（環境変数から読み込み済み）
        overrides: ReplayOptions の属性名をキーとする CLI 引数

    Returns:
        CLI 引数が適用された設定

    Raises:
        ValueError: ReplayOptions に存在しない属性名が指定された場合
    """
    for name, value in overrides.items():
        if not hasattr(options, name):
            raise ValueError(f"不明な設定項目です: {name}")
        if value is not None:
            setattr(options, name, value)
    return options
