"""
テスト共通フィクスチャ・Hypothesis ストラテジー定義

全テストモジュールで共有するフィクスチャとデータ生成器を提供する。
ブラウザを模倣する FakePage は tests/fake_page.py にある。
"""

from pathlib import Path

import pytest
from hypothesis import strategies as st

from ghostreplay.config import ReplayOptions


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def fast_options() -> ReplayOptions:
    """待機時間を短くした再生設定。"""
    return ReplayOptions(
        step_delay_ms=0,
        timeout_ms=300,
        retry_attempts=1,
        retry_delay_ms=10,
        poll_interval_ms=10,
        type_char_delay_ms=0,
        highlight_elements=False,
    )


@pytest.fixture
def sample_script_dict() -> dict:
    """サンプルの記録スクリプト辞書データ。

    ログインフローの最小構成。パーサーやスキーマ検証のテストで使用する。
    """
    return {
        "title": "ログインフロー",
        "startUrl": "http://localhost:4200/login",
        "steps": [
            {
                "type": "type",
                "value": "{{email}}",
                "locatorSet": {
                    "locators": [
                        {"strategy": "id", "value": "#email", "confidence": 0.9},
                        {"strategy": "xpath", "value": "/html[1]/body[1]/input[1]", "confidence": 0.2},
                    ],
                    "humanLabel": "メールアドレス textbox",
                },
            },
            {
                "type": "type",
                "value": "{{password}}",
                "locatorSet": {
                    "locators": [
                        {"strategy": "name", "value": 'input[name="password"]', "confidence": 0.8},
                    ],
                    "humanLabel": "パスワード password",
                },
            },
            {
                "type": "click",
                "name": "ログインボタン",
                "locatorSet": {
                    "locators": [
                        {"strategy": "testId", "value": '[data-testid="login"]', "confidence": 0.95},
                    ],
                },
                "waitHint": {"type": "networkIdle"},
            },
        ],
    }


@pytest.fixture
def sample_yaml_content() -> str:
    """サンプルの YAML 形式の記録スクリプト文字列。"""
    return """\
title: ログインフロー
startUrl: http://localhost:4200/login
steps:
  - type: type
    value: "{{email}}"
    locatorSet:
      locators:
        - strategy: id
          value: "#email"
          confidence: 0.9
      humanLabel: メールアドレス textbox
  - type: click
    name: ログインボタン
    locatorSet:
      locators:
        - strategy: testId
          value: '[data-testid="login"]'
          confidence: 0.95
    waitHint: networkIdle
"""


@pytest.fixture
def script_file(tmp_path: Path, sample_yaml_content: str) -> Path:
    """サンプル YAML を書き出したファイルパス。"""
    path = tmp_path / "login.yaml"
    path.write_text(sample_yaml_content, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Hypothesis ストラテジー
# ---------------------------------------------------------------------------

# プレースホルダの識別子
identifiers = st.from_regex(r"[A-Za-z_][A-Za-z0-9_]{0,11}", fullmatch=True)

# プレースホルダを含まない任意テキスト（波括弧を除外）
plain_texts = st.text(
    alphabet=st.characters(blacklist_characters="{}", blacklist_categories=("Cs",)),
    max_size=30,
)

# バインディングの値
binding_values = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    max_size=20,
)

confidences = st.floats(min_value=0.0, max_value=1.0, allow_nan=False)
