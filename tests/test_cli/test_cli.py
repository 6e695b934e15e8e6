"""
CLI テスト — typer.testing.CliRunner を使用した CLI コマンドのテスト

実際のブラウザ起動は行わず、_run_replay / _locate をモックで代替する。
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from ghostreplay.cli import ConsoleListener, ConsolePrompter, app, parse_var_options
from ghostreplay.core.errors import FailureKind
from ghostreplay.core.orchestrator import (
    ReplayReport,
    ReplayState,
    ReplayStatus,
    StepDecision,
    StepError,
    StepResult,
    TakeoverEvent,
)
from ghostreplay.dsl.schema import Step

runner = CliRunner()


# ---------------------------------------------------------------------------
# ヘルパー: サンプルスクリプト
# ---------------------------------------------------------------------------

NO_VARIABLE_YAML = """\
title: 変数なし
steps:
  - type: navigate
    url: http://localhost:4200/
"""

INVALID_YAML = """\
title: スキーマ違反
steps: "not a list"
"""

MISSING_LOCATOR_YAML = """\
steps:
  - type: click
    name: 保存
"""

FILE_UPLOAD_YAML = """\
steps:
  - type: fileUpload
    locatorSet:
      locators:
        - strategy: id
          value: "#avatar"
          confidence: 0.9
"""


def _write(tmp_path: Path, content: str, name: str = "script.yaml") -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def _make_report(success: bool = True) -> ReplayReport:
    results = [StepResult(0, "type", True, True, 50.0)]
    errors = []
    if not success:
        results.append(StepResult(
            1, "click", False, False, 300.0,
            error="要素が見つかりません: ログインボタン\n詳細",
            error_kind=FailureKind.ELEMENT_NOT_FOUND,
        ))
        errors.append(StepError(1, "click", results[-1].error, FailureKind.ELEMENT_NOT_FOUND))
    return ReplayReport(
        script_title="ログインフロー",
        status=ReplayStatus.COMPLETE,
        success=success,
        step_results=results,
        errors=errors,
        start_time=datetime(2024, 3, 15, 10, 30, 45),
        end_time=datetime(2024, 3, 15, 10, 30, 46),
        total_steps=len(results),
    )


# ===========================================================================
# 1. replay コマンド
# ===========================================================================

class TestReplayCommand:
    """replay コマンドのテスト。"""

    def test_success(self, script_file: Path) -> None:
        """再生が成功すると終了コード 0 でサマリーを表示する。"""
        mock_run = AsyncMock(return_value=_make_report())
        with patch("ghostreplay.cli._run_replay", new=mock_run):
            result = runner.invoke(app, [
                "replay", str(script_file), "--var", "email=a@example.com",
                "--headless", "--timeout", "1234", "--start-from", "1",
            ])

        assert result.exit_code == 0, result.output
        assert "ステータス: complete" in result.output
        assert "passed=1" in result.output

        script, bindings, options, launch, url, interactive = mock_run.await_args.args
        assert script.title == "ログインフロー"
        assert bindings == {"email": "a@example.com"}
        assert options.timeout_ms == 1234
        assert options.start_from_step == 1
        assert launch.headed is False
        assert url is None
        assert interactive is False

    def test_failure_exit_code(self, script_file: Path) -> None:
        """失敗したステップがあれば終了コード 1 で失敗内容を表示する。"""
        with patch("ghostreplay.cli._run_replay", new=AsyncMock(return_value=_make_report(False))):
            result = runner.invoke(app, ["replay", str(script_file), "--var", "email=x"])

        assert result.exit_code == 1
        assert "✗ ステップ 1 (click) [element_not_found]: 要素が見つかりません: ログインボタン" in result.output
        assert "詳細" not in result.output

    def test_missing_variable_warning(self, script_file: Path) -> None:
        with patch("ghostreplay.cli._run_replay", new=AsyncMock(return_value=_make_report())):
            result = runner.invoke(app, ["replay", str(script_file)])
        assert "警告: 未指定の変数: email" in result.output

    def test_report_dir(self, script_file: Path, tmp_path: Path) -> None:
        """--report-dir 指定時は JSON / HTML / JUnit XML を出力する。"""
        report_dir = tmp_path / "reports"
        with patch("ghostreplay.cli._run_replay", new=AsyncMock(return_value=_make_report())):
            result = runner.invoke(app, [
                "replay", str(script_file), "--var", "email=x", "--report-dir", str(report_dir),
            ])

        assert result.exit_code == 0, result.output
        assert json.loads((report_dir / "report.json").read_text(encoding="utf-8"))["success"]
        assert (report_dir / "report.html").exists()
        assert (report_dir / "junit.xml").exists()

    def test_invalid_var_format(self, script_file: Path) -> None:
        result = runner.invoke(app, ["replay", str(script_file), "--var", "email"])
        assert result.exit_code == 1
        assert "エラー:" in result.output

    def test_missing_file(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["replay", str(tmp_path / "none.yaml")])
        assert result.exit_code == 1
        assert "見つかりません" in result.output


# ===========================================================================
# 2. validate コマンド
# ===========================================================================

class TestValidateCommand:
    """validate コマンドのテスト。"""

    def test_valid(self, script_file: Path) -> None:
        result = runner.invoke(app, ["validate", str(script_file)])
        assert result.exit_code == 0
        assert "スキーマ検証 OK" in result.output

    def test_schema_error(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["validate", str(_write(tmp_path, INVALID_YAML))])
        assert result.exit_code == 1
        assert "✗ steps" in result.output

    def test_syntax_error_with_line(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '{"steps": [\n  {"type": "click",,}\n]}', "script.json")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "✗ json (行 2)" in result.output


# ===========================================================================
# 3. lint コマンド
# ===========================================================================

class TestLintCommand:
    """lint コマンドのテスト。"""

    def test_clean(self, script_file: Path) -> None:
        result = runner.invoke(app, ["lint", str(script_file)])
        assert result.exit_code == 0
        assert "lint 問題なし" in result.output

    def test_error(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["lint", str(_write(tmp_path, MISSING_LOCATOR_YAML))])
        assert result.exit_code == 1
        assert "[error] 行 1 (click: 保存)" in result.output

    def test_info_only_exits_zero(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["lint", str(_write(tmp_path, FILE_UPLOAD_YAML))])
        assert result.exit_code == 0
        assert "[info] 行 1" in result.output


# ===========================================================================
# 4. variables コマンド
# ===========================================================================

class TestVariablesCommand:
    """variables コマンドのテスト。"""

    def test_lists_usages(self, script_file: Path) -> None:
        result = runner.invoke(app, ["variables", str(script_file)])
        assert result.exit_code == 0
        assert "{{email}}  ステップ 0 (type.value)" in result.output
        assert "合計: 1 変数" in result.output

    def test_no_variables(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["variables", str(_write(tmp_path, NO_VARIABLE_YAML))])
        assert result.exit_code == 0
        assert "変数は使用されていません" in result.output

    def test_validates_bindings(self, script_file: Path) -> None:
        ok = runner.invoke(app, ["variables", str(script_file), "--var", "email=a@example.com"])
        assert ok.exit_code == 0
        assert "全ての変数が指定されています" in ok.output

        empty = runner.invoke(app, ["variables", str(script_file), "--var", "email= "])
        assert empty.exit_code == 1
        assert "空の変数: email" in empty.output


# ===========================================================================
# 5. locate / list-actions コマンド
# ===========================================================================

class TestLocateCommand:
    """locate コマンドのテスト。"""

    def test_prints_locator_set(self) -> None:
        payload = '{"locators": []}'
        with patch("ghostreplay.cli._locate", new=AsyncMock(return_value=payload)) as mock_locate:
            result = runner.invoke(app, ["locate", "http://localhost:4200", "#email"])
        assert result.exit_code == 0
        assert payload in result.output
        mock_locate.assert_awaited_once_with("http://localhost:4200", "#email", False)

    def test_no_match(self) -> None:
        with patch("ghostreplay.cli._locate", new=AsyncMock(return_value=None)):
            result = runner.invoke(app, ["locate", "http://localhost:4200", "#none"])
        assert result.exit_code == 1
        assert "一致する要素がありません" in result.output


class TestListActionsCommand:
    """list-actions コマンドのテスト。"""

    def test_lists_builtin_actions(self) -> None:
        result = runner.invoke(app, ["list-actions"])
        assert result.exit_code == 0
        assert "click" in result.output
        assert "fileUpload" in result.output
        assert "合計: 14 アクション" in result.output


# ===========================================================================
# 6. 引数パース・コンソールプロンプト
# ===========================================================================

class TestParseVarOptions:
    """parse_var_options() のテスト。"""

    def test_parses_pairs(self) -> None:
        assert parse_var_options(["a=1", " b =x=y", "c="]) == {"a": "1", "b": "x=y", "c": ""}

    @pytest.mark.parametrize("item", ["novalue", "=x", " =x"])
    def test_invalid(self, item: str) -> None:
        with pytest.raises(ValueError):
            parse_var_options([item])


class TestConsolePrompter:
    """ConsolePrompter のテスト。"""

    @pytest.mark.parametrize("answer,expected", [
        ("y", StepDecision.CONTINUE),
        ("T", StepDecision.TAKEOVER),
        ("skip", StepDecision.SKIP),
        ("q", StepDecision.CANCEL),
        ("?", StepDecision.CONTINUE),
    ])
    async def test_confirm_step(self, answer: str, expected: StepDecision) -> None:
        with patch("typer.prompt", return_value=answer):
            decision = await ConsolePrompter().confirm_step(Step(type="click"), 0)
        assert decision == expected

    async def test_request_takeover_defaults_to_takeover(self) -> None:
        with patch("typer.prompt", return_value="x"), patch("typer.echo"):
            decision = await ConsolePrompter().request_takeover(Step(type="click"), 0, "理由\n詳細")
        assert decision == StepDecision.TAKEOVER


# ---------------------------------------------------------------------------
# ConsoleListener
# ---------------------------------------------------------------------------

class TestConsoleListener:
    """ConsoleListener のテイクオーバー入力待ちのテスト。"""

    @staticmethod
    def _event() -> TakeoverEvent:
        return TakeoverEvent(0, "click: 保存", "要素が見つかりません")

    async def test_enter_completes_takeover(self) -> None:
        listener = ConsoleListener()
        listener.controller = MagicMock()
        listener.controller.get_state.return_value = ReplayState(ReplayStatus.TAKEOVER, 0, 1)
        line = asyncio.get_running_loop().create_future()
        line.set_result("\n")

        with patch("ghostreplay.cli._read_operator_line", return_value=line), patch("typer.echo"):
            listener.on_takeover(self._event())
            await asyncio.gather(*listener._tasks)

        listener.controller.complete_takeover.assert_called_once()

    async def test_cancel_discards_pending_input(self) -> None:
        listener = ConsoleListener()
        listener.controller = MagicMock()
        never = asyncio.get_running_loop().create_future()

        with patch("ghostreplay.cli._read_operator_line", return_value=never), patch("typer.echo"):
            listener.on_takeover(self._event())
            pending = list(listener._tasks)
            await asyncio.sleep(0)
            listener.on_cancelled(ReplayState(ReplayStatus.IDLE, 0, 1))
            await asyncio.gather(*pending, return_exceptions=True)

        assert all(task.cancelled() for task in pending)
        assert listener._tasks == set()
        listener.controller.complete_takeover.assert_not_called()
