"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

ghostreplay コマンドとして以下のサブコマンドを提供する:
  - replay: 記録スクリプトの再生
  - validate: スキーマ検証
  - lint: 静的解析
  - variables: 変数一覧とバインディング検証
  - locate: ページ上の要素に対する LocatorSet の生成（記録側の診断用）
  - list-actions: 登録済みアクション一覧
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer

from .core.orchestrator import ReplayEventListener, StepDecision

if TYPE_CHECKING:
    from .config import LaunchConfig, ReplayOptions
    from .core.orchestrator import (
        ProgressEvent,
        ReplayController,
        ReplayReport,
        ReplayState,
        TakeoverEvent,
    )
    from .dsl.schema import Script, Step

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "ghostreplay — 記録したブラウザ操作の再生ツール\n\n"
        "基本の流れ:\n"
        "  1. ghostreplay validate flows/xxx.json  記録スクリプトを検証\n"
        "  2. ghostreplay replay flows/xxx.json --var name=値  再生\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", help="詳細ログを出力する"),
) -> None:
    """ログ出力レベルを設定する。"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# 引数パース
# ---------------------------------------------------------------------------

def parse_var_options(values: list[str]) -> dict[str, str]:
    """--var name=value の列をバインディングに変換する。

    Raises:
        ValueError: "=" を含まない、または名前が空の指定があった場合
    """
    bindings: dict[str, str] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"--var は name=value の形式で指定してください: {item!r}")
        bindings[name.strip()] = value
    return bindings


# ---------------------------------------------------------------------------
# コンソール用コラボレータ
# ---------------------------------------------------------------------------

_CONFIRM_CHOICES = {
    "y": StepDecision.CONTINUE,
    "t": StepDecision.TAKEOVER,
    "s": StepDecision.SKIP,
    "q": StepDecision.CANCEL,
}

_TAKEOVER_CHOICES = {
    "t": StepDecision.TAKEOVER,
    "s": StepDecision.SKIP,
    "q": StepDecision.CANCEL,
}


class ConsolePrompter:
    """標準入力で操作者の判断を受け付ける TakeoverPrompter。"""

    async def confirm_step(self, step: Step, step_index: int) -> StepDecision:
        answer = await asyncio.to_thread(
            typer.prompt,
            f"ステップ {step_index + 1} ({step.describe()}) を実行しますか？ "
            "[y]実行 [t]手動で操作 [s]スキップ [q]中止",
            default="y",
        )
        return _CONFIRM_CHOICES.get(answer.strip().lower()[:1], StepDecision.CONTINUE)

    async def request_takeover(self, step: Step, step_index: int, reason: str) -> StepDecision:
        typer.echo(f"\nステップ {step_index + 1} ({step.describe()}) を自動実行できませんでした:")
        typer.echo(f"  {reason.splitlines()[0]}")
        answer = await asyncio.to_thread(
            typer.prompt,
            "[t]手動で操作 [s]スキップ [q]中止",
            default="t",
        )
        return _TAKEOVER_CHOICES.get(answer.strip().lower()[:1], StepDecision.TAKEOVER)


def _read_operator_line() -> asyncio.Future:
    """標準入力の1行をデーモンスレッドで読み、結果を Future で返す。

    入力待ちのスレッドは asyncio.run() の終了を妨げない。
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def deliver(line: str) -> None:
        if not future.done():
            future.set_result(line)

    def read() -> None:
        line = sys.stdin.readline()
        try:
            loop.call_soon_threadsafe(deliver, line)
        except RuntimeError:
            # イベントループは既に閉じている
            pass

    threading.Thread(target=read, name="ghostreplay-operator-input", daemon=True).start()
    return future


class ConsoleListener(ReplayEventListener):
    """再生の進捗をコンソールに表示する。

    テイクオーバー中は Enter の入力を待ち、入力があれば再生を再開する。
    再生が中止・終了した時点で入力待ちは破棄する。
    """

    def __init__(self) -> None:
        self.controller: Optional[ReplayController] = None
        self._tasks: set[asyncio.Task] = set()

    def on_progress(self, event: ProgressEvent) -> None:
        typer.echo(f"[{event.step_index + 1}/{event.total_steps}] {event.descriptor}")

    def on_takeover(self, event: TakeoverEvent) -> None:
        typer.echo("ブラウザで操作を行い、終わったら Enter を押してください。")
        task = asyncio.get_running_loop().create_task(self._wait_for_operator())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def on_paused(self, state: ReplayState) -> None:
        typer.echo(f"一時停止しました（ステップ {state.current_step + 1}）")

    def on_cancelled(self, state: ReplayState) -> None:
        typer.echo("再生を中止しました")
        self._discard_pending()

    def on_complete(self, report: ReplayReport) -> None:
        self._discard_pending()

    def _discard_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    async def _wait_for_operator(self) -> None:
        from .core.orchestrator import ReplayStatus

        await _read_operator_line()
        if self.controller is not None and self.controller.get_state().status == ReplayStatus.TAKEOVER:
            self.controller.complete_takeover()


# ---------------------------------------------------------------------------
# replay コマンド
# ---------------------------------------------------------------------------

async def _run_replay(
    script: Script,
    bindings: dict[str, str],
    options: ReplayOptions,
    launch: LaunchConfig,
    start_url: Optional[str],
    interactive: bool,
) -> ReplayReport:
    """Chromium を起動してスクリプトを再生する。"""
    from playwright.async_api import async_playwright

    from .core.orchestrator import ReplayController
    from .core.playwright_page import (
        PlaywrightHighlighter,
        PlaywrightPage,
        PlaywrightStabilityMonitor,
    )

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=not launch.headed)
        try:
            context = await browser.new_context(
                viewport={"width": launch.viewport_width, "height": launch.viewport_height},
            )
            caps = PlaywrightPage(context, await context.new_page())

            target = start_url or script.startUrl
            if target:
                await caps.navigate(target)

            listener = ConsoleListener()
            controller = ReplayController(
                caps,
                stability=PlaywrightStabilityMonitor(caps),
                prompter=ConsolePrompter() if interactive else None,
                listener=listener,
                highlighter=PlaywrightHighlighter(),
            )
            listener.controller = controller
            return await controller.start(script, bindings, options)
        finally:
            await browser.close()


@app.command()
def replay(
    script_file: Path = typer.Argument(..., help="再生する記録スクリプト（.json / .yaml）"),
    var: list[str] = typer.Option([], "--var", "-v", help="変数のバインディング（name=value、複数指定可）"),
    url: Optional[str] = typer.Option(None, "--url", help="再生前に開く URL（省略時はスクリプトの startUrl）"),
    headed: Optional[bool] = typer.Option(None, "--headed/--headless", help="ブラウザ表示モード"),
    stop_on_error: Optional[bool] = typer.Option(
        None, "--stop-on-error/--continue-on-error", help="ステップ失敗時に再生を止めるか",
    ),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="要素解決のタイムアウト（ミリ秒）"),
    step_delay: Optional[int] = typer.Option(None, "--step-delay", help="ステップ間の待機（ミリ秒）"),
    start_from: Optional[int] = typer.Option(None, "--start-from", help="再生を開始するステップ番号（0始まり）"),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="失敗時や確認ステップで操作者の判断を求める",
    ),
    report_dir: Optional[Path] = typer.Option(
        None, "--report-dir", help="JSON / HTML / JUnit XML レポートの出力先",
    ),
) -> None:
    """記録スクリプトを Chromium で再生する。デフォルトでブラウザを表示します。"""
    from .config import apply_cli_args, load_launch_config_from_env, load_options_from_env
    from .core.reporting import Reporter, step_status
    from .dsl.parser import ScriptParser
    from .dsl.variables import extract_variables, validate_bindings

    try:
        script = ScriptParser().load(script_file)
        bindings = parse_var_options(var)

        options = apply_cli_args(
            load_options_from_env(),
            timeout_ms=timeout,
            step_delay_ms=step_delay,
            stop_on_error=stop_on_error,
            start_from_step=start_from,
        )
        launch = load_launch_config_from_env()
        if headed is not None:
            launch.headed = headed

        check = validate_bindings([v.name for v in extract_variables(script)], bindings)
        if not check.valid:
            typer.echo(f"警告: {check.message}", err=True)

        report = asyncio.run(
            _run_replay(script, bindings, options, launch, url, interactive)
        )

        statuses = [step_status(s) for s in report.step_results]
        typer.echo(f"スクリプト: {report.script_title}")
        typer.echo(f"ステータス: {report.status.value}")
        typer.echo(f"実行時間: {report.duration_ms:.0f}ms")
        typer.echo(
            f"ステップ: {report.steps_executed}/{report.total_steps} "
            f"(passed={statuses.count('passed')}, failed={statuses.count('failed')}, "
            f"skipped={statuses.count('skipped')}, takeover={statuses.count('takeover')})"
        )
        for err in report.errors:
            typer.echo(f"  ✗ ステップ {err.step_index} ({err.action_type}) [{err.kind.value}]: "
                       f"{err.error.splitlines()[0] if err.error else ''}")

        if report_dir is not None:
            reporter = Reporter()
            reporter.generate_json(report, report_dir)
            html_path = reporter.generate_html(report, report_dir)
            reporter.generate_junit_xml(report, report_dir)
            typer.echo(f"レポート: {html_path}")

        if not report.success:
            raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# validate コマンド
# ---------------------------------------------------------------------------

@app.command()
def validate(
    script_file: Path = typer.Argument(..., help="検証する記録スクリプト"),
) -> None:
    """記録スクリプトのスキーマ検証を行う。"""
    from .dsl.parser import ScriptParser

    errors = ScriptParser().validate(script_file)

    if not errors:
        typer.echo(f"✓ {script_file}: スキーマ検証 OK")
    else:
        for err in errors:
            line_info = f" (行 {err.line})" if err.line else ""
            typer.echo(f"✗ {err.location}{line_info}: {err.message}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# lint コマンド
# ---------------------------------------------------------------------------

@app.command()
def lint(
    script_file: Path = typer.Argument(..., help="静的解析する記録スクリプト"),
) -> None:
    """記録スクリプトの静的解析（Lint）を実行する。error / warning があれば終了コード 1。"""
    from .dsl.linter import LintSeverity, ScriptLinter
    from .dsl.parser import ScriptParser

    try:
        script = ScriptParser().load(script_file)
        issues = ScriptLinter().lint(script)

        if not issues:
            typer.echo(f"✓ {script_file}: lint 問題なし")
            return

        for issue in issues:
            typer.echo(
                f"[{issue.severity.value}] "
                f"行 {issue.line_number} ({issue.step_name}): "
                f"{issue.message}"
            )
        if any(i.severity in (LintSeverity.ERROR, LintSeverity.WARNING) for i in issues):
            raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# variables コマンド
# ---------------------------------------------------------------------------

@app.command()
def variables(
    script_file: Path = typer.Argument(..., help="対象の記録スクリプト"),
    var: list[str] = typer.Option([], "--var", "-v", help="検証するバインディング（name=value）"),
) -> None:
    """スクリプトが参照する変数と使用箇所を表示する。--var 指定時は不足・空値を検証する。"""
    from .dsl.parser import ScriptParser
    from .dsl.variables import extract_variables, validate_bindings

    try:
        script = ScriptParser().load(script_file)
        found = extract_variables(script)

        if not found:
            typer.echo(f"{script_file}: 変数は使用されていません")
            return

        for info in found:
            places = ", ".join(f"ステップ {u.step_index} ({u.action_type}.{u.field})" for u in info.usages)
            typer.echo(f"  {{{{{info.name}}}}}  {places}")
        typer.echo(f"\n合計: {len(found)} 変数")

        if var:
            check = validate_bindings([v.name for v in found], parse_var_options(var))
            typer.echo(check.message)
            if not check.valid:
                raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# locate コマンド
# ---------------------------------------------------------------------------

async def _locate(url: str, selector: str, headed: bool) -> Optional[str]:
    """ページを開き、selector の最初の要素について LocatorSet の JSON を返す。"""
    from playwright.async_api import async_playwright

    from .core.playwright_page import PlaywrightPage
    from .core.synthesizer import SelectorSynthesizer

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=not headed)
        try:
            context = await browser.new_context()
            caps = PlaywrightPage(context, await context.new_page())
            await caps.navigate(url)
            matches = await caps.query_css(selector)
            if not matches:
                return None
            locator_set = await SelectorSynthesizer(caps).synthesize(matches[0])
            return locator_set.model_dump_json(indent=2, exclude_none=True)
        finally:
            await browser.close()


@app.command()
def locate(
    url: str = typer.Argument(..., help="開く URL"),
    selector: str = typer.Argument(..., help="対象要素を指す CSS セレクタ"),
    headed: bool = typer.Option(False, "--headed/--headless", help="ブラウザ表示モード"),
) -> None:
    """ページ上の要素について、記録時と同じ手順で LocatorSet を生成して表示する。"""
    try:
        result = asyncio.run(_locate(url, selector, headed))
        if result is None:
            typer.echo(f"エラー: '{selector}' に一致する要素がありません", err=True)
            raise typer.Exit(code=1)
        typer.echo(result)
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# list-actions コマンド
# ---------------------------------------------------------------------------

@app.command("list-actions")
def list_actions() -> None:
    """登録済み全アクションの一覧を表示する。"""
    from .actions import create_default_registry

    all_actions = create_default_registry().list_all()
    for info in all_actions:
        marker = "*" if info.requires_element else " "
        typer.echo(f"  {marker} {info.name:12s} {info.description}")
    typer.echo(f"\n合計: {len(all_actions)} アクション（* は要素の解決が必要）")
