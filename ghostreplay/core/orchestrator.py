"""
再生オーケストレータ — ReplaySession の状態機械とステップ実行ループ

スクリプトのステップを1つずつ、待機戦略 → 要素解決 → 強調表示 → 変数注入
→ アクション実行 の順に処理する。一時停止・再開・キャンセル・テイクオーバーは
ReplayController の制御メソッドで受け付け、実行ループは中断地点でのみそれを観測する。

状態遷移:
  IDLE → REPLAYING                    start()
  REPLAYING → PAUSED                  pause()
  PAUSED → REPLAYING                  resume()
  REPLAYING → TAKEOVER                実行前確認または解決失敗で操作者がテイクオーバーを選択
  TAKEOVER → REPLAYING                complete_takeover() / resume()
  PAUSED / TAKEOVER / REPLAYING → IDLE  cancel()
  REPLAYING → COMPLETE                最終ステップまで stopOnError で止まらずに到達
  REPLAYING → ERROR                   stopOnError 下の失敗、または致命的エラー

COMPLETE / ERROR はそのセッションの終端状態で、次の start() は新しいセッションを作る。
ステップは常に1つずつ順番に実行され、2つのステップが並行することはない。
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Mapping, Optional, Protocol, runtime_checkable

from ..actions.builtin import create_default_registry
from ..actions.registry import ActionContext, ActionRegistry
from ..config import ReplayOptions
from ..dsl.variables import VariableInjector
from .errors import (
    ActionExecutionError,
    ElementNotFoundError,
    FailureKind,
    FatalStepError,
    InvalidStateTransition,
    ManualCancellationError,
    ManualInterventionRequired,
    MappingFailureError,
    ReplayError,
)
from .resolver import ElementResolver
from .waits import CancellationToken, Deadline, StabilityMonitor, WaitStrategy, wait_until

if TYPE_CHECKING:
    from ..dsl.schema import Script, Step
    from .capability import Element, PageCapabilities

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 状態・判断
# ---------------------------------------------------------------------------

class ReplayStatus(enum.Enum):
    """再生セッションの状態。"""

    IDLE = "idle"
    REPLAYING = "replaying"
    PAUSED = "paused"
    TAKEOVER = "takeover"
    COMPLETE = "complete"
    ERROR = "error"


_ACTIVE_STATUSES = frozenset({ReplayStatus.REPLAYING, ReplayStatus.PAUSED, ReplayStatus.TAKEOVER})


class StepDecision(enum.Enum):
    """操作者の判断。"""

    CONTINUE = "continue"
    TAKEOVER = "takeover"
    SKIP = "skip"
    CANCEL = "cancel"


# ---------------------------------------------------------------------------
# 結果・イベント データクラス
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    """単一ステップの実行結果。記録後は変更しない。

    Attributes:
        step_index: ステップのインデックス（0始まり）
        action_type: ステップ種別
        success: 成功したか（スキップ・テイクオーバー完了も成功扱い）
        element_found: ステップに必要な要素（drag のドロップ先を含む）をすべて解決できたか
        execution_time_ms: 一時停止時間を除いた実行時間（ミリ秒）
        error: エラーメッセージ（失敗時のみ）
        error_kind: 失敗種別（失敗時のみ）
        skipped: 操作者の判断でスキップされたか
        taken_over: 操作者が手動で完了させたか
        unresolved_variables: バインディングに存在せず残ったプレースホルダ
    """

    step_index: int
    action_type: str
    success: bool
    element_found: bool = False
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    skipped: bool = False
    taken_over: bool = False
    unresolved_variables: tuple[str, ...] = ()


@dataclass(frozen=True)
class StepError:
    """レポートに載せる失敗情報。"""

    step_index: int
    action_type: str
    error: str
    kind: FailureKind

    @property
    def fatal(self) -> bool:
        return self.kind == FailureKind.FATAL


@dataclass
class ReplayReport:
    """再生全体の結果。

    Attributes:
        script_title: スクリプト名
        status: 終了時の状態（COMPLETE / ERROR / IDLE）
        success: 全ステップが成功し COMPLETE に到達したか
        step_results: 実行したステップの結果
        errors: 失敗したステップの情報
        start_time: 開始日時
        end_time: 終了日時
        total_steps: スクリプトのステップ数
    """

    script_title: str
    status: ReplayStatus
    success: bool
    step_results: list[StepResult] = field(default_factory=list)
    errors: list[StepError] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_steps: int = 0

    @property
    def steps_executed(self) -> int:
        return len(self.step_results)

    @property
    def duration_ms(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000


@dataclass(frozen=True)
class ReplayState:
    """get_state() の戻り値。"""

    status: ReplayStatus
    current_step: int
    total_steps: int


@dataclass(frozen=True)
class ProgressEvent:
    """ステップ開始時の進捗イベント。"""

    step_index: int
    total_steps: int
    action_type: str
    descriptor: str


@dataclass(frozen=True)
class TakeoverEvent:
    """テイクオーバー開始イベント。"""

    step_index: int
    descriptor: str
    reason: str


# ---------------------------------------------------------------------------
# 外部コラボレータ
# ---------------------------------------------------------------------------

class ReplayEventListener:
    """再生イベントの受け手。既定の実装は何もしない。

    必要なメソッドだけをオーバーライドして使う。
    """

    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_takeover(self, event: TakeoverEvent) -> None:
        pass

    def on_paused(self, state: ReplayState) -> None:
        pass

    def on_resumed(self, state: ReplayState) -> None:
        pass

    def on_cancelled(self, state: ReplayState) -> None:
        pass

    def on_complete(self, report: ReplayReport) -> None:
        pass


@runtime_checkable
class TakeoverPrompter(Protocol):
    """操作者に判断を求めるコラボレータ。"""

    async def confirm_step(self, step: Step, step_index: int) -> StepDecision:
        """pauseBeforeExecute のステップを実行してよいか確認する。

        Returns:
            CONTINUE / TAKEOVER / CANCEL
        """
        ...

    async def request_takeover(self, step: Step, step_index: int, reason: str) -> StepDecision:
        """回復可能な失敗をどう扱うか確認する。

        Returns:
            TAKEOVER / SKIP / CANCEL
        """
        ...


@runtime_checkable
class ElementHighlighter(Protocol):
    """操作前に対象要素を強調表示するコラボレータ。"""

    async def highlight(self, element: Element, duration_ms: int) -> None: ...


# ---------------------------------------------------------------------------
# セッション
# ---------------------------------------------------------------------------

@dataclass
class ReplaySession:
    """1回の start() から終端状態までの可変状態。ReplayController だけが変更する。"""

    script: Script
    options: ReplayOptions
    injector: VariableInjector
    resolver: ElementResolver
    wait_strategy: WaitStrategy
    token: CancellationToken
    status: ReplayStatus = ReplayStatus.REPLAYING
    current_step_index: int = 0
    results: list[StepResult] = field(default_factory=list)
    takeover_done: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def total_steps(self) -> int:
        return len(self.script.steps)

    @property
    def variable_bindings(self) -> dict[str, str]:
        return self.injector.bindings


# ---------------------------------------------------------------------------
# ReplayController 本体
# ---------------------------------------------------------------------------

class ReplayController:
    """再生セッションを所有し、ステップ実行ループと制御操作を提供する。

    1つのコントローラが同時に持てるアクティブセッションは1つだけ。
    独立したページには別々のコントローラを使う。

    使用例::

        controller = ReplayController(caps)
        task = asyncio.create_task(controller.start(script, {"name": "Alice"}))
        controller.pause()
        controller.resume()
        report = await task
    """

    def __init__(
        self,
        caps: PageCapabilities,
        registry: Optional[ActionRegistry] = None,
        *,
        stability: Optional[StabilityMonitor] = None,
        prompter: Optional[TakeoverPrompter] = None,
        listener: Optional[ReplayEventListener] = None,
        highlighter: Optional[ElementHighlighter] = None,
    ) -> None:
        """
        Args:
            caps: ページ操作インターフェース
            registry: アクションレジストリ。None の場合は標準アクションを登録したものを使う
            stability: ページ安定性コラボレータ
            prompter: 操作者に判断を求めるコラボレータ。None の場合は確認なしで続行し、
                回復可能な失敗はそのまま失敗として記録する
            listener: 再生イベントの受け手
            highlighter: 操作前の強調表示を行うコラボレータ
        """
        self._caps = caps
        self._registry = registry if registry is not None else create_default_registry()
        self._stability = stability
        self._prompter = prompter
        self._listener = listener if listener is not None else ReplayEventListener()
        self._highlighter = highlighter
        self._session: Optional[ReplaySession] = None
        self._running = False

    # -------------------------------------------------------------------
    # パブリック API
    # -------------------------------------------------------------------

    @property
    def session(self) -> Optional[ReplaySession]:
        """現在または直前のセッションを返す。"""
        return self._session

    async def start(
        self,
        script: Script,
        variable_bindings: Optional[Mapping[str, str]] = None,
        options: Optional[ReplayOptions] = None,
    ) -> ReplayReport:
        """新しいセッションを作ってスクリプトを再生し、結果を返す。

        Args:
            script: 再生するスクリプト
            variable_bindings: プレースホルダの識別子から値へのマップ
            options: 再生設定。None の場合はデフォルト値

        Returns:
            再生全体の結果

        Raises:
            InvalidStateTransition: 別のセッションが再生中の場合
            ValueError: start_from_step が負の場合
        """
        if self._running:
            raise InvalidStateTransition(
                "再生中のセッションがあります。cancel() で終了してから start() してください"
            )
        options = options if options is not None else ReplayOptions()
        if options.start_from_step < 0:
            raise ValueError(f"start_from_step は 0 以上を指定してください: {options.start_from_step}")

        token = CancellationToken(options.poll_interval_ms)
        session = ReplaySession(
            script=script,
            options=options,
            injector=VariableInjector(variable_bindings or {}),
            resolver=ElementResolver(
                self._caps,
                attempts=options.retry_attempts,
                backoff_ms=options.retry_delay_ms,
                poll_interval_ms=options.poll_interval_ms,
            ),
            wait_strategy=WaitStrategy(
                self._stability,
                timeout_ms=options.timeout_ms,
                max_wait_ms=options.max_wait_ms,
            ),
            token=token,
            current_step_index=options.start_from_step,
        )
        self._session = session
        self._running = True

        logger.info(
            "再生を開始します: %s（%d ステップ、開始位置 %d）",
            script.title, session.total_steps, options.start_from_step,
        )
        try:
            await self._run(session)
        except ManualCancellationError:
            session.status = ReplayStatus.IDLE
            logger.info("再生がキャンセルされました（ステップ %d）", session.current_step_index)
        except FatalStepError as exc:
            session.status = ReplayStatus.ERROR
            logger.error("致命的エラーにより再生を停止しました: %s", exc)
        except Exception:
            session.status = ReplayStatus.ERROR
            logger.exception("再生中に予期しないエラーが発生しました")
        finally:
            session.finished_at = datetime.now()
            self._running = False

        report = self._build_report(session)
        logger.info(
            "再生を終了しました: %s（状態: %s、%d/%d ステップ実行、失敗 %d 件）",
            script.title, report.status.value, report.steps_executed,
            report.total_steps, len(report.errors),
        )
        self._listener.on_complete(report)
        return report

    def pause(self) -> None:
        """REPLAYING → PAUSED。次の中断地点で実行ループが止まる。

        Raises:
            InvalidStateTransition: REPLAYING 以外の状態で呼ばれた場合
        """
        session = self._require_session()
        if session.status != ReplayStatus.REPLAYING:
            raise InvalidStateTransition(f"{session.status.value} 状態では一時停止できません")
        session.status = ReplayStatus.PAUSED
        session.token.pause()
        logger.info("再生を一時停止しました（ステップ %d）", session.current_step_index)
        self._listener.on_paused(self.get_state())

    def resume(self) -> None:
        """PAUSED → REPLAYING。TAKEOVER 中はテイクオーバーを完了させる。

        Raises:
            InvalidStateTransition: PAUSED / TAKEOVER 以外の状態で呼ばれた場合
        """
        session = self._require_session()
        if session.status == ReplayStatus.TAKEOVER:
            self.complete_takeover()
            return
        if session.status != ReplayStatus.PAUSED:
            raise InvalidStateTransition(f"{session.status.value} 状態では再開できません")
        session.status = ReplayStatus.REPLAYING
        session.token.resume()
        logger.info("再生を再開しました（ステップ %d）", session.current_step_index)
        self._listener.on_resumed(self.get_state())

    def complete_takeover(self) -> None:
        """TAKEOVER → REPLAYING。現在のステップを成功として次へ進む。

        Raises:
            InvalidStateTransition: TAKEOVER 以外の状態で呼ばれた場合
        """
        session = self._require_session()
        if session.status != ReplayStatus.TAKEOVER:
            raise InvalidStateTransition(f"{session.status.value} 状態ではテイクオーバーを完了できません")
        session.takeover_done = True
        session.status = ReplayStatus.REPLAYING
        logger.info("テイクオーバーが完了しました（ステップ %d）", session.current_step_index)
        self._listener.on_resumed(self.get_state())

    def cancel(self) -> None:
        """終端でない状態 → IDLE。実行中の操作が終わった後、次の中断地点で停止する。

        終端状態（またはセッションなし）で呼ばれた場合は何もしない。
        """
        session = self._session
        if session is None or session.status not in _ACTIVE_STATUSES:
            logger.debug("キャンセル対象のセッションがありません")
            return
        session.status = ReplayStatus.IDLE
        session.token.cancel()
        logger.info("再生のキャンセルを要求しました（ステップ %d）", session.current_step_index)
        self._listener.on_cancelled(self.get_state())

    def get_state(self) -> ReplayState:
        """現在の状態・ステップ位置・総ステップ数を返す。"""
        session = self._session
        if session is None:
            return ReplayState(ReplayStatus.IDLE, 0, 0)
        return ReplayState(session.status, session.current_step_index, session.total_steps)

    # -------------------------------------------------------------------
    # 実行ループ
    # -------------------------------------------------------------------

    async def _run(self, session: ReplaySession) -> None:
        options = session.options
        token = session.token

        for index in range(options.start_from_step, session.total_steps):
            session.current_step_index = index
            await token.checkpoint()

            step = session.script.steps[index]
            self._listener.on_progress(ProgressEvent(
                step_index=index,
                total_steps=session.total_steps,
                action_type=step.type,
                descriptor=step.describe(),
            ))

            try:
                result = await self._execute_step(session, index, step)
            except FatalStepError as exc:
                session.results.append(StepResult(
                    step_index=index,
                    action_type=step.type,
                    success=False,
                    error=str(exc),
                    error_kind=FailureKind.FATAL,
                ))
                raise
            session.results.append(result)

            if not result.success:
                logger.error(
                    "ステップ %d (%s) が失敗しました [%s]: %s",
                    index, step.describe(),
                    result.error_kind.value if result.error_kind else "-", result.error,
                )
                if options.stop_on_error:
                    token.raise_if_cancelled()
                    session.status = ReplayStatus.ERROR
                    return

            if options.step_delay_ms > 0 and index < session.total_steps - 1:
                await token.sleep(options.step_delay_ms)

        token.raise_if_cancelled()
        session.current_step_index = session.total_steps
        session.status = ReplayStatus.COMPLETE

    async def _execute_step(self, session: ReplaySession, index: int, step: Step) -> StepResult:
        """1ステップを実行し、結果を返す。

        Raises:
            ManualCancellationError: キャンセルされた場合
            FatalStepError: 予期しない例外が発生した場合
        """
        options = session.options
        token = session.token
        clock = Deadline(None, token)
        element_found = False
        unresolved: tuple[str, ...] = ()

        try:
            if step.pauseBeforeExecute and self._prompter is not None:
                decision = await self._prompter.confirm_step(step, index)
                if decision == StepDecision.TAKEOVER:
                    return await self._takeover(
                        session, index, step, "実行前確認で手動操作が選択されました", False, clock,
                    )
                if decision == StepDecision.SKIP:
                    return self._skipped(index, step, False, clock)
                if decision == StepDecision.CANCEL:
                    self.cancel()
                    raise ManualCancellationError()

            await session.wait_strategy.wait(step, token)

            executor = self._registry.get(step.type)
            info = self._registry.info(step.type)

            element: Optional[Element] = None
            if info.requires_element:
                if step.locatorSet is None:
                    raise ElementNotFoundError(f"{step.type} ステップに locatorSet が記録されていません")
                element = await session.resolver.resolve_or_raise(
                    step.locatorSet, options.timeout_ms, token,
                )
                element_found = True
                await self._highlight(session, element)

            injected, unresolved = session.injector.inject_step(step)
            context = ActionContext(
                caps=self._caps,
                resolver=session.resolver,
                token=token,
                timeout_ms=options.timeout_ms,
                type_char_delay_ms=options.type_char_delay_ms,
            )
            try:
                await executor.execute(element, injected.value, injected, context)
            except ElementNotFoundError:
                # drag のドロップ先など、実行中に解決する副要素が見つからない
                element_found = False
                raise
            except ReplayError:
                raise
            except Exception as exc:
                raise ActionExecutionError(f"{type(exc).__name__}: {exc}") from exc

            logger.debug("ステップ %d (%s) が成功しました", index, step.describe())
            return StepResult(
                step_index=index,
                action_type=step.type,
                success=True,
                element_found=element_found,
                execution_time_ms=clock.elapsed_ms(),
                unresolved_variables=unresolved,
            )

        except (ManualCancellationError, FatalStepError):
            raise
        except (ElementNotFoundError, MappingFailureError, ManualInterventionRequired) as exc:
            return await self._recover(session, index, step, exc, element_found, clock, unresolved)
        except ReplayError as exc:
            return self._failed(index, step, exc, element_found, clock, unresolved)
        except Exception as exc:
            logger.exception("ステップ %d で予期しないエラーが発生しました", index)
            raise FatalStepError(f"ステップ {index} ({step.type}) で予期しないエラー: {exc}") from exc

    # -------------------------------------------------------------------
    # 失敗時の判断
    # -------------------------------------------------------------------

    async def _recover(
        self,
        session: ReplaySession,
        index: int,
        step: Step,
        exc: ReplayError,
        element_found: bool,
        clock: Deadline,
        unresolved: tuple[str, ...],
    ) -> StepResult:
        """回復可能な失敗を、操作者のテイクオーバー / スキップ / キャンセル判断に回す。"""
        if self._prompter is None:
            return self._failed(index, step, exc, element_found, clock, unresolved)

        reason = str(exc)
        try:
            decision = await self._prompter.request_takeover(step, index, reason)
        except ManualCancellationError:
            raise
        except Exception as prompt_exc:
            logger.exception("ステップ %d のテイクオーバー確認に失敗しました", index)
            raise FatalStepError(
                f"ステップ {index} ({step.type}) のテイクオーバー確認でエラー: {prompt_exc}"
            ) from prompt_exc
        if decision == StepDecision.TAKEOVER:
            return await self._takeover(session, index, step, reason, element_found, clock)
        if decision == StepDecision.SKIP:
            logger.info("ステップ %d をスキップしました: %s", index, step.describe())
            return self._skipped(index, step, element_found, clock)
        if decision == StepDecision.CANCEL:
            self.cancel()
            raise ManualCancellationError()
        # CONTINUE はこの判断では意味を持たないため失敗として記録する
        return self._failed(index, step, exc, element_found, clock, unresolved)

    async def _takeover(
        self,
        session: ReplaySession,
        index: int,
        step: Step,
        reason: str,
        element_found: bool,
        clock: Deadline,
    ) -> StepResult:
        """TAKEOVER 状態に入り、操作者の完了またはキャンセルを待つ。"""
        session.takeover_done = False
        session.status = ReplayStatus.TAKEOVER
        logger.info("テイクオーバーを開始します（ステップ %d）: %s", index, reason)
        self._listener.on_takeover(TakeoverEvent(index, step.describe(), reason))

        await wait_until(
            lambda: session.takeover_done or session.token.cancelled,
            None,
            session.options.poll_interval_ms,
        )
        session.token.raise_if_cancelled()

        return StepResult(
            step_index=index,
            action_type=step.type,
            success=True,
            element_found=element_found,
            execution_time_ms=clock.elapsed_ms(),
            taken_over=True,
        )

    def _skipped(self, index: int, step: Step, element_found: bool, clock: Deadline) -> StepResult:
        return StepResult(
            step_index=index,
            action_type=step.type,
            success=True,
            element_found=element_found,
            execution_time_ms=clock.elapsed_ms(),
            skipped=True,
        )

    def _failed(
        self,
        index: int,
        step: Step,
        exc: ReplayError,
        element_found: bool,
        clock: Deadline,
        unresolved: tuple[str, ...],
    ) -> StepResult:
        return StepResult(
            step_index=index,
            action_type=step.type,
            success=False,
            element_found=element_found,
            execution_time_ms=clock.elapsed_ms(),
            error=str(exc),
            error_kind=exc.kind,
            unresolved_variables=unresolved,
        )

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    async def _highlight(self, session: ReplaySession, element: Element) -> None:
        if not session.options.highlight_elements or self._highlighter is None:
            return
        try:
            await self._highlighter.highlight(element, session.options.highlight_duration_ms)
        except Exception as exc:  # noqa: BLE001
            logger.warning("強調表示に失敗しました。操作は続行します: %s", exc)

    def _require_session(self) -> ReplaySession:
        if self._session is None:
            raise InvalidStateTransition("セッションがありません。start() を呼んでください")
        return self._session

    def _build_report(self, session: ReplaySession) -> ReplayReport:
        errors = [
            StepError(
                step_index=r.step_index,
                action_type=r.action_type,
                error=r.error or "",
                kind=r.error_kind or FailureKind.FATAL,
            )
            for r in session.results if not r.success
        ]
        return ReplayReport(
            script_title=session.script.title,
            status=session.status,
            success=session.status == ReplayStatus.COMPLETE and not errors,
            step_results=list(session.results),
            errors=errors,
            start_time=session.started_at,
            end_time=session.finished_at,
            total_steps=session.total_steps,
        )
