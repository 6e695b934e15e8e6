"""
Reporter のユニットテスト

ReplayReport / StepResult は実際のデータクラスを使用する。
JSON パースには json モジュール、XML パースには xml.etree.ElementTree を使用する。

テスト対象:
  - generate_json(): JSON レポート生成、構造、サマリー
  - generate_html(): HTML レポート生成、テンプレートレンダリング
  - generate_junit_xml(): JUnit XML レポート生成、CI 互換性
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

from ghostreplay.core.errors import FailureKind
from ghostreplay.core.orchestrator import ReplayReport, ReplayStatus, StepError, StepResult
from ghostreplay.core.reporting import Reporter, step_status


# ---------------------------------------------------------------------------
# ヘルパー: テスト用データ生成
# ---------------------------------------------------------------------------

def _make_step(
    *,
    step_index: int = 0,
    action_type: str = "click",
    success: bool = True,
    error: Optional[str] = None,
    error_kind: Optional[FailureKind] = None,
    skipped: bool = False,
    taken_over: bool = False,
    unresolved_variables: tuple[str, ...] = (),
) -> StepResult:
    """テスト用の StepResult を生成する。"""
    return StepResult(
        step_index=step_index,
        action_type=action_type,
        success=success,
        element_found=success,
        execution_time_ms=120.0,
        error=error,
        error_kind=error_kind,
        skipped=skipped,
        taken_over=taken_over,
        unresolved_variables=unresolved_variables,
    )


def _make_report(steps: Optional[list[StepResult]] = None) -> ReplayReport:
    """テスト用の ReplayReport を生成する。"""
    if steps is None:
        steps = [
            _make_step(step_index=0, action_type="type"),
            _make_step(
                step_index=1, success=False,
                error="要素が見つかりません: 保存 button",
                error_kind=FailureKind.ELEMENT_NOT_FOUND,
            ),
            _make_step(step_index=2, skipped=True),
            _make_step(step_index=3, action_type="fileUpload", taken_over=True),
        ]
    errors = [
        StepError(s.step_index, s.action_type, s.error or "", s.error_kind or FailureKind.FATAL)
        for s in steps if not s.success
    ]
    return ReplayReport(
        script_title="ログインフロー",
        status=ReplayStatus.COMPLETE,
        success=not errors,
        step_results=steps,
        errors=errors,
        start_time=datetime(2024, 3, 15, 10, 30, 45),
        end_time=datetime(2024, 3, 15, 10, 30, 47),
        total_steps=len(steps),
    )


@pytest.fixture
def reporter() -> Reporter:
    return Reporter()


# ---------------------------------------------------------------------------
# step_status
# ---------------------------------------------------------------------------

class TestStepStatus:
    """step_status() のテスト。"""

    def test_statuses(self):
        assert step_status(_make_step()) == "passed"
        assert step_status(_make_step(success=False)) == "failed"
        assert step_status(_make_step(skipped=True)) == "skipped"
        assert step_status(_make_step(taken_over=True)) == "takeover"


# ---------------------------------------------------------------------------
# JSON レポート
# ---------------------------------------------------------------------------

class TestGenerateJson:
    """generate_json() のテスト。"""

    def test_creates_file(self, reporter: Reporter, tmp_path: Path):
        path = reporter.generate_json(_make_report(), tmp_path / "out")
        assert path == tmp_path / "out" / "report.json"
        assert path.exists()

    def test_structure(self, reporter: Reporter, tmp_path: Path):
        data = json.loads(reporter.generate_json(_make_report(), tmp_path).read_text(encoding="utf-8"))

        assert data["title"] == "ログインフロー"
        assert data["status"] == "complete"
        assert data["success"] is False
        assert data["duration_ms"] == pytest.approx(2000.0)
        assert data["started_at"] == "2024-03-15T10:30:45"
        assert data["total_steps"] == 4
        assert [s["status"] for s in data["steps"]] == ["passed", "failed", "skipped", "takeover"]
        assert data["steps"][1]["error_kind"] == "element_not_found"

    def test_summary(self, reporter: Reporter, tmp_path: Path):
        data = json.loads(reporter.generate_json(_make_report(), tmp_path).read_text(encoding="utf-8"))
        assert data["summary"] == {
            "total": 4, "passed": 1, "failed": 1, "skipped": 1, "takeover": 1,
        }

    def test_unresolved_variables(self, reporter: Reporter, tmp_path: Path):
        report = _make_report([_make_step(action_type="type", unresolved_variables=("email",))])
        data = json.loads(reporter.generate_json(report, tmp_path).read_text(encoding="utf-8"))
        assert data["steps"][0]["unresolved_variables"] == ["email"]


# ---------------------------------------------------------------------------
# HTML レポート
# ---------------------------------------------------------------------------

class TestGenerateHtml:
    """generate_html() のテスト。"""

    def test_renders_template(self, reporter: Reporter, tmp_path: Path):
        path = reporter.generate_html(_make_report(), tmp_path)
        html = path.read_text(encoding="utf-8")

        assert path.name == "report.html"
        assert "<title>再生レポート - ログインフロー</title>" in html
        assert "要素が見つかりません" in html
        assert "失敗 1" in html

    def test_escapes_error_text(self, reporter: Reporter, tmp_path: Path):
        report = _make_report([_make_step(
            success=False, error="<script>alert(1)</script>",
            error_kind=FailureKind.ACTION_EXECUTION,
        )])
        html = reporter.generate_html(report, tmp_path).read_text(encoding="utf-8")
        assert "<script>alert(1)</script>" not in html
        assert "&lt;script&gt;" in html


# ---------------------------------------------------------------------------
# JUnit XML レポート
# ---------------------------------------------------------------------------

class TestGenerateJunitXml:
    """generate_junit_xml() のテスト。"""

    def test_testsuite_attributes(self, reporter: Reporter, tmp_path: Path):
        root = ET.parse(reporter.generate_junit_xml(_make_report(), tmp_path)).getroot()
        suite = root.find("testsuite")

        assert root.tag == "testsuites"
        assert suite.get("name") == "ログインフロー"
        assert suite.get("tests") == "4"
        assert suite.get("failures") == "1"
        assert suite.get("skipped") == "1"
        assert suite.get("time") == "2.000"

    def test_testcases(self, reporter: Reporter, tmp_path: Path):
        root = ET.parse(reporter.generate_junit_xml(_make_report(), tmp_path)).getroot()
        cases = root.findall("testsuite/testcase")

        assert [c.get("name") for c in cases] == [
            "[0] type", "[1] click", "[2] click", "[3] fileUpload",
        ]
        failure = cases[1].find("failure")
        assert failure is not None
        assert failure.get("type") == "element_not_found"
        assert "保存 button" in failure.get("message")
        assert cases[2].find("skipped") is not None
        assert cases[3].find("failure") is None
        assert cases[3].find("skipped") is None
