"""
Reporter — 再生結果レポートの生成

ReplayReport を受け取り、JSON / HTML / JUnit XML 形式のレポートを生成する。

主な機能:
  - generate_json(): JSON レポート（report.json）の生成
  - generate_html(): Jinja2 テンプレートを使用した HTML レポート（report.html）の生成
  - generate_junit_xml(): JUnit XML レポート（junit.xml）の生成（CI 統合用）
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from .orchestrator import ReplayReport, StepResult

logger = logging.getLogger(__name__)

# テンプレートディレクトリのパス
_TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


def step_status(step: StepResult) -> str:
    """ステップ結果を passed / failed / skipped / takeover の文字列で返す。"""
    if not step.success:
        return "failed"
    if step.skipped:
        return "skipped"
    if step.taken_over:
        return "takeover"
    return "passed"


class Reporter:
    """再生結果レポートの生成クラス。"""

    # -------------------------------------------------------------------
    # JSON レポート
    # -------------------------------------------------------------------

    def generate_json(self, report: ReplayReport, output_dir: Path) -> Path:
        """JSON レポートを生成する。

        Args:
            report: 再生結果
            output_dir: 出力先ディレクトリ

        Returns:
            生成された report.json のパス
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        output_path = output_dir / "report.json"
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.build_report_dict(report), f, ensure_ascii=False, indent=2)

        logger.info("JSON レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # HTML レポート
    # -------------------------------------------------------------------

    def generate_html(self, report: ReplayReport, output_dir: Path) -> Path:
        """templates/report.html.j2 からスタンドアロン HTML レポートを生成する。

        Args:
            report: 再生結果
            output_dir: 出力先ディレクトリ

        Returns:
            生成された report.html のパス
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        env = Environment(
            loader=FileSystemLoader(str(_TEMPLATES_DIR)),
            autoescape=True,
        )
        template = env.get_template("report.html.j2")
        html_content = template.render(report=self.build_report_dict(report))

        output_path = output_dir / "report.html"
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(html_content)

        logger.info("HTML レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # JUnit XML レポート
    # -------------------------------------------------------------------

    def generate_junit_xml(self, report: ReplayReport, output_dir: Path) -> Path:
        """各ステップを testcase とする JUnit XML レポートを生成する。

        Args:
            report: 再生結果
            output_dir: 出力先ディレクトリ

        Returns:
            生成された junit.xml のパス
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        summary = self._compute_summary(report.step_results)
        testsuites = ET.Element("testsuites")
        testsuite = ET.SubElement(testsuites, "testsuite")
        testsuite.set("name", report.script_title)
        testsuite.set("tests", str(summary["total"]))
        testsuite.set("failures", str(summary["failed"]))
        testsuite.set("skipped", str(summary["skipped"]))
        testsuite.set("time", f"{report.duration_ms / 1000:.3f}")

        for step in report.step_results:
            testcase = ET.SubElement(testsuite, "testcase")
            testcase.set("name", f"[{step.step_index}] {step.action_type}")
            testcase.set("classname", report.script_title)
            testcase.set("time", f"{step.execution_time_ms / 1000:.3f}")

            if not step.success:
                failure = ET.SubElement(testcase, "failure")
                failure.set("message", step.error or "")
                if step.error_kind is not None:
                    failure.set("type", step.error_kind.value)
                failure.text = step.error
            elif step.skipped:
                ET.SubElement(testcase, "skipped")

        tree = ET.ElementTree(testsuites)
        output_path = output_dir / "junit.xml"
        ET.indent(tree, space="  ")
        tree.write(str(output_path), encoding="unicode", xml_declaration=True)

        logger.info("JUnit XML レポートを生成しました: %s", output_path)
        return output_path

    # -------------------------------------------------------------------
    # 内部ヘルパー
    # -------------------------------------------------------------------

    def build_report_dict(self, report: ReplayReport) -> dict[str, Any]:
        """ReplayReport をレポート用辞書に変換する。"""
        steps = [
            {
                "step_index": s.step_index,
                "action_type": s.action_type,
                "status": step_status(s),
                "element_found": s.element_found,
                "execution_time_ms": s.execution_time_ms,
                "error": s.error,
                "error_kind": s.error_kind.value if s.error_kind else None,
                "unresolved_variables": list(s.unresolved_variables),
            }
            for s in report.step_results
        ]
        return {
            "title": report.script_title,
            "status": report.status.value,
            "success": report.success,
            "duration_ms": report.duration_ms,
            "started_at": report.start_time.isoformat() if report.start_time else None,
            "finished_at": report.end_time.isoformat() if report.end_time else None,
            "total_steps": report.total_steps,
            "steps": steps,
            "summary": self._compute_summary(report.step_results),
        }

    def _compute_summary(self, steps: list[StepResult]) -> dict[str, int]:
        statuses = [step_status(s) for s in steps]
        return {
            "total": len(statuses),
            "passed": statuses.count("passed"),
            "failed": statuses.count("failed"),
            "skipped": statuses.count("skipped"),
            "takeover": statuses.count("takeover"),
        }
