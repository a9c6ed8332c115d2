"""Tests for Markdown run reports."""

from __future__ import annotations

from shipwright.engine import RunSummary
from shipwright.executor import StepResult, StepStatus
from shipwright.gate import GateVerdict, PredicateResult
from shipwright.report import render_report, write_report


def _summary(**kwargs) -> RunSummary:
    defaults = {
        "run_id": "abc123",
        "pipeline": "demo",
        "version": "20251229_128",
        "profile": "android-signed",
        "steps": [
            StepResult("build", StepStatus.SUCCEEDED, duration_ms=10),
            StepResult("test", StepStatus.SKIPPED, reason="condition not met: run_tests"),
        ],
    }
    defaults.update(kwargs)
    return RunSummary(**defaults)


class TestRenderReport:
    def test_passing_run(self):
        summary = _summary(
            gate=GateVerdict(True, (PredicateResult("main", True, True, "branch 'main'"),))
        )
        text = render_report(summary)
        assert text.startswith("# demo run `abc123`")
        assert "**Verdict:** PASS (`passed`)" in text
        assert "**Version:** `20251229_128`" in text
        assert "| build | succeeded |  | 10ms |" in text
        assert "| test | skipped | condition not met: run_tests | 0ms |" in text
        assert "| main | pass | yes | branch 'main' |" in text

    def test_failed_run_includes_output(self):
        summary = _summary(
            status="step_failed",
            failed_step="build",
            error={"kind": "step_failed", "message": "Step 'build' failed: exit code 1"},
            steps=[
                StepResult(
                    "build", StepStatus.FAILED, reason="exit code 1", output="error: boom"
                )
            ],
        )
        text = render_report(summary)
        assert "**Verdict:** FAIL (`step_failed`)" in text
        assert "> Step 'build' failed: exit code 1" in text
        assert "## Output of `build`" in text
        assert "error: boom" in text
        assert "## Gate" not in text

    def test_write_report(self, tmp_path):
        path = write_report(_summary(), tmp_path / "out" / "report.md")
        assert path.read_text().startswith("# demo run")
