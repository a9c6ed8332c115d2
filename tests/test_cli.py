"""Tests for the CLI."""

import json
import textwrap
from unittest.mock import patch

from typer.testing import CliRunner

from shipwright import __version__
from shipwright.audit import AuditLogger
from shipwright.cli.main import app
from tests.conftest import b64

runner = CliRunner()

_PIPELINE = textwrap.dedent("""\
    apiVersion: shipwright/v1
    kind: Pipeline
    metadata:
      name: {name}
      description: cli test
    spec:
      inputs:
        - name: greeting
          default: hello
        - name: fail
          type: bool
          default: false
      steps:
        - name: greet
          run: echo "{{{{ inputs.greeting }}}} {{{{ version }}}}"
        - name: explode
          when: fail
          run: exit 3
""")

_GATED = textwrap.dedent("""\
    apiVersion: shipwright/v1
    kind: Pipeline
    metadata:
      name: gated
    spec:
      steps:
        - name: noop
          run: "true"
      gate:
        predicates:
          - name: main-branch
            type: branch_match
            patterns: [main]
""")

_SIGNED = textwrap.dedent("""\
    apiVersion: shipwright/v1
    kind: Pipeline
    metadata:
      name: signed
    spec:
      secrets:
        - name: DEPLOY_TOKEN
      profiles: builtin
      steps:
        - name: deploy
          secrets: [DEPLOY_TOKEN]
          run: test -n "$DEPLOY_TOKEN"
""")


def _write(tmp_path, text, filename="pipeline.yaml", name="cli-demo"):
    path = tmp_path / filename
    path.write_text(text.format(name=name) if "{name}" in text else text)
    return path


def _run_args(path, tmp_path, *extra):
    return [
        "run",
        str(path),
        "--commit-count",
        "128",
        "--date",
        "2025-12-29",
        "--workdir",
        str(tmp_path),
        "--no-env-secrets",
        "--audit-db",
        str(tmp_path / "runs.db"),
        *extra,
    ]


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_version_command(self):
        result = runner.invoke(app, ["version", "--commit-count", "128", "--date", "2025-12-29"])
        assert result.exit_code == 0
        assert result.output.strip() == "20251229_128"

    def test_version_command_separator(self):
        result = runner.invoke(
            app,
            ["version", "--commit-count", "5", "--date", "2025-12-29", "--separator", "."],
        )
        assert result.output.strip() == "20251229.5"

    def test_version_bad_separator(self):
        result = runner.invoke(app, ["version", "--commit-count", "5", "--separator", "-"])
        assert result.exit_code == 2

    def test_version_incomplete_history(self):
        result = runner.invoke(app, ["version", "--commit-count", "0"])
        assert result.exit_code == 5

    def test_bad_date(self):
        result = runner.invoke(app, ["version", "--commit-count", "1", "--date", "29/12/2025"])
        assert result.exit_code == 2


class TestValidate:
    def test_valid(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0
        assert "Valid" in result.output
        assert "greet" in result.output

    def test_invalid(self, tmp_path):
        path = _write(tmp_path, "apiVersion: shipwright/v1\nkind: Pipeline\n")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 2

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 2

    def test_by_store_name(self, tmp_path):
        _write(tmp_path, _PIPELINE, name="stored")
        result = runner.invoke(app, ["validate", "stored", "--dir", str(tmp_path)])
        assert result.exit_code == 0


class TestRun:
    def test_json_summary(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        result = runner.invoke(app, _run_args(path, tmp_path, "--json"))
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["status"] == "passed"
        assert data["version"] == "20251229_128"
        assert data["steps"][0]["status"] == "succeeded"
        assert data["steps"][1]["status"] == "skipped"

    def test_step_failure_exit_code(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        result = runner.invoke(app, _run_args(path, tmp_path, "-i", "fail=true"))
        assert result.exit_code == 6
        assert "explode" in result.output

    def test_bad_input_format(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        result = runner.invoke(app, _run_args(path, tmp_path, "-i", "oops"))
        assert result.exit_code == 2

    def test_unknown_input(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        result = runner.invoke(app, _run_args(path, tmp_path, "-i", "nope=1"))
        assert result.exit_code == 2

    def test_gate_failure(self, tmp_path):
        path = _write(tmp_path, _GATED)
        result = runner.invoke(app, _run_args(path, tmp_path, "--branch", "dev"))
        assert result.exit_code == 1
        assert "Gate failed" in result.output

    def test_gate_pass(self, tmp_path):
        path = _write(tmp_path, _GATED)
        result = runner.invoke(app, _run_args(path, tmp_path, "--branch", "main"))
        assert result.exit_code == 0
        assert "Passed" in result.output

    def test_missing_secret(self, tmp_path):
        path = _write(tmp_path, _SIGNED)
        result = runner.invoke(app, _run_args(path, tmp_path, "--json"))
        assert result.exit_code == 3
        assert json.loads(result.stdout)["error"]["secret"] == "DEPLOY_TOKEN"

    def test_secret_file(self, tmp_path):
        path = _write(tmp_path, _SIGNED)
        (tmp_path / "token").write_text("tok-abcdef")
        result = runner.invoke(
            app,
            _run_args(path, tmp_path, "--secret-file", f"DEPLOY_TOKEN={tmp_path / 'token'}"),
        )
        assert result.exit_code == 0, result.output
        assert "unsigned" in result.output

    def test_secret_file_selects_signing_profile(self, tmp_path):
        path = _write(tmp_path, _SIGNED)
        files = {
            "DEPLOY_TOKEN": "tok-abcdef",
            "ANDROID_KEYSTORE_BASE64": b64(b"keystore"),
            "ANDROID_KEY_PROPERTIES_BASE64": b64("storePassword=pw\n"),
        }
        extra = []
        for name, value in files.items():
            (tmp_path / name).write_text(value)
            extra += ["--secret-file", f"{name}={tmp_path / name}"]
        result = runner.invoke(app, _run_args(path, tmp_path, "--json", *extra))
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["profile"] == "android-signed"
        assert not (tmp_path / "android" / "key.properties").exists()

    def test_env_secrets(self, tmp_path, monkeypatch):
        path = _write(tmp_path, _SIGNED)
        monkeypatch.setenv("DEPLOY_TOKEN", "tok-from-env")
        args = [a for a in _run_args(path, tmp_path) if a != "--no-env-secrets"]
        result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output

    def test_writes_audit_record(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        runner.invoke(app, _run_args(path, tmp_path))
        audit = AuditLogger(tmp_path / "runs.db")
        records = audit.query()
        audit.close()
        assert len(records) == 1
        assert records[0].pipeline == "cli-demo"
        assert records[0].version == "20251229_128"

    def test_audit_scrubs_run_secrets(self, tmp_path):
        path = _write(tmp_path, _SIGNED)
        (tmp_path / "token").write_text("tok-abcdef")
        args = _run_args(path, tmp_path, "--secret-file", f"DEPLOY_TOKEN={tmp_path / 'token'}")
        with patch("shipwright.audit.AuditLogger.log") as log:
            result = runner.invoke(app, args)
        assert result.exit_code == 0, result.output
        log.assert_called_once()
        assert "tok-abcdef" in log.call_args.kwargs["literals"]

    def test_no_audit(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        runner.invoke(app, _run_args(path, tmp_path, "--no-audit"))
        assert not (tmp_path / "runs.db").exists()

    def test_report(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        report = tmp_path / "report.md"
        result = runner.invoke(app, _run_args(path, tmp_path, "--report", str(report)))
        assert result.exit_code == 0
        assert "**Verdict:** PASS" in report.read_text()


class TestStoreCommands:
    def test_list(self, tmp_path):
        _write(tmp_path, _PIPELINE, filename="a.yaml", name="alpha")
        _write(tmp_path, _GATED, filename="b.yaml")
        result = runner.invoke(app, ["list", "--dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "alpha" in result.output
        assert "gated" in result.output

    def test_list_empty(self, tmp_path):
        result = runner.invoke(app, ["list", "--dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "No pipelines found" in result.output

    def test_history(self, tmp_path):
        path = _write(tmp_path, _PIPELINE)
        runner.invoke(app, _run_args(path, tmp_path))
        result = runner.invoke(app, ["history", "--audit-db", str(tmp_path / "runs.db")])
        assert result.exit_code == 0
        assert "Run history" in result.output

    def test_history_empty(self, tmp_path):
        result = runner.invoke(app, ["history", "--audit-db", str(tmp_path / "runs.db")])
        assert result.exit_code == 0
        assert "No runs recorded" in result.output
