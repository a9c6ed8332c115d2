"""Markdown report generation from run summaries."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from jinja2 import Environment

from shipwright.engine import RunSummary

_TEMPLATE = """\
# {{ pipeline }} run `{{ run_id }}`

**Verdict:** {{ "PASS" if passed else "FAIL" }} (`{{ status }}`)
{% if version %}**Version:** `{{ version }}`
{% endif %}{% if profile %}**Profile:** `{{ profile }}`
{% endif %}**Generated:** {{ timestamp }}
{% if error %}
> {{ error.message }}
{% endif %}
## Steps

| Step | Status | Reason | Duration |
|------|--------|--------|----------|
{% for step in steps -%}
| {{ step.name }} | {{ step.status }} | {{ step.reason or "" }} | {{ step.duration_ms }}ms |
{% endfor %}
{%- if gate_results %}
## Gate

| Predicate | Outcome | Required | Reason |
|-----------|---------|----------|--------|
{% for r in gate_results -%}
| {{ r.name }} | {{ r.outcome }} | {{ "yes" if r.required else "no" }} | {{ r.reason }} |
{% endfor %}
{%- endif %}
{%- if failed_output %}
## Output of `{{ failed_step }}`

```
{{ failed_output }}
```
{% endif %}"""

_env = Environment(autoescape=False, keep_trailing_newline=True)


def render_report(summary: RunSummary) -> str:
    """Render *summary* as Markdown."""
    data = summary.to_dict()
    failed_output = ""
    if summary.failed_step:
        for step in summary.steps:
            if step.name == summary.failed_step:
                failed_output = step.output
    template = _env.from_string(_TEMPLATE)
    return template.render(
        **data,
        passed=summary.success,
        timestamp=datetime.now(UTC).isoformat(timespec="seconds"),
        failed_output=failed_output,
    )


def write_report(summary: RunSummary, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_report(summary))
    return path
