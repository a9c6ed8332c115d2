"""Secret scrubbing for captured step output, logs and run records."""

from __future__ import annotations

import re
from collections.abc import Iterable

_MASK = "[REDACTED]"

# Shortest literal value that is masked; shorter values would shred ordinary output.
_MIN_LITERAL_LEN = 4

_PATTERNS = [
    r"gh[pousr]_[A-Za-z0-9_]{36,}",  # GitHub classic tokens
    r"github_pat_[A-Za-z0-9_]{22,}",  # GitHub fine-grained PATs
    r"xox[bpars]-[A-Za-z0-9-]{10,}",  # Slack tokens
    r"AKIA[0-9A-Z]{16}",  # AWS access key IDs
    r"npm_[A-Za-z0-9]{36}",  # npm automation tokens
    r"glpat-[A-Za-z0-9_-]{20,}",  # GitLab PATs
    r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----",
    r"Bearer\s+[A-Za-z0-9_\-.]{20,}",  # Bearer tokens
]

_COMBINED_RE = re.compile("|".join(_PATTERNS))


def scrub_secrets(text: str, literals: Iterable[str] = ()) -> str:
    """Replace known secret patterns and every literal in *literals* with ``[REDACTED]``.

    Literals are the run's own secret values (raw and, for blobs, their
    base64 form) so that a step echoing its credentials never leaks them.
    """
    if not text:
        return text
    # Longest first so a value that contains another is masked whole.
    for value in sorted({v for v in literals if len(v) >= _MIN_LITERAL_LEN}, key=len, reverse=True):
        text = text.replace(value, _MASK)
    return _COMBINED_RE.sub(_MASK, text)
