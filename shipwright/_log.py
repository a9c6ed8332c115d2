"""Centralized logging for shipwright.

Records are tagged with the emitting module and, while a run is bound with
:func:`bind_run`, with that run's id so interleaved output from concurrent
runs stays attributable.
"""

from __future__ import annotations

import contextvars
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager

_lock = threading.Lock()
_setup_done = False

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "shipwright_run_id", default=None
)


def current_run() -> str | None:
    """Return the run id bound to the current context, if any."""
    return _run_id.get()


@contextmanager
def bind_run(run_id: str) -> Iterator[str]:
    """Tag every record emitted inside the block with *run_id*."""
    token = _run_id.set(run_id)
    try:
        yield run_id
    finally:
        _run_id.reset(token)


class _Formatter(logging.Formatter):
    """Format records as ``[tag] message`` or ``[tag run=<id>] message``."""

    def format(self, record: logging.LogRecord) -> str:
        tag = record.name.removeprefix("shipwright.")
        run_id = getattr(record, "run_id", None) or current_run()
        if run_id:
            tag = f"{tag} run={run_id}"
        return f"[{tag}] {super().format(record)}"


def setup_logging(verbose: bool = False) -> None:
    """Configure the ``shipwright`` root logger (idempotent).

    A single ``StreamHandler(sys.stderr)`` is attached at WARNING, or DEBUG
    when *verbose* is set. A later call with ``verbose=True`` still lowers the
    level so ``--verbose`` works after a lazy setup from :func:`get_logger`.
    """
    global _setup_done
    with _lock:
        logger = logging.getLogger("shipwright")
        if _setup_done:
            if verbose:
                logger.setLevel(logging.DEBUG)
            return
        logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_Formatter())
        logger.addHandler(handler)
        logger.propagate = False
        _setup_done = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(f"shipwright.{name}")``, setting up on first use."""
    setup_logging()
    return logging.getLogger(f"shipwright.{name}")
