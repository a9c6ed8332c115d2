"""Directory-backed store of pipeline definitions, keyed by ``metadata.name``."""

from __future__ import annotations

import threading
from pathlib import Path

from shipwright._log import get_logger
from shipwright.errors import PipelineLoadError, PipelineNotFoundError
from shipwright.pipeline.loader import load_pipeline
from shipwright.pipeline.schema import PipelineDefinition

logger = get_logger("pipeline.store")

_SUFFIXES = (".yaml", ".yml")


class PipelineStore:
    """Index of ``*.yaml``/``*.yml`` pipeline files in one directory.

    Files are scanned lazily on first lookup. Definitions are immutable, so
    the same instance is handed to every caller (and every concurrent run).
    Files that fail to load are logged and left out of the index; asking for
    them by path through :func:`load_pipeline` still surfaces the error.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()
        self._index: dict[str, tuple[Path, PipelineDefinition]] | None = None

    @property
    def root(self) -> Path:
        return self._root

    def _scan(self) -> dict[str, tuple[Path, PipelineDefinition]]:
        index: dict[str, tuple[Path, PipelineDefinition]] = {}
        if not self._root.is_dir():
            return index
        for path in sorted(self._root.iterdir()):
            if path.suffix not in _SUFFIXES or not path.is_file():
                continue
            try:
                definition = load_pipeline(path)
            except PipelineLoadError as e:
                logger.warning("Skipping %s: %s", path.name, e.message.splitlines()[0])
                continue
            name = definition.metadata.name
            if name in index:
                logger.warning(
                    "Pipeline '%s' in %s shadowed by %s", name, path.name, index[name][0].name
                )
                continue
            index[name] = (path, definition)
        return index

    def _ensure_index(self) -> dict[str, tuple[Path, PipelineDefinition]]:
        with self._lock:
            if self._index is None:
                self._index = self._scan()
            return self._index

    def refresh(self) -> None:
        with self._lock:
            self._index = None

    def names(self) -> list[str]:
        return sorted(self._ensure_index())

    def path_of(self, name: str) -> Path:
        return self._entry(name)[0]

    def get(self, name: str) -> PipelineDefinition:
        return self._entry(name)[1]

    def _entry(self, name: str) -> tuple[Path, PipelineDefinition]:
        index = self._ensure_index()
        if name not in index:
            raise PipelineNotFoundError(
                f"No pipeline named '{name}' in {self._root}", pipeline=name
            )
        return index[name]
