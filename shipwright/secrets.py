"""Opaque secret handles scoped to a single run."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from types import TracebackType

from shipwright._log import get_logger

logger = get_logger("secrets")


class SecretHandle:
    """An opaque byte blob. Never printable; zeroed on release."""

    __slots__ = ("_buf", "_name", "_released")

    def __init__(self, name: str, value: bytes | str) -> None:
        self._name = name
        raw = value.encode() if isinstance(value, str) else bytes(value)
        self._buf = bytearray(raw)
        self._released = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def released(self) -> bool:
        return self._released

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        state = "released" if self._released else f"{len(self._buf)} bytes"
        return f"SecretHandle({self._name!r}, <{state}>)"

    __str__ = __repr__

    def reveal(self) -> bytes:
        if self._released:
            raise RuntimeError(f"Secret '{self._name}' was already released")
        return bytes(self._buf)

    def release(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()
        self._released = True


class SecretVault:
    """Name → :class:`SecretHandle` mapping owned by one run.

    Use as a context manager; every handle is released on exit, whether the
    run succeeded or raised. Empty blobs are stored but count as absent.
    """

    def __init__(self, secrets: Mapping[str, bytes | str] | None = None) -> None:
        self._handles: dict[str, SecretHandle] = {}
        for name, value in (secrets or {}).items():
            if value is None:
                continue
            self._handles[name] = SecretHandle(name, value)

    def __enter__(self) -> SecretVault:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.present(name)

    def __iter__(self) -> Iterator[str]:
        return iter(n for n in self._handles if self.present(n))

    def __repr__(self) -> str:
        return f"SecretVault({sorted(self)!r})"

    def present(self, name: str) -> bool:
        handle = self._handles.get(name)
        return handle is not None and not handle.released and len(handle) > 0

    def get(self, name: str) -> SecretHandle | None:
        return self._handles[name] if self.present(name) else None

    def literals(self) -> list[str]:
        """Printable forms of every held secret, for output scrubbing."""
        import base64

        values: list[str] = []
        for name in self:
            raw = self._handles[name].reveal()
            text = raw.decode("utf-8", errors="ignore").strip()
            if text:
                values.append(text)
                try:
                    decoded = base64.b64decode(text, validate=True).decode("utf-8").strip()
                except ValueError:
                    continue
                if decoded:
                    values.extend(line for line in decoded.splitlines() if line.strip())
        return values

    def release(self) -> None:
        for handle in self._handles.values():
            handle.release()
        if self._handles:
            logger.debug("Released %d secret(s)", len(self._handles))


class MappingSecretSource:
    """Secrets supplied in-process by the caller."""

    def __init__(self, values: Mapping[str, bytes | str]) -> None:
        self._values = dict(values)

    def fetch(self, names: Iterable[str]) -> dict[str, bytes | str]:
        return {n: self._values[n] for n in names if n in self._values}


class EnvSecretSource:
    """Secrets read from environment variables of the same name.

    ``.env`` files are loaded first (local, then the global one under the
    shipwright home) with ``override=False`` so the real environment wins.
    """

    def __init__(self, env_dirs: Iterable[Path] = (), *, load_global: bool = True) -> None:
        self._env_dirs = list(env_dirs)
        self._load_global = load_global
        self._loaded = False

    def _load_dotenv(self) -> None:
        if self._loaded:
            return
        from dotenv import load_dotenv

        for directory in self._env_dirs:
            local_env = directory / ".env"
            if local_env.is_file():
                load_dotenv(local_env, override=False)
        if self._load_global:
            from shipwright.config import get_global_env_path

            global_env = get_global_env_path()
            if global_env.is_file():
                load_dotenv(global_env, override=False)
        self._loaded = True

    def fetch(self, names: Iterable[str]) -> dict[str, bytes | str]:
        self._load_dotenv()
        return {n: os.environ[n] for n in names if os.environ.get(n)}
