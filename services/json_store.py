"""Cached JSON document store with env path override and file locking."""

from __future__ import annotations

import json
import logging
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Optional, Union

from filelock import FileLock, Timeout

from core.env import env_int

logger = logging.getLogger(__name__)

JsonDefault = Union[Any, Callable[[], Any]]
ErrorHook = Callable[[Path, Exception], None]

_LOCK_TIMEOUT = env_int("JSON_STORE_LOCK_TIMEOUT_SECONDS", 5, minimum=1)


def _resolve_default(default: JsonDefault) -> Any:
    return default() if callable(default) else default


def read_json_document(path: Path, *, default: JsonDefault) -> Any:
    """Return JSON payload stored at ``path`` (or ``default`` if missing)."""
    if not path.exists():
        return _resolve_default(default)
    return json.loads(path.read_text(encoding="utf-8"))


def write_json_document(path: Path, payload: Any) -> None:
    """Atomically persist ``payload`` as JSON to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


class JsonStore:
    """Single JSON document cached in memory; ``path_env`` overrides ``default_path``."""

    def __init__(self, *, path_env: Optional[str], default_path: Path) -> None:
        self._path_env = path_env
        self._default_path = Path(default_path)
        self._cache: Optional[Any] = None
        self._cache_path: Optional[Path] = None

    def resolve_path(self) -> Path:
        if self._path_env:
            env_value = os.getenv(self._path_env)
            if env_value:
                return Path(env_value).expanduser()
        return self._default_path

    def _lock(self, path: Path) -> FileLock:
        path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(path.parent / f"{path.name}.lock"), timeout=_LOCK_TIMEOUT)

    def clear_cache(self) -> None:
        self._cache = None
        self._cache_path = None

    def load(
        self,
        *,
        loader: Callable[[Any], Any],
        fallback: Callable[[], Any],
        reload: bool = False,
        on_error: Optional[ErrorHook] = None,
    ) -> Any:
        path = self.resolve_path()
        if self._cache is not None and not reload and self._cache_path == path:
            return deepcopy(self._cache)

        try:
            raw_payload = read_json_document(path, default=fallback)
            merged = loader(raw_payload)
        except (OSError, ValueError) as exc:
            if on_error is not None:
                on_error(path, exc)
            else:
                logger.warning("Failed to load JSON document from %s: %s", path, exc)
            merged = loader(fallback())

        self._cache = deepcopy(merged)
        self._cache_path = path
        return deepcopy(merged)

    def save(self, payload: Any) -> None:
        path = self.resolve_path()
        try:
            with self._lock(path):
                write_json_document(path, payload)
        except Timeout as exc:  # pragma: no cover - file lock contention
            logger.error("Failed to acquire lock for %s: %s", path, exc)
            raise RuntimeError(f"{path.name} is currently locked; please retry.") from exc
        self._cache = deepcopy(payload)
        self._cache_path = path


__all__ = ["JsonStore", "read_json_document", "write_json_document"]
