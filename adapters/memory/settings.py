"""Key-value settings adapters: a plain dict and a JSON file."""

import json
import os
import tempfile
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class InMemorySettings:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileSettings:
    """
    Settings persisted as one JSON object on disk.

    Every write replaces the file atomically, so a crash mid-write leaves the
    previous contents intact.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.logger = logger.bind(component="json_file_settings", path=str(self.path))
        self._values = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self.logger.warning("settings_file_unreadable", error=str(e))
            return {}
        if not isinstance(data, dict):
            self.logger.warning("settings_file_unexpected_shape", type=type(data).__name__)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._write()

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._write()
