import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


class LocalStorage:
    """Small JSON key-value file for client-local state."""

    def __init__(self, state_dir: Path, filename: str = "state.json") -> None:
        self._dir = Path(state_dir)
        self._file = self._dir / filename

    def _load_raw(self) -> Dict[str, Any]:
        if self._file.exists():
            try:
                return json.loads(self._file.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as e:
                logger.error("Failed to load %s: %s", self._file, e)
        return {}

    def _save_raw(self, data: Dict[str, Any]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self._file.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._load_raw().get(key, default)
        return value if isinstance(value, bool) else default

    def set_bool(self, key: str, value: bool) -> None:
        raw = self._load_raw()
        raw[key] = bool(value)
        self._save_raw(raw)
