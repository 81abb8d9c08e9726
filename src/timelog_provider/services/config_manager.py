"""Provider settings stored as JSON under the platformdirs config directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from timelog_provider.core.data_models import EvaluationContext
from timelog_provider.core.errors import ConfigurationError
from timelog_provider.core.fields import FieldNames

logger = logging.getLogger(__name__)

APP_NAME = "tfs-timelog-provider"
CONFIG_FILENAME = "config.json"

_DEFAULTS: dict[str, Any] = {
    "server_url": "",         # collection URL, e.g. "https://tfs.example.com/tfs/DefaultCollection"
    "username": "",           # empty when the password is a personal access token
    "project_name": "",
    "iteration_path": "",
    "api_version": "6.0",
    "timeout": 30,
    "batch_size": 200,
    "max_retries": 4,
    "field_names": {},        # FieldNames attribute -> reference name overrides
    "custom_fields": [],      # extra reference names copied onto each record
}


class ConfigManager:
    """Connection, query and field settings for the provider.

    Unknown keys in the file are kept so that newer settings survive a
    round trip through an older version.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path(user_config_dir(APP_NAME, appauthor=False)) / CONFIG_FILENAME
        self._data: dict[str, Any] = dict(_DEFAULTS)
        self._read()
        logger.debug("Config loaded from %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        """Merge *values* into the settings and write the file."""
        self._data.update(values)
        self._write()

    def reset(self) -> None:
        logger.info("Resetting config to defaults")
        self._data = dict(_DEFAULTS)
        self._write()

    # -- typed views ------------------------------------------------------------

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for :class:`~timelog_provider.core.tfs_client.TfsClient`.

        Raises:
            ConfigurationError: A numeric setting or the field overrides
                have the wrong shape.
        """
        overrides = self._data.get("field_names") or {}
        if not isinstance(overrides, dict):
            raise ConfigurationError("'field_names' must map FieldNames attributes to reference names")
        unknown = sorted(set(overrides) - set(FieldNames.__dataclass_fields__))
        if unknown:
            logger.warning("Ignoring unknown field_names keys: %s", ", ".join(unknown))
        return {
            "api_version": str(self._data.get("api_version") or _DEFAULTS["api_version"]),
            "timeout": self._number("timeout", float),
            "batch_size": self._number("batch_size", int),
            "max_retries": self._number("max_retries", int),
            "field_names": FieldNames.from_overrides(overrides),
        }

    @property
    def custom_fields(self) -> list[str]:
        value = self._data.get("custom_fields") or []
        if isinstance(value, str) or not all(isinstance(name, str) for name in value):
            raise ConfigurationError("'custom_fields' must be a list of reference names")
        return list(value)

    def context(self, project_name: str | None = None, iteration_path: str | None = None) -> EvaluationContext | None:
        """Combine explicit values with the stored defaults.

        Returns ``None`` while either the project or the iteration is unknown.
        """
        project = project_name or self._data.get("project_name") or ""
        iteration = iteration_path or self._data.get("iteration_path") or ""
        if not project or not iteration:
            return None
        return EvaluationContext(iteration_path=iteration, project_name=project)

    # -- internals ------------------------------------------------------------

    def _number(self, key: str, kind: type) -> Any:
        value = self._data.get(key, _DEFAULTS[key])
        try:
            return kind(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"'{key}' must be a number, got {value!r}") from None

    def _read(self) -> None:
        if not self._path.exists():
            return
        try:
            stored = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load config from %s: %s", self._path, exc)
            return
        if isinstance(stored, dict):
            self._data.update(stored)
        else:
            logger.warning("Ignoring %s: top level is not an object", self._path)

    def _write(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(self._data, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to save config to %s: %s", self._path, exc)
