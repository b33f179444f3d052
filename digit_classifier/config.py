"""Runtime settings for the digit classifier

Values come from defaults, then environment variables, then explicit overrides
(usually command line options).

    Typical Usage Example:

    >>> settings = Settings.from_env()
    >>> settings = settings.replace(model_name="mnist_v2", metered=True)
"""

import dataclasses
import os
from pathlib import Path
from typing import Mapping, Optional

ENV_PREFIX = "DIGIT_CLASSIFIER_"

DEFAULT_MODEL_NAME = "mnist_v1"
DEFAULT_REGISTRY_URL = "http://localhost:8000"
DEFAULT_CACHE_DIR = Path("~/.cache/digit-classifier")
DEFAULT_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "INFO"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")

_ENV_VARIABLES = {
    "model_name": "MODEL",
    "registry_url": "REGISTRY_URL",
    "cache_dir": "CACHE_DIR",
    "metered": "METERED",
    "timeout": "TIMEOUT",
    "log_level": "LOG_LEVEL",
}


@dataclasses.dataclass(frozen=True)
class Settings:
    model_name: str = DEFAULT_MODEL_NAME
    registry_url: str = DEFAULT_REGISTRY_URL
    cache_dir: Path = DEFAULT_CACHE_DIR
    metered: bool = False
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self):
        if not self.model_name.strip():
            raise ValueError("model_name must be non-empty")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.log_level.upper() not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        object.__setattr__(self, "cache_dir", Path(self.cache_dir).expanduser())
        object.__setattr__(self, "registry_url", self.registry_url.rstrip("/"))
        object.__setattr__(self, "log_level", self.log_level.upper())

    @property
    def models_dir(self) -> Path:
        """Directory holding one sub-directory per downloaded model."""
        return self.cache_dir / "models"

    def replace(self, **changes) -> "Settings":
        """Returns a copy with the given fields changed. ``None`` values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Builds settings from ``DIGIT_CLASSIFIER_*`` environment variables

        :raises ValueError: if a variable holds a value that cannot be parsed
        """
        if environ is None:
            environ = os.environ

        values = {}
        for field, variable in _ENV_VARIABLES.items():
            name = ENV_PREFIX + variable
            raw = environ.get(name)
            if raw is None:
                continue
            try:
                values[field] = _parse(field, raw)
            except ValueError as e:
                raise ValueError(f"{name}: {e}") from e

        return cls(**values)


def _parse(name: str, raw: str):
    if name == "metered":
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ValueError(f"expected a boolean, got {raw!r}")
    if name == "timeout":
        try:
            return float(raw)
        except ValueError:
            raise ValueError(f"expected a number, got {raw!r}") from None
    if name == "cache_dir":
        return Path(raw)
    return raw
