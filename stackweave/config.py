"""
Engine configuration.

Values come from defaults, then ``STACKWEAVE_*`` environment variables, then
explicit overrides (CLI options or API request fields).
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

ENV_PREFIX = "STACKWEAVE_"


@dataclass(frozen=True)
class EngineConfig:
    concurrency: int = 4
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    poll_interval: float = 2.0
    resource_timeout: float = 900.0

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.resource_timeout <= 0:
            raise ValueError("resource_timeout must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "EngineConfig":
        """
        Build config from environment variables such as STACKWEAVE_CONCURRENCY.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Values that win over the environment; None is ignored

        Returns:
            EngineConfig
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None and raw.strip():
                try:
                    values[f.name] = type(f.default)(raw)
                except ValueError:
                    raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from None
        config = cls(**values)
        explicit = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **explicit) if explicit else config

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based), exponential and capped."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
