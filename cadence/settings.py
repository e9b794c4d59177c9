from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

ENV_PREFIX = "CADENCE_"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from ``CADENCE_*`` environment variables."""

    catalog: Path = Path("catalog/cadence.yaml")
    workspace: Path = Path(".cadence")
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    docker: str = "docker"
    repository_owner: Optional[str] = None
    timezone: str = "UTC"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for spec in fields(cls):
            raw = environ.get(ENV_PREFIX + spec.name.upper())
            if raw is None or raw == "":
                continue
            values[spec.name] = Path(raw) if spec.name in ("catalog", "workspace", "log_file") else raw
        return cls(**values)

    def override(self, **values: Any) -> "Settings":
        """Return a copy with every non-``None`` value applied."""

        return replace(self, **{key: value for key, value in values.items() if value is not None})
