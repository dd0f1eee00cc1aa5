"""
Runtime configuration from environment variables.

Entry points (api.py, main.py) load a ``.env`` file first when python-dotenv
is installed; this module only reads ``os.environ``. Unset validator URLs mean
the level is simply absent from the registry and the router falls back.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_REGULATIONS_PATH = Path(__file__).parent.parent / "regulations.json"


class Settings(BaseModel):
    """Validated settings. Construct directly in tests; use get_settings() elsewhere."""

    environment: str = "dev"
    log_level: str = "INFO"

    level1_validator_url: Optional[str] = None
    level2_validator_url: Optional[str] = None
    level3_validator_url: Optional[str] = None
    validator_timeout_seconds: float = Field(default=30.0, gt=0)

    version_service_url: Optional[str] = None

    audit_mode: Literal["direct", "buffered"] = "direct"
    audit_service_url: Optional[str] = None
    audit_timeout_seconds: float = Field(default=5.0, gt=0)

    regulations_path: Path = DEFAULT_REGULATIONS_PATH

    certificate_issuer: str = "regulation-validator"
    certificate_signing_key: str = "dev-signing-key"
    certificate_validity_days: int = Field(default=90, ge=1)

    max_batch_size: int = Field(default=50, ge=1)

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``os.environ``. Empty strings count as unset."""
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = os.environ.get(name.upper())
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls.model_validate(values)

    def validator_urls(self) -> dict[int, str]:
        """Configured remote validator endpoints keyed by level."""
        urls = {
            1: self.level1_validator_url,
            2: self.level2_validator_url,
            3: self.level3_validator_url,
        }
        return {level: url for level, url in urls.items() if url}


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
