"""Bundle configuration.

A frozen dataclass with defaults matching the archive format. No env-var
loading or config files: callers and the CLI override fields at
construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

MANIFEST_NAME = "meta.json"


@dataclass(frozen=True)
class BundleConfig:
    """Settings shared by the assembler, loader and style adapter."""

    # Archive entries are written stored (uncompressed) unless "deflated".
    compression: Literal["stored", "deflated"] = "stored"
    manifest_name: str = MANIFEST_NAME
    default_language: str = "en"
    default_classification: str = "GICS:45102010"
    fetch_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.compression not in ("stored", "deflated"):
            raise ValueError(
                f"compression must be 'stored' or 'deflated', got {self.compression!r}"
            )
        if self.fetch_timeout_seconds <= 0:
            raise ValueError("fetch_timeout_seconds must be positive")


DEFAULT_CONFIG = BundleConfig()
