"""Public API for ocabundle.

High-level functions that return complete, structured results.
Callers should use these functions instead of importing from _internal.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel

from ocabundle.codes import ValidationCode
from ocabundle.config import DEFAULT_CONFIG, BundleConfig
from ocabundle.kernel.errors import BundleError
from ocabundle.kernel.models import Bundle
from ocabundle._internal.io.archive import ArchiveContents, read_archive, write_archive
from ocabundle._internal.ingest.style import (
    StyleJsonFile,
    bundle_from_style_json,
    bundle_from_style_url,
    parse_style_json,
)

ArchiveSource = Union[bytes, str, os.PathLike]


def _normalize_path(path: Union[str, os.PathLike, Path]) -> Path:
    """Normalize path input to Path object."""
    return Path(path) if not isinstance(path, Path) else path


def _read_source(source: ArchiveSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return _normalize_path(source).read_bytes()


class ValidationIssue(BaseModel):
    """A single verification issue (error or warning)."""
    code: str  # e.g., "SAID_MISMATCH", "MISSING_MANIFEST", "MISSING_OVERLAY"
    message: str
    name: Optional[str] = None  # Overlay name for overlay-level issues


class ValidationResult(BaseModel):
    """Result of verifying an archive."""
    ok: bool  # True if no errors (warnings don't block)
    root: Optional[str] = None  # Capture base SAID when the archive loaded
    overlay_count: int = 0
    errors: List[ValidationIssue]  # Blocking issues
    warnings: List[ValidationIssue]  # Non-blocking issues


def pack_bundle(bundle: Bundle, config: Optional[BundleConfig] = None) -> bytes:
    """
    Assemble a bundle into archive bytes.

    Overlay digests are computed in place and the entities are sealed.

    Raises:
        EncodingError: If an entity cannot be serialized
        IntegrityError: If the capture base changed after its digest was computed
    """
    return write_archive(bundle, config or DEFAULT_CONFIG)


def write_bundle(
    bundle: Bundle,
    path: Union[str, os.PathLike, Path],
    config: Optional[BundleConfig] = None,
) -> Path:
    """Pack a bundle and write the archive to path."""
    path = _normalize_path(path)
    data = pack_bundle(bundle, config)
    path.write_bytes(data)
    return path


def read_bundle(source: ArchiveSource, config: Optional[BundleConfig] = None) -> ArchiveContents:
    """
    Load and verify an archive, keeping the manifest and diagnostics.

    Args:
        source: Archive bytes or a path to an archive file

    Raises:
        StructuralError: Archive, manifest or capture base missing/malformed
        IntegrityError: Capture base or a present overlay fails verification
    """
    return read_archive(_read_source(source), config or DEFAULT_CONFIG)


def load_bundle(source: ArchiveSource, config: Optional[BundleConfig] = None) -> Bundle:
    """Load and verify an archive, returning only the bundle."""
    return read_bundle(source, config).bundle


def verify_bundle(source: ArchiveSource, config: Optional[BundleConfig] = None) -> ValidationResult:
    """
    Verify an archive without raising.

    Errors are returned as issues; tolerated anomalies (missing or
    malformed overlay references) are returned as warnings.
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    root: Optional[str] = None
    overlay_count = 0

    try:
        contents = read_bundle(source, config)
        root = contents.bundle.capture_base.digest
        overlay_count = len(contents.bundle.overlays)
        warnings = [
            ValidationIssue(code=w.code, message=w.message, name=w.name)
            for w in contents.warnings
        ]
    except BundleError as e:
        errors.append(ValidationIssue(code=e.code.value, message=e.message))
    except FileNotFoundError as e:
        errors.append(ValidationIssue(
            code=ValidationCode.MISSING_ENTRY.value,
            message=str(e),
        ))

    return ValidationResult(
        ok=len(errors) == 0,
        root=root,
        overlay_count=overlay_count,
        errors=errors,
        warnings=warnings,
    )


def bundle_from_style(
    style: Union[StyleJsonFile, Dict[str, Any], str, os.PathLike],
    config: Optional[BundleConfig] = None,
) -> Bundle:
    """
    Build a bundle from a schema-creator style description.

    Args:
        style: Parsed description, a decoded JSON dict, or a path to a JSON file
    """
    if isinstance(style, StyleJsonFile):
        style_file = style
    elif isinstance(style, dict):
        style_file = parse_style_json(style)
    else:
        style_file = parse_style_json(_normalize_path(style).read_bytes())
    return bundle_from_style_json(style_file, config or DEFAULT_CONFIG)


def fetch_bundle_from_style(
    url: str,
    client: Optional[httpx.Client] = None,
    config: Optional[BundleConfig] = None,
) -> Bundle:
    """
    Fetch a style description over HTTP and build a bundle from it.

    Raises:
        FetchError: On transport errors or a non-2xx status
    """
    return bundle_from_style_url(url, client=client, config=config or DEFAULT_CONFIG)


def load_bundle_json(path: Union[str, os.PathLike, Path]) -> Bundle:
    """Load a bundle from its JSON view ({"capture_base": ..., "overlays": [[name, overlay], ...]})."""
    with open(_normalize_path(path), "r", encoding="utf-8") as f:
        data = json.load(f)
    return Bundle.from_json_dict(data)
