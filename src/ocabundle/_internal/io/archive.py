"""Bundle archive writer and loader.

Archive layout (zip, one blob per entry):
- meta.json: {"root": <capture base SAID>, "files": {<root>: {<name>: <overlay SAID>}}}
- <root>.json: canonical capture base
- <said>.json: one canonical overlay per distinct SAID

meta.json is the authoritative index. Nothing read from the archive is
trusted before its SAID has been recomputed from the stored bytes.
"""

import io
import json
import logging
import zipfile
import zlib
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, Field

from ocabundle.codes import ValidationCode
from ocabundle.config import DEFAULT_CONFIG, BundleConfig
from ocabundle.kernel.errors import BundleError, IntegrityError, StructuralError
from ocabundle.kernel.models import (
    Bundle,
    OcaLayer,
    OtherOverlay,
    parse_capture_base,
    parse_layer,
)
from ocabundle.kernel.said import canonical_dumps, is_said, update_digest, verify_said

logger = logging.getLogger(__name__)

_COMPRESSION = {
    "stored": zipfile.ZIP_STORED,
    "deflated": zipfile.ZIP_DEFLATED,
}


class ArchiveWarning(BaseModel):
    """A tolerated anomaly found while loading an archive."""
    code: str
    message: str
    name: Optional[str] = None  # overlay name in the manifest


class ArchiveContents(BaseModel):
    """Result of reading an archive: the verified bundle plus diagnostics."""
    bundle: Bundle
    manifest: Dict[str, Any]
    warnings: List[ArchiveWarning] = Field(default_factory=list)


def entry_name(said: str) -> str:
    return f"{said}.json"


def _seal_capture_base(bundle: Bundle) -> str:
    capture_base = bundle.capture_base
    claimed = capture_base.get_digest()
    said = update_digest(capture_base)
    if claimed and claimed != said:
        # Restore the claim so the caller sees what the overlays reference.
        capture_base.set_digest(claimed)
        raise IntegrityError(
            ValidationCode.STALE_DIGEST,
            f"Capture base content changed after its digest was computed. "
            f"Stored {claimed}, content hashes to {said}",
        )
    return said


def build_manifest(root: str, overlays: List[Tuple[str, OcaLayer]]) -> Dict[str, Any]:
    """Build meta.json content. Duplicate overlay names: last write wins."""
    files: Dict[str, str] = {}
    for name, layer in overlays:
        files[name] = layer.get_digest()
    return {"root": root, "files": {root: files}}


def write_archive(bundle: Bundle, config: BundleConfig = DEFAULT_CONFIG) -> bytes:
    """Assemble a bundle into archive bytes.

    Every overlay's digest is computed here, in place, and the overlay is
    sealed. All entity bytes are produced before the archive is opened,
    so an EncodingError never leaves a partial archive behind.

    Raises:
        EncodingError: If any entity cannot be serialized
        IntegrityError: If the capture base changed after its digest was set
    """
    root = _seal_capture_base(bundle)
    entries: Dict[str, str] = {entry_name(root): bundle.capture_base.canonical_json()}

    for name, layer in bundle.overlays:
        said = update_digest(layer)
        reference = layer.raw.get("capture_base") if isinstance(layer, OtherOverlay) else layer.capture_base
        if reference is not None and reference != root:
            logger.warning(
                "overlay %r references capture base %s, bundle root is %s",
                name, reference, root,
            )
        # Identical content yields an identical SAID; write it once.
        entries.setdefault(entry_name(said), layer.canonical_json())

    manifest = build_manifest(root, bundle.overlays)
    manifest_bytes = canonical_dumps(manifest).encode("utf-8")

    buffer = io.BytesIO()
    compression = _COMPRESSION[config.compression]
    with zipfile.ZipFile(buffer, "w", compression=compression) as archive:
        archive.writestr(config.manifest_name, manifest_bytes)
        for name, text in entries.items():
            archive.writestr(name, text.encode("utf-8"))

    logger.debug(
        "packed bundle root=%s overlays=%d entries=%d",
        root, len(bundle.overlays), len(entries),
    )
    return buffer.getvalue()


# Errors zipfile raises for stored bytes that no longer match their CRC or
# whose compressed stream is corrupt.
_UNREADABLE_ENTRY = (zipfile.BadZipFile, zlib.error, EOFError, OSError, RuntimeError, NotImplementedError)


def _read_entry(
    archive: zipfile.ZipFile,
    name: str,
    error: Type[BundleError] = IntegrityError,
    code: ValidationCode = ValidationCode.SAID_MISMATCH,
) -> Optional[bytes]:
    """Return the entry bytes, or None if the archive has no such entry.

    An entry that exists but cannot be read back intact raises error(code).
    """
    try:
        return archive.read(name)
    except KeyError:
        return None
    except _UNREADABLE_ENTRY as e:
        raise error(code, f"Entry {name} is corrupt: {e}") from e


def _read_manifest(archive: zipfile.ZipFile, manifest_name: str) -> Dict[str, Any]:
    raw = _read_entry(archive, manifest_name, StructuralError, ValidationCode.INVALID_MANIFEST)
    if raw is None:
        raise StructuralError(
            ValidationCode.MISSING_MANIFEST, f"Missing {manifest_name} in archive"
        )
    try:
        manifest = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise StructuralError(
            ValidationCode.INVALID_MANIFEST, f"{manifest_name} is not valid JSON: {e}"
        ) from e
    if not isinstance(manifest, dict):
        raise StructuralError(
            ValidationCode.INVALID_MANIFEST, f"{manifest_name} must be a JSON object"
        )
    return manifest


def read_archive(data: bytes, config: BundleConfig = DEFAULT_CONFIG) -> ArchiveContents:
    """Load and verify an archive.

    Order matters: the capture base is verified against the manifest root
    before it is parsed. Overlay entries that are not strings, malformed,
    or absent are skipped with a warning; a present overlay that fails
    verification aborts the whole load.

    Raises:
        StructuralError: Bad zip, missing/malformed manifest or capture base
        IntegrityError: Capture base or a present overlay fails verification
            or cannot be read back intact (bad CRC, corrupt stream)
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise StructuralError(ValidationCode.INVALID_ARCHIVE, f"Not a valid archive: {e}") from e

    warnings: List[ArchiveWarning] = []

    def _warn(code: ValidationCode, message: str, name: str) -> None:
        logger.warning(message)
        warnings.append(ArchiveWarning(code=code.value, message=message, name=name))

    with archive:
        manifest = _read_manifest(archive, config.manifest_name)

        root = manifest.get("root")
        if not is_said(root):
            raise StructuralError(
                ValidationCode.MALFORMED_SAID, f"Manifest root is not a valid SAID: {root!r}"
            )

        capture_base_bytes = _read_entry(archive, entry_name(root))
        if capture_base_bytes is None:
            raise StructuralError(
                ValidationCode.MISSING_ENTRY, f"Missing capture base {entry_name(root)} in archive"
            )
        if not verify_said(root, capture_base_bytes):
            raise IntegrityError(
                ValidationCode.SAID_MISMATCH, f"Capture base {root} failed SAID verification"
            )
        capture_base = parse_capture_base(capture_base_bytes)
        capture_base.seal()

        files = manifest.get("files")
        root_files = files.get(root) if isinstance(files, dict) else None
        if not isinstance(root_files, dict):
            raise StructuralError(
                ValidationCode.INVALID_MANIFEST, f"Manifest has no file index for root {root}"
            )

        overlays: List[Tuple[str, OcaLayer]] = []
        for name, said in root_files.items():
            if not isinstance(said, str):
                _warn(
                    ValidationCode.INVALID_OVERLAY_REFERENCE,
                    f"Overlay {name!r} reference is not a string, skipped",
                    name,
                )
                continue
            if not is_said(said):
                _warn(
                    ValidationCode.INVALID_OVERLAY_REFERENCE,
                    f"Overlay {name!r} reference {said!r} is not a valid SAID, skipped",
                    name,
                )
                continue
            layer_bytes = _read_entry(archive, entry_name(said))
            if layer_bytes is None:
                _warn(
                    ValidationCode.MISSING_OVERLAY,
                    f"Overlay {name!r} entry {entry_name(said)} not found in archive, skipped",
                    name,
                )
                continue
            if not verify_said(said, layer_bytes):
                raise IntegrityError(
                    ValidationCode.SAID_MISMATCH,
                    f"Overlay {name!r} ({said}) failed SAID verification",
                )
            layer = parse_layer(layer_bytes)
            layer.seal()
            overlays.append((name, layer))

    logger.debug("loaded bundle root=%s overlays=%d", root, len(overlays))
    return ArchiveContents(
        bundle=Bundle(capture_base=capture_base, overlays=overlays),
        manifest=manifest,
        warnings=warnings,
    )
