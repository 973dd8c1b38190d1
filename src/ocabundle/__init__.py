"""ocabundle: self-addressing capture bases, overlays and verified bundle archives."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("ocabundle")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from ocabundle.api import (
    pack_bundle,
    load_bundle,
    read_bundle,
    verify_bundle,
    bundle_from_style,
    ValidationIssue,
    ValidationResult,
)
from ocabundle.codes import ValidationCode
from ocabundle.config import BundleConfig
from ocabundle.kernel.errors import (
    BundleError,
    EncodingError,
    IntegrityError,
    SealedEntityError,
    StructuralError,
)
from ocabundle.kernel.models import Bundle, CaptureBase

__all__ = [
    "__version__",
    "pack_bundle",
    "load_bundle",
    "read_bundle",
    "verify_bundle",
    "bundle_from_style",
    "ValidationIssue",
    "ValidationResult",
    "ValidationCode",
    "BundleConfig",
    "BundleError",
    "EncodingError",
    "IntegrityError",
    "SealedEntityError",
    "StructuralError",
    "Bundle",
    "CaptureBase",
]
