"""Exceptions raised by the identity core.

Every bundle-level failure carries a ValidationCode so callers can map it
onto a ValidationResult without string matching.
"""

from ocabundle.codes import ValidationCode


class BundleError(Exception):
    """Base class for failures while packing or loading a bundle."""

    def __init__(self, code: ValidationCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code.value}] {message}")


class EncodingError(BundleError):
    """An entity could not be serialized to canonical bytes."""

    def __init__(self, message: str):
        super().__init__(ValidationCode.ENCODING_FAILED, message)


class StructuralError(BundleError):
    """The archive lacks a required entry or an entry has the wrong shape."""


class IntegrityError(BundleError):
    """A recomputed SAID does not match the claimed one."""


class SealedEntityError(AttributeError):
    """Raised when content of an entity is assigned after its digest was computed."""
