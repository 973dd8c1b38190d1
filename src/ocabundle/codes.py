"""Validation code constants for ocabundle.api.verify_bundle().

These constants prevent stringly-typed error codes and ensure
client code uses the correct validation codes.
"""

from enum import Enum


class ValidationCode(str, Enum):
    """Validation error and warning codes."""

    # Errors (blocking)
    ENCODING_FAILED = "ENCODING_FAILED"
    INVALID_ARCHIVE = "INVALID_ARCHIVE"
    MISSING_MANIFEST = "MISSING_MANIFEST"
    INVALID_MANIFEST = "INVALID_MANIFEST"
    MALFORMED_SAID = "MALFORMED_SAID"
    MISSING_ENTRY = "MISSING_ENTRY"
    INVALID_ENTITY = "INVALID_ENTITY"

    # Integrity errors
    SAID_MISMATCH = "SAID_MISMATCH"
    STALE_DIGEST = "STALE_DIGEST"

    # Adapter errors
    FETCH_FAILED = "FETCH_FAILED"

    # Warnings (non-blocking)
    INVALID_OVERLAY_REFERENCE = "INVALID_OVERLAY_REFERENCE"
    MISSING_OVERLAY = "MISSING_OVERLAY"
