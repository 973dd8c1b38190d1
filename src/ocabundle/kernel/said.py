"""Self-addressing identifiers (SAIDs) over canonical JSON text.

A SAID is the digest of the entity that contains it. The circular
dependency is resolved with a fixed-length placeholder:

- The digest field is filled with PLACEHOLDER before serializing.
- The serialized text (trimmed) is hashed with BLAKE3 (256 bits).
- The hash is base64url encoded without padding and prefixed with "E".
- The resulting token replaces the placeholder.

Verification works on the stored bytes only: every occurrence of the
claimed SAID is replaced textually with a same-length placeholder and the
hash is recomputed. The bytes are never parsed, so unknown overlay shapes
verify the same way as known ones.

Key rules:
- PLACEHOLDER and SAID tokens have identical length (checked at import)
- Canonical JSON is compact, UTF-8, key order fixed by the entity model
- NaN/Infinity and non-JSON values are an EncodingError, never a digest
"""

import base64
import json
import re
from typing import Any, Protocol, Union, runtime_checkable

from blake3 import blake3

from ocabundle.kernel.errors import EncodingError

SAID_PREFIX = "E"
DIGEST_SIZE = 32  # bytes, BLAKE3 default output
PLACEHOLDER_CHAR = "#"

SAID_LENGTH = len(SAID_PREFIX) + len(
    base64.urlsafe_b64encode(bytes(DIGEST_SIZE)).rstrip(b"=")
)
PLACEHOLDER = PLACEHOLDER_CHAR * SAID_LENGTH

if len(PLACEHOLDER) != SAID_LENGTH:
    raise RuntimeError("SAID placeholder length does not match encoded digest length")

_SAID_PATTERN = re.compile(
    rf"^{SAID_PREFIX}[A-Za-z0-9_-]{{{SAID_LENGTH - len(SAID_PREFIX)}}}$"
)


@runtime_checkable
class Said(Protocol):
    """Capability shared by every entity that carries its own SAID."""

    def get_digest(self) -> str: ...

    def set_digest(self, digest: str) -> None: ...

    def canonical_json(self) -> str: ...

    def seal(self) -> None: ...


def canonical_dumps(obj: Any) -> str:
    """
    Canonical JSON serialization for entity bytes.

    Rules:
    - UTF-8 (ensure_ascii=False)
    - Compact separators (",", ":")
    - Keys in insertion order (the entity model defines the order)
    - NaN and Infinity rejected

    Raises:
        EncodingError: If obj contains values JSON cannot represent
    """
    try:
        return json.dumps(
            obj,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise EncodingError(f"Cannot serialize entity: {e}") from e


def _encode_digest(data: bytes) -> str:
    digest = blake3(data).digest(length=DIGEST_SIZE)
    encoded = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return f"{SAID_PREFIX}{encoded}"


def compute_said(text: Union[str, bytes]) -> str:
    """Compute the SAID of canonical text whose digest field holds PLACEHOLDER.

    Leading and trailing whitespace of the whole document is trimmed
    before hashing.
    """
    if isinstance(text, str):
        data = text.strip().encode("utf-8")
    else:
        data = text.strip()
    return _encode_digest(data)


def is_said(token: Any) -> bool:
    """Check that token has the shape of a SAID ("E" + 43 base64url chars)."""
    return isinstance(token, str) and _SAID_PATTERN.match(token) is not None


def verify_said(said: str, data: Union[str, bytes]) -> bool:
    """Verify stored bytes against a claimed SAID.

    Every occurrence of said is replaced with a placeholder of the same
    length, then the digest is recomputed and compared exactly.
    A malformed claim never verifies.
    """
    if not is_said(said):
        return False
    if isinstance(data, str):
        data = data.encode("utf-8")
    claimed = said.encode("ascii")
    hash_input = data.replace(claimed, (PLACEHOLDER_CHAR * len(said)).encode("ascii"))
    return _encode_digest(hash_input) == said


def update_digest(entity: Said) -> str:
    """Compute and assign the SAID of entity, then seal it.

    On an EncodingError the previous digest is restored and the error
    propagates.
    """
    previous = entity.get_digest()
    entity.set_digest(PLACEHOLDER)
    try:
        text = entity.canonical_json()
    except EncodingError:
        entity.set_digest(previous)
        raise
    said = compute_said(text)
    entity.set_digest(said)
    entity.seal()
    return said
