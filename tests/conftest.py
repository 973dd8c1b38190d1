"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed ocabundle package.
"""

import io
import struct
import zipfile

import pytest

from ocabundle.kernel.models import (
    Bundle,
    CaptureBase,
    new_format_layer,
    new_label_layer,
)
from ocabundle.kernel.said import update_digest

ATTRIBUTES = {"givenName": "Text", "dateOfBirth": "DateTime"}
LABELS = {"givenName": "Given Name", "dateOfBirth": "Date of Birth"}


@pytest.fixture
def capture_base():
    """Unsealed capture base with two attributes."""
    return CaptureBase.new(dict(ATTRIBUTES))


@pytest.fixture
def bundle(capture_base):
    """Bundle with a sealed capture base plus label and format overlays."""
    root = update_digest(capture_base)
    label = new_label_layer(root, "en", dict(LABELS))
    fmt = new_format_layer(root, {"dateOfBirth": "%Y%m%d"})
    return Bundle(capture_base=capture_base, overlays=[("label (en)", label), ("format", fmt)])


@pytest.fixture
def rewrite_archive():
    """Return a helper that copies an archive, dropping or replacing entries."""

    def _rewrite(data, drop=(), replace=None):
        replace = replace or {}
        out = io.BytesIO()
        with zipfile.ZipFile(io.BytesIO(data)) as src, zipfile.ZipFile(out, "w") as dst:
            for info in src.infolist():
                if info.filename in drop:
                    continue
                dst.writestr(info.filename, replace.get(info.filename, src.read(info.filename)))
            for name, payload in replace.items():
                if name not in src.namelist():
                    dst.writestr(name, payload)
        return out.getvalue()

    return _rewrite


@pytest.fixture
def corrupt_entry():
    """Return a helper that flips one byte of an entry's stored data in place.

    The zip metadata (CRC, sizes) is left untouched, as with on-disk damage.
    """

    def _corrupt(data, name):
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            info = archive.getinfo(name)
        start = info.header_offset
        name_len, extra_len = struct.unpack("<HH", data[start + 26:start + 30])
        offset = start + 30 + name_len + extra_len + info.compress_size // 2
        corrupted = bytearray(data)
        corrupted[offset] ^= 0x01
        return bytes(corrupted)

    return _corrupt
