"""Helpers exposed to renderer templates.

Each helper takes and returns bytes so it can sit behind a plugin
boundary. Failures raise PluginError with a readable message.
"""

import base64
import binascii
import json
import re
from datetime import datetime

from pydantic import ValidationError

from ocabundle.kernel.errors import BundleError
from ocabundle.kernel.models import AttributeMapping
from ocabundle._internal.io.archive import read_archive

_TIME_DIRECTIVES = re.compile(r"%[HIMSTRpfXcsz]")
_DATE_DIRECTIVES = re.compile(r"%[Yycx]")


class PluginError(ValueError):
    """A plugin helper could not process its input."""


def _text(value: bytes, what: str) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as e:
        raise PluginError(f"{what} is not UTF-8: {e}") from e


def format_date(date: bytes, fmt: bytes) -> bytes:
    """Parse date with a strftime pattern and return ISO text.

    Patterns with time directives yield "YYYY-MM-DD HH:MM:SS", date-only
    patterns yield "YYYY-MM-DD". A pattern without a year (time-only such
    as "%H%M%S") is rejected instead of defaulting to 1900-01-01.
    """
    date_string = _text(date, "date")
    fmt_string = _text(fmt, "format")
    if not _DATE_DIRECTIVES.search(fmt_string):
        raise PluginError(f"Format {fmt_string!r} has no date part")
    try:
        parsed = datetime.strptime(date_string, fmt_string)
    except ValueError as e:
        raise PluginError(f"Failed to parse {date_string!r} with {fmt_string!r}") from e
    if _TIME_DIRECTIVES.search(fmt_string):
        return str(parsed).encode("utf-8")
    return str(parsed.date()).encode("utf-8")


def get_bundle(archive: bytes) -> bytes:
    """Load and verify an archive, returning the bundle as JSON."""
    try:
        contents = read_archive(archive)
    except BundleError as e:
        raise PluginError(e.message) from e
    return json.dumps(contents.bundle.to_json_dict(), ensure_ascii=False).encode("utf-8")


def remap_json(data: bytes, mapping_layer: bytes) -> bytes:
    """Apply an attribute mapping overlay to a JSON document."""
    try:
        value = json.loads(data)
    except json.JSONDecodeError as e:
        raise PluginError(f"Data is not valid JSON: {e}") from e
    try:
        layer = AttributeMapping.model_validate_json(mapping_layer)
    except ValidationError as e:
        raise PluginError(f"Not an attribute mapping overlay: {e}") from e
    return json.dumps(layer.map_json(value), ensure_ascii=False).encode("utf-8")


def decode64(text: bytes) -> bytes:
    """Decode base64 in standard or URL-safe alphabet, padded or not."""
    stripped = text.strip()
    padded = stripped + b"=" * (-len(stripped) % 4)
    for altchars in (None, b"-_"):
        try:
            return base64.b64decode(padded, altchars=altchars, validate=True)
        except (binascii.Error, ValueError):
            continue
    raise PluginError("Input is not valid base64")
