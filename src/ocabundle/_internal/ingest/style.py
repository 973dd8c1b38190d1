"""Build bundles from a schema-creator style description.

The style description lists attributes with a display name and a field
type, plus the style record used by the renderer. It maps onto:
- a capture base (date-ish fields -> "DateTime", everything else -> "Text")
- a label overlay in the default language
- the style overlay
- a format overlay (date patterns, image media type)
- a character encoding overlay (images are base64)
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ocabundle.codes import ValidationCode
from ocabundle.config import DEFAULT_CONFIG, BundleConfig
from ocabundle.kernel.errors import BundleError, StructuralError
from ocabundle.kernel.models import (
    Bundle,
    CaptureBase,
    Encoding,
    StyleJson,
    new_character_encoding,
    new_format_layer,
    new_label_layer,
    new_style_layer,
)
from ocabundle.kernel.said import update_digest

logger = logging.getLogger(__name__)


class FetchError(BundleError):
    """The style description could not be fetched."""

    def __init__(self, message: str):
        super().__init__(ValidationCode.FETCH_FAILED, message)


class AttributeFieldType(str, Enum):
    STRING = "STRING"
    DATE = "DATE"
    DATETIME = "DATETIME"
    TIME = "TIME"
    DATEOFBIRTH = "DATEOFBIRTH"
    IMAGE = "IMAGE"
    BOOLEAN = "BOOLEAN"
    NUMBER = "NUMBER"
    OTHER = "OTHER"


_DATE_TYPES = {
    AttributeFieldType.DATE,
    AttributeFieldType.DATEOFBIRTH,
    AttributeFieldType.DATETIME,
    AttributeFieldType.TIME,
}

_KNOWN_FIELD_TYPES = {t.value for t in AttributeFieldType}

_FORMATS = {
    AttributeFieldType.DATE: "%Y%m%d",
    AttributeFieldType.DATEOFBIRTH: "%Y%m%d",
    AttributeFieldType.DATETIME: "%Y%m%d%H%M%S",
    AttributeFieldType.TIME: "%H%M%S",
    AttributeFieldType.IMAGE: "image/png",
}


class Attribute(BaseModel):
    display_name: str
    field_type: AttributeFieldType

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("field_type", mode="before")
    @classmethod
    def unknown_as_other(cls, v: Any) -> Any:
        if isinstance(v, str) and v not in _KNOWN_FIELD_TYPES:
            return AttributeFieldType.OTHER
        return v


class StyleJsonFile(BaseModel):
    """Schema-creator document: attributes plus the style record."""
    attributes: Dict[str, Attribute]
    style: StyleJson

    model_config = ConfigDict(extra="ignore")


def bundle_from_style_json(
    style_file: StyleJsonFile, config: BundleConfig = DEFAULT_CONFIG
) -> Bundle:
    """Convert a style description into a bundle with a sealed capture base."""
    attributes: Dict[str, str] = {}
    labels: Dict[str, str] = {}
    formats: Dict[str, str] = {}
    encodings: Dict[str, Encoding] = {}

    for key, attribute in style_file.attributes.items():
        field_type = attribute.field_type
        attributes[key] = "DateTime" if field_type in _DATE_TYPES else "Text"
        labels[key] = attribute.display_name
        fmt = _FORMATS.get(field_type)
        if fmt is not None:
            formats[key] = fmt
            if field_type is AttributeFieldType.IMAGE:
                encodings[key] = Encoding.BASE64

    capture_base = CaptureBase.new(attributes, [], classification=config.default_classification)
    root = update_digest(capture_base)

    overlays = [
        (
            f"label ({config.default_language})",
            new_label_layer(root, config.default_language, labels),
        ),
        ("style", new_style_layer(root, style_file.style)),
        ("format", new_format_layer(root, formats)),
        ("encoding", new_character_encoding(root, encodings)),
    ]
    logger.debug("built bundle %s from style with %d attributes", root, len(attributes))
    return Bundle(capture_base=capture_base, overlays=overlays)


def parse_style_json(data: Any) -> StyleJsonFile:
    """
    Raises:
        StructuralError: If data is not a style description
    """
    try:
        if isinstance(data, (str, bytes)):
            return StyleJsonFile.model_validate_json(data)
        return StyleJsonFile.model_validate(data)
    except ValidationError as e:
        raise StructuralError(
            ValidationCode.INVALID_ENTITY, f"Invalid style description: {e}"
        ) from e


def fetch_style_json(
    url: str,
    client: Optional[httpx.Client] = None,
    config: BundleConfig = DEFAULT_CONFIG,
) -> StyleJsonFile:
    """Fetch and parse a style description over HTTP.

    Raises:
        FetchError: On transport errors or a non-2xx status
        StructuralError: If the response is not a style description
    """
    try:
        if client is None:
            with httpx.Client(timeout=config.fetch_timeout_seconds, follow_redirects=True) as owned:
                response = owned.get(url)
        else:
            response = client.get(url)
        response.raise_for_status()
    except httpx.TimeoutException as e:
        raise FetchError(f"Timed out fetching {url}") from e
    except httpx.HTTPStatusError as e:
        raise FetchError(f"HTTP {e.response.status_code} fetching {url}") from e
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch {url}: {e}") from e
    return parse_style_json(response.content)


def bundle_from_style_url(
    url: str,
    client: Optional[httpx.Client] = None,
    config: BundleConfig = DEFAULT_CONFIG,
) -> Bundle:
    return bundle_from_style_json(fetch_style_json(url, client=client, config=config), config=config)
