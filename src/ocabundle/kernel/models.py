"""Capture base and overlay models with self-addressing identity.

Field order of every model is the canonical serialization order and is
part of the digest input. Map-valued fields are sorted by key on
validation so logically equal entities serialize identically regardless
of how they were constructed.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticSerializationError

from ocabundle.codes import ValidationCode
from ocabundle.kernel.errors import EncodingError, SealedEntityError, StructuralError
from ocabundle.kernel.said import canonical_dumps

CAPTURE_BASE_TYPE = "spec/capture_base/1.0"
CHARACTER_ENCODING_TYPE = "spec/overlays/character_encoding/1.0"
LABEL_TYPE = "spec/overlays/label/1.0"
CONFORMANCE_TYPE = "spec/overlays/conformance/1.0"
FORMAT_TYPE = "spec/overlays/format/1.0"
STYLE_TYPE = "spec/overlays/style/1.0"
ATTRIBUTE_MAPPING_TYPE = "spec/overlays/attribute_mapping/1.0"

DEFAULT_CLASSIFICATION = "GICS:45102010"


def _sorted_map(value: Dict[str, Any]) -> Dict[str, Any]:
    return dict(sorted(value.items()))


def _read_only(self, *args: Any, **kwargs: Any) -> None:
    raise SealedEntityError(
        "Content of a sealed entity is read-only; its digest was already computed "
        "(use revise())"
    )


class _SealedDict(dict):
    """dict that rejects in-place changes; serializes as a plain dict."""

    __setitem__ = __delitem__ = __ior__ = _read_only
    clear = pop = popitem = setdefault = update = _read_only

    def __reduce__(self):
        return (type(self), (dict(self),))


class _SealedList(list):
    """list that rejects in-place changes; serializes as a plain list."""

    __setitem__ = __delitem__ = __iadd__ = __imul__ = _read_only
    append = extend = insert = pop = remove = clear = sort = reverse = _read_only

    def __reduce__(self):
        return (type(self), (list(self),))


def _freeze(value: Any) -> Any:
    """Recursively replace dicts and lists with read-only equivalents.

    Nested plain models (StyleJson) are frozen in place.
    """
    if isinstance(value, dict):
        return _SealedDict((k, _freeze(v)) for k, v in value.items())
    if isinstance(value, list):
        return _SealedList(_freeze(v) for v in value)
    if isinstance(value, BaseModel) and not isinstance(value, SaidModel):
        for name in type(value).model_fields:
            value.__dict__[name] = _freeze(value.__dict__[name])
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_thaw(v) for v in value]
    return value


class Encoding(str, Enum):
    UTF8 = "utf-8"
    BASE64 = "base64"


class ConformancePolicy(str, Enum):
    MANDATORY = "M"
    OPTIONAL = "O"


class SaidModel(BaseModel):
    """Base for entities whose `digest` field holds their own SAID.

    After update_digest() (or loading from a verified archive) the entity
    is sealed: assigning a content field, or changing one of its maps or
    lists in place, raises SealedEntityError, since the stored digest would
    silently go stale. Use revise() to derive an editable copy. Subclasses
    declare `digest` themselves so it keeps its place in the canonical
    field order.
    """

    _sealed: bool = PrivateAttr(default=False)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in type(self).model_fields and name != "digest" and self._sealed:
            raise SealedEntityError(
                f"{type(self).__name__} is sealed; cannot assign {name!r} "
                "after its digest was computed (use revise())"
            )
        super().__setattr__(name, value)

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        for name in type(self).model_fields:
            if name != "digest":
                self.__dict__[name] = _freeze(self.__dict__[name])
        self._sealed = True

    def get_digest(self) -> str:
        return self.digest

    def set_digest(self, digest: str) -> None:
        self.digest = digest

    def to_json_dict(self) -> Dict[str, Any]:
        try:
            return self.model_dump(mode="json", by_alias=True)
        except PydanticSerializationError as e:
            raise EncodingError(f"Cannot serialize {type(self).__name__}: {e}") from e

    def canonical_json(self) -> str:
        return canonical_dumps(self.to_json_dict())

    def revise(self, **changes: Any):
        """Return an unsealed copy with changes applied and an empty digest."""
        data = self.model_dump()
        data.update(changes)
        data["digest"] = ""
        return type(self).model_validate(data)


class CaptureBase(SaidModel):
    """Schema root: attribute names and their primitive types."""

    type: str = CAPTURE_BASE_TYPE
    digest: str = ""
    classification: Optional[str] = None
    attributes: Dict[str, str]
    flagged_attributes: List[str] = Field(default_factory=list)

    @field_validator("attributes")
    @classmethod
    def sort_attributes(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _sorted_map(v)

    @classmethod
    def new(
        cls,
        attributes: Dict[str, str],
        flagged_attributes: Optional[List[str]] = None,
        classification: Optional[str] = DEFAULT_CLASSIFICATION,
    ) -> "CaptureBase":
        return cls(
            classification=classification,
            attributes=attributes,
            flagged_attributes=list(flagged_attributes or []),
        )


class CharacterEncoding(SaidModel):
    capture_base: str
    digest: str = ""
    type: str = CHARACTER_ENCODING_TYPE
    default_character_encoding: Encoding
    attribute_character_encoding: Dict[str, Encoding]

    @field_validator("attribute_character_encoding")
    @classmethod
    def sort_encodings(cls, v: Dict[str, Encoding]) -> Dict[str, Encoding]:
        return _sorted_map(v)


class Label(SaidModel):
    capture_base: str
    digest: str = ""
    type: str = LABEL_TYPE
    language: str
    attribute_labels: Dict[str, str]
    attribute_categories: List[str]
    category_labels: Dict[str, str]

    @field_validator("attribute_labels", "category_labels")
    @classmethod
    def sort_labels(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _sorted_map(v)


class Conformance(SaidModel):
    capture_base: str
    digest: str = ""
    type: str = CONFORMANCE_TYPE
    attribute_conformance: Dict[str, ConformancePolicy]

    @field_validator("attribute_conformance")
    @classmethod
    def sort_conformance(cls, v: Dict[str, ConformancePolicy]) -> Dict[str, ConformancePolicy]:
        return _sorted_map(v)


class Format(SaidModel):
    capture_base: str
    digest: str = ""
    type: str = FORMAT_TYPE
    attribute_formats: Dict[str, str]

    @field_validator("attribute_formats")
    @classmethod
    def sort_formats(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _sorted_map(v)


class StyleJson(BaseModel):
    """Presentation record consumed by the renderer (camelCase on the wire)."""

    title: str
    subtitle: str
    card_color: int
    text_color: str
    background_card: Optional[str] = None
    ordered_properties: List[str]

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


class Style(SaidModel):
    capture_base: str
    digest: str = ""
    type: str = STYLE_TYPE
    style_json: StyleJson


class AttributeMapping(SaidModel):
    """Maps attribute names to JSON paths into an external data document."""

    capture_base: str
    digest: str = ""
    type: str = ATTRIBUTE_MAPPING_TYPE
    attribute_mapping: Dict[str, str]

    @field_validator("attribute_mapping")
    @classmethod
    def sort_mapping(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _sorted_map(v)

    def map_json(self, data: Any) -> Dict[str, Any]:
        from ocabundle.kernel.remap import map_json

        return map_json(self.attribute_mapping, data)


class OtherOverlay(BaseModel):
    """Overlay of an unrecognized shape, carried as the raw JSON object.

    Its SAID lives under the object's "digest" key so it stays part of
    the integrity chain. Once sealed, `raw` can be neither reassigned nor
    changed in place; only the digest key is rewritten by set_digest().
    """

    raw: Dict[str, Any]

    _sealed: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "raw" and self._sealed:
            raise SealedEntityError(
                "OtherOverlay is sealed; cannot assign 'raw' after its digest "
                "was computed (use revise())"
            )
        super().__setattr__(name, value)

    @property
    def type(self) -> Optional[str]:
        value = self.raw.get("type")
        return value if isinstance(value, str) else None

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self.__dict__["raw"] = _freeze(self.raw)
        self._sealed = True

    def get_digest(self) -> str:
        value = self.raw.get("digest", "")
        if not isinstance(value, str):
            raise StructuralError(
                ValidationCode.INVALID_ENTITY,
                f"Overlay digest field must be a string, got {type(value).__name__}",
            )
        return value

    def set_digest(self, digest: str) -> None:
        if self._sealed:
            self.__dict__["raw"] = _freeze({**self.raw, "digest": digest})
        else:
            self.raw["digest"] = digest

    def to_json_dict(self) -> Dict[str, Any]:
        return _thaw(self.raw)

    def canonical_json(self) -> str:
        return canonical_dumps(self.raw)

    def revise(self, **changes: Any) -> "OtherOverlay":
        raw = _thaw(self.raw)
        raw.update(changes)
        raw["digest"] = ""
        return OtherOverlay(raw=raw)


OcaLayer = Union[
    CharacterEncoding,
    Label,
    Conformance,
    Format,
    Style,
    AttributeMapping,
    OtherOverlay,
]

# Structural match order; the first variant that validates wins.
_LAYER_VARIANTS = (CharacterEncoding, Label, Conformance, Format, Style, AttributeMapping)


def parse_layer(data: Union[str, bytes, Dict[str, Any]]) -> OcaLayer:
    """Build the overlay variant matching data, falling back to OtherOverlay.

    Known variants are validated strictly against the JSON text so that a
    parsed overlay re-serializes to the same bytes; anything that does not
    match exactly is kept as raw data.

    Raises:
        StructuralError: If data is not a JSON object
    """
    if isinstance(data, dict):
        text = canonical_dumps(data)
    elif isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StructuralError(ValidationCode.INVALID_ENTITY, f"Overlay is not UTF-8: {e}") from e
    else:
        text = data

    for variant in _LAYER_VARIANTS:
        try:
            return variant.model_validate_json(text, strict=True)
        except ValidationError:
            continue

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise StructuralError(ValidationCode.INVALID_ENTITY, f"Overlay is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise StructuralError(
            ValidationCode.INVALID_ENTITY,
            f"Overlay must be a JSON object, got {type(raw).__name__}",
        )
    return OtherOverlay(raw=raw)


def parse_capture_base(data: Union[str, bytes, Dict[str, Any]]) -> CaptureBase:
    """Parse a capture base.

    Raises:
        StructuralError: If data is not a valid capture base
    """
    try:
        if isinstance(data, dict):
            return CaptureBase.model_validate(data)
        return CaptureBase.model_validate_json(data, strict=True)
    except ValidationError as e:
        raise StructuralError(ValidationCode.INVALID_ENTITY, f"Invalid capture base: {e}") from e


def layer_type_name(layer: OcaLayer) -> str:
    """Short variant name used in diagnostics and the CLI."""
    if isinstance(layer, OtherOverlay):
        return "Other"
    return type(layer).__name__


class Bundle(BaseModel):
    """A capture base plus its overlays in caller-defined order."""

    capture_base: CaptureBase
    overlays: List[Tuple[str, OcaLayer]] = Field(default_factory=list)

    def overlay(self, name: str) -> Optional[OcaLayer]:
        """Return the last overlay registered under name (manifest semantics)."""
        found = None
        for overlay_name, layer in self.overlays:
            if overlay_name == name:
                found = layer
        return found

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "capture_base": self.capture_base.to_json_dict(),
            "overlays": [[name, layer.to_json_dict()] for name, layer in self.overlays],
        }

    @classmethod
    def from_json_dict(cls, data: Dict[str, Any]) -> "Bundle":
        if not isinstance(data, dict) or "capture_base" not in data:
            raise StructuralError(
                ValidationCode.INVALID_ENTITY, "Bundle JSON must contain 'capture_base'"
            )
        capture_base = parse_capture_base(data["capture_base"])
        overlays: List[Tuple[str, OcaLayer]] = []
        for entry in data.get("overlays", []):
            if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[0], str):
                raise StructuralError(
                    ValidationCode.INVALID_ENTITY,
                    "Bundle overlays must be [name, overlay] pairs",
                )
            overlays.append((entry[0], parse_layer(entry[1])))
        return cls(capture_base=capture_base, overlays=overlays)


def new_label_layer(
    capture_base: str,
    language: str,
    attribute_labels: Dict[str, str],
    attribute_categories: Optional[List[str]] = None,
    category_labels: Optional[Dict[str, str]] = None,
) -> Label:
    return Label(
        capture_base=capture_base,
        language=language,
        attribute_labels=attribute_labels,
        attribute_categories=list(attribute_categories or []),
        category_labels=dict(category_labels or {}),
    )


def new_style_layer(capture_base: str, style_json: StyleJson) -> Style:
    return Style(capture_base=capture_base, style_json=style_json)


def new_format_layer(capture_base: str, attribute_formats: Dict[str, str]) -> Format:
    return Format(capture_base=capture_base, attribute_formats=attribute_formats)


def new_character_encoding(
    capture_base: str,
    attribute_character_encoding: Dict[str, Encoding],
    default_character_encoding: Encoding = Encoding.UTF8,
) -> CharacterEncoding:
    return CharacterEncoding(
        capture_base=capture_base,
        default_character_encoding=default_character_encoding,
        attribute_character_encoding=attribute_character_encoding,
    )


def new_conformance_layer(
    capture_base: str, attribute_conformance: Dict[str, ConformancePolicy]
) -> Conformance:
    return Conformance(capture_base=capture_base, attribute_conformance=attribute_conformance)


def new_attribute_mapping_layer(
    capture_base: str, attribute_mapping: Dict[str, str]
) -> AttributeMapping:
    return AttributeMapping(capture_base=capture_base, attribute_mapping=attribute_mapping)
