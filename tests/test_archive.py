"""Tests for bundle archive packing and verified loading."""

import io
import json
import logging
import zipfile

import pytest

from ocabundle.codes import ValidationCode
from ocabundle.config import BundleConfig
from ocabundle.kernel.errors import (
    EncodingError,
    IntegrityError,
    SealedEntityError,
    StructuralError,
)
from ocabundle.kernel.models import (
    Bundle,
    CaptureBase,
    Label,
    OtherOverlay,
    new_format_layer,
)
from ocabundle.kernel.said import update_digest, verify_said
from ocabundle._internal.io.archive import entry_name, read_archive, write_archive

ATTRIBUTES = {"givenName": "Text", "dateOfBirth": "DateTime"}
LABELS = {"givenName": "Given Name", "dateOfBirth": "Date of Birth"}


def _manifest(data):
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return json.loads(archive.read("meta.json"))


def _names(data):
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return archive.namelist()


def _entry(data, name):
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        return archive.read(name)


def _manifest_bytes(manifest):
    return json.dumps(manifest, separators=(",", ":")).encode("utf-8")


class TestWriteArchive:
    def test_manifest_root_matches_independent_digest(self, bundle):
        data = write_archive(bundle)
        independent = CaptureBase.new(dict(ATTRIBUTES))
        assert _manifest(data)["root"] == update_digest(independent)

    def test_round_trip_reproduces_maps(self, bundle):
        loaded = read_archive(write_archive(bundle)).bundle
        assert loaded.capture_base.attributes == ATTRIBUTES
        label = loaded.overlay("label (en)")
        assert isinstance(label, Label)
        assert label.attribute_labels == LABELS
        assert loaded.to_json_dict() == bundle.to_json_dict()

    def test_manifest_lists_every_overlay(self, bundle):
        data = write_archive(bundle)
        manifest = _manifest(data)
        root = manifest["root"]
        assert manifest["files"] == {
            root: {name: layer.digest for name, layer in bundle.overlays}
        }

    def test_entries(self, bundle):
        data = write_archive(bundle)
        names = _names(data)
        assert names[0] == "meta.json"
        root = bundle.capture_base.digest
        assert entry_name(root) in names
        for _, layer in bundle.overlays:
            assert entry_name(layer.digest) in names
        assert len(names) == 4

    def test_entries_hold_canonical_bytes(self, bundle):
        data = write_archive(bundle)
        for _, layer in bundle.overlays:
            stored = _entry(data, entry_name(layer.digest))
            assert stored == layer.canonical_json().encode("utf-8")
            assert verify_said(layer.digest, stored)

    def test_overlays_digested_and_sealed_in_place(self, bundle):
        assert all(layer.digest == "" for _, layer in bundle.overlays)
        write_archive(bundle)
        for _, layer in bundle.overlays:
            assert layer.digest.startswith("E")
            assert layer.is_sealed

    def test_manifest_preserves_caller_order(self, capture_base):
        root = update_digest(capture_base)
        overlays = [
            ("zeta", new_format_layer(root, {"givenName": "a"})),
            ("alpha", new_format_layer(root, {"givenName": "b"})),
            ("mid", new_format_layer(root, {"givenName": "c"})),
        ]
        data = write_archive(Bundle(capture_base=capture_base, overlays=overlays))
        assert list(_manifest(data)["files"][root]) == ["zeta", "alpha", "mid"]
        loaded = read_archive(data).bundle
        assert [name for name, _ in loaded.overlays] == ["zeta", "alpha", "mid"]

    def test_duplicate_name_last_write_wins(self, capture_base):
        root = update_digest(capture_base)
        first = new_format_layer(root, {"givenName": "a"})
        second = new_format_layer(root, {"givenName": "b"})
        data = write_archive(
            Bundle(capture_base=capture_base, overlays=[("format", first), ("format", second)])
        )
        assert _manifest(data)["files"][root] == {"format": second.digest}
        loaded = read_archive(data).bundle
        assert len(loaded.overlays) == 1
        assert loaded.overlay("format").attribute_formats == {"givenName": "b"}

    def test_identical_overlays_written_once(self, capture_base):
        root = update_digest(capture_base)
        a = new_format_layer(root, {"givenName": "a"})
        b = new_format_layer(root, {"givenName": "a"})
        data = write_archive(Bundle(capture_base=capture_base, overlays=[("a", a), ("b", b)]))
        assert a.digest == b.digest
        assert len(_names(data)) == 3
        loaded = read_archive(data).bundle
        assert [name for name, _ in loaded.overlays] == ["a", "b"]

    def test_stored_by_default(self, bundle):
        data = write_archive(bundle)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert {info.compress_type for info in archive.infolist()} == {zipfile.ZIP_STORED}

    def test_deflated_config(self, bundle):
        data = write_archive(bundle, BundleConfig(compression="deflated"))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert {info.compress_type for info in archive.infolist()} == {zipfile.ZIP_DEFLATED}
        assert read_archive(data).bundle.to_json_dict() == bundle.to_json_dict()

    def test_custom_manifest_name(self, bundle):
        config = BundleConfig(manifest_name="index.json")
        data = write_archive(bundle, config)
        assert _names(data)[0] == "index.json"
        assert read_archive(data, config).bundle.capture_base.digest == bundle.capture_base.digest

    def test_unsealed_capture_base_is_digested(self, capture_base):
        data = write_archive(Bundle(capture_base=capture_base))
        assert capture_base.is_sealed
        assert _manifest(data)["root"] == capture_base.digest

    def test_stale_capture_base_rejected(self):
        claimed = "E" + "A" * 43
        capture_base = CaptureBase(attributes={"givenName": "Text"}, digest=claimed)
        with pytest.raises(IntegrityError) as excinfo:
            write_archive(Bundle(capture_base=capture_base))
        assert excinfo.value.code == ValidationCode.STALE_DIGEST
        assert capture_base.digest == claimed

    def test_encoding_failure_aborts(self, capture_base):
        root = update_digest(capture_base)
        bad = OtherOverlay(raw={"capture_base": root, "digest": "", "value": float("nan")})
        with pytest.raises(EncodingError):
            write_archive(Bundle(capture_base=capture_base, overlays=[("bad", bad)]))

    def test_foreign_capture_base_reference_logged(self, capture_base, caplog):
        update_digest(capture_base)
        foreign = new_format_layer("E" + "B" * 43, {"givenName": "a"})
        with caplog.at_level(logging.WARNING, logger="ocabundle._internal.io.archive"):
            write_archive(Bundle(capture_base=capture_base, overlays=[("format", foreign)]))
        assert "references capture base" in caplog.text

    def test_repack_of_loaded_bundle_is_identical(self, bundle):
        data = write_archive(bundle)
        loaded = read_archive(data).bundle
        assert _manifest(write_archive(loaded)) == _manifest(data)


class TestOtherOverlayArchive:
    def test_unknown_overlay_round_trip(self, capture_base):
        root = update_digest(capture_base)
        raw = {
            "capture_base": root,
            "digest": "",
            "type": "spec/overlays/meta/1.0",
            "language": "en",
            "name": "Identity card",
        }
        other = OtherOverlay(raw=dict(raw))
        data = write_archive(Bundle(capture_base=capture_base, overlays=[("meta (en)", other)]))
        loaded = read_archive(data).bundle.overlay("meta (en)")
        assert isinstance(loaded, OtherOverlay)
        assert loaded.get_digest() == other.get_digest()
        assert loaded.raw["name"] == "Identity card"

    def test_tampered_unknown_overlay_fatal(self, capture_base, rewrite_archive):
        root = update_digest(capture_base)
        other = OtherOverlay(raw={"capture_base": root, "digest": "", "type": "x", "v": "1"})
        data = write_archive(Bundle(capture_base=capture_base, overlays=[("x", other)]))
        name = entry_name(other.get_digest())
        tampered = rewrite_archive(data, replace={name: _entry(data, name).replace(b'"1"', b'"2"')})
        with pytest.raises(IntegrityError):
            read_archive(tampered)


class TestReadArchive:
    def test_loaded_entities_sealed(self, bundle):
        loaded = read_archive(write_archive(bundle)).bundle
        assert loaded.capture_base.is_sealed
        with pytest.raises(SealedEntityError):
            loaded.capture_base.attributes = {}
        for _, layer in loaded.overlays:
            assert layer.is_sealed

    def test_loaded_overlay_cannot_change_in_place(self, bundle):
        label = read_archive(write_archive(bundle)).bundle.overlay("label (en)")
        with pytest.raises(SealedEntityError):
            label.attribute_labels["givenName"] = "Changed"
        assert label.attribute_labels == LABELS
        assert verify_said(label.digest, label.canonical_json())

    def test_manifest_and_no_warnings(self, bundle):
        contents = read_archive(write_archive(bundle))
        assert contents.manifest["root"] == bundle.capture_base.digest
        assert contents.warnings == []

    def test_missing_overlay_skipped_with_warning(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        format_said = bundle.overlay("format").digest
        partial = rewrite_archive(data, drop={entry_name(format_said)})
        contents = read_archive(partial)
        assert [name for name, _ in contents.bundle.overlays] == ["label (en)"]
        assert len(contents.warnings) == 1
        warning = contents.warnings[0]
        assert warning.code == ValidationCode.MISSING_OVERLAY.value
        assert warning.name == "format"

    def test_tampered_overlay_fatal(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        name = entry_name(bundle.overlay("label (en)").digest)
        tampered = rewrite_archive(
            data, replace={name: _entry(data, name).replace(b"Given Name", b"Given Nome")}
        )
        with pytest.raises(IntegrityError) as excinfo:
            read_archive(tampered)
        assert excinfo.value.code == ValidationCode.SAID_MISMATCH

    def test_tampered_capture_base_fatal(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        name = entry_name(bundle.capture_base.digest)
        tampered = rewrite_archive(
            data, replace={name: _entry(data, name).replace(b"DateTime", b"Text")}
        )
        with pytest.raises(IntegrityError) as excinfo:
            read_archive(tampered)
        assert excinfo.value.code == ValidationCode.SAID_MISMATCH

    def test_non_string_reference_skipped(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        manifest = _manifest(data)
        manifest["files"][manifest["root"]]["broken"] = 7
        patched = rewrite_archive(data, replace={"meta.json": _manifest_bytes(manifest)})
        contents = read_archive(patched)
        assert len(contents.bundle.overlays) == 2
        assert [w.code for w in contents.warnings] == [
            ValidationCode.INVALID_OVERLAY_REFERENCE.value
        ]

    def test_malformed_reference_skipped(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        manifest = _manifest(data)
        manifest["files"][manifest["root"]]["broken"] = "../etc/passwd"
        patched = rewrite_archive(data, replace={"meta.json": _manifest_bytes(manifest)})
        contents = read_archive(patched)
        assert len(contents.bundle.overlays) == 2
        assert contents.warnings[0].name == "broken"

    def test_not_a_zip(self):
        with pytest.raises(StructuralError) as excinfo:
            read_archive(b"definitely not a zip")
        assert excinfo.value.code == ValidationCode.INVALID_ARCHIVE

    def test_missing_manifest(self, bundle, rewrite_archive):
        data = rewrite_archive(write_archive(bundle), drop={"meta.json"})
        with pytest.raises(StructuralError) as excinfo:
            read_archive(data)
        assert excinfo.value.code == ValidationCode.MISSING_MANIFEST

    def test_invalid_manifest_json(self, bundle, rewrite_archive):
        data = rewrite_archive(write_archive(bundle), replace={"meta.json": b"{oops"})
        with pytest.raises(StructuralError) as excinfo:
            read_archive(data)
        assert excinfo.value.code == ValidationCode.INVALID_MANIFEST

    def test_malformed_root(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        manifest = _manifest(data)
        manifest["root"] = "not-a-said"
        patched = rewrite_archive(data, replace={"meta.json": _manifest_bytes(manifest)})
        with pytest.raises(StructuralError) as excinfo:
            read_archive(patched)
        assert excinfo.value.code == ValidationCode.MALFORMED_SAID

    def test_missing_capture_base_entry(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        patched = rewrite_archive(data, drop={entry_name(bundle.capture_base.digest)})
        with pytest.raises(StructuralError) as excinfo:
            read_archive(patched)
        assert excinfo.value.code == ValidationCode.MISSING_ENTRY

    def test_missing_file_index(self, bundle, rewrite_archive):
        data = write_archive(bundle)
        manifest = {"root": bundle.capture_base.digest, "files": {}}
        patched = rewrite_archive(data, replace={"meta.json": _manifest_bytes(manifest)})
        with pytest.raises(StructuralError) as excinfo:
            read_archive(patched)
        assert excinfo.value.code == ValidationCode.INVALID_MANIFEST


class TestCorruptEntries:
    """Damage to stored bytes that zip metadata no longer matches."""

    def test_corrupt_overlay_entry(self, bundle, corrupt_entry):
        data = write_archive(bundle)
        damaged = corrupt_entry(data, entry_name(bundle.overlay("label (en)").digest))
        with pytest.raises(IntegrityError) as excinfo:
            read_archive(damaged)
        assert excinfo.value.code == ValidationCode.SAID_MISMATCH

    def test_corrupt_capture_base_entry(self, bundle, corrupt_entry):
        data = write_archive(bundle)
        damaged = corrupt_entry(data, entry_name(bundle.capture_base.digest))
        with pytest.raises(IntegrityError) as excinfo:
            read_archive(damaged)
        assert excinfo.value.code == ValidationCode.SAID_MISMATCH

    def test_corrupt_deflated_entry(self, bundle, corrupt_entry):
        data = write_archive(bundle, BundleConfig(compression="deflated"))
        damaged = corrupt_entry(data, entry_name(bundle.overlay("format").digest))
        with pytest.raises(IntegrityError):
            read_archive(damaged)

    def test_corrupt_manifest_entry(self, bundle, corrupt_entry):
        damaged = corrupt_entry(write_archive(bundle), "meta.json")
        with pytest.raises(StructuralError) as excinfo:
            read_archive(damaged)
        assert excinfo.value.code == ValidationCode.INVALID_MANIFEST
