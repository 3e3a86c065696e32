"""Tests for the review repository layout: marker, record paths, path checks."""

from __future__ import annotations

import pytest

from vouchsafe.models.package import PackageIdentity
from vouchsafe.sync.layout import (
    LayoutError,
    check_marker,
    is_record_path,
    load_record,
    marker_bytes,
    parse_path,
    path_for,
)


class TestMarker:
    def test_marker_accepted(self):
        check_marker(marker_bytes())

    @pytest.mark.parametrize("data", [b"not json", b"[]", b'{"layout_version": 2}', b"{}"])
    def test_bad_markers(self, data):
        with pytest.raises(LayoutError):
            check_marker(data)


class TestPaths:
    def test_path_for_scoped_name(self, make_record, alice):
        pkg = PackageIdentity(ecosystem="npm", name="@types/node", version="20.0.0+build")
        record = make_record(alice[0], package=pkg)
        path = path_for(record)
        assert path == f"reviews/npm/%40types%2Fnode/20.0.0%2Bbuild/{record.id}.json"
        assert parse_path(path) == (pkg, record.id)

    def test_is_record_path(self):
        assert is_record_path("reviews/npm/d3/4.10.0/" + "a" * 64 + ".json")
        assert not is_record_path("reviews/npm/d3/" + "a" * 64 + ".json")
        assert not is_record_path("vouchsafe.json")

    @pytest.mark.parametrize("path", [
        "reviews/npm/d3/4.10.0/not-a-hash.json",
        "reviews/NPM bad/d3/4.10.0/" + "a" * 64 + ".json",
        "other/npm/d3/4.10.0/" + "a" * 64 + ".json",
    ])
    def test_parse_path_rejects(self, path):
        with pytest.raises(LayoutError):
            parse_path(path)


class TestLoadRecord:
    def test_load_matching(self, make_record, alice):
        record = make_record(alice[0])
        assert load_record(path_for(record), record.to_bytes()) == record

    def test_wrong_package_directory(self, make_record, alice):
        record = make_record(alice[0])
        wrong = path_for(record).replace("/d3/", "/lodash/")
        with pytest.raises(LayoutError, match="does not match"):
            load_record(wrong, record.to_bytes())

    def test_wrong_filename(self, make_record, alice):
        record = make_record(alice[0])
        other = make_record(alice[0], 0.1)
        with pytest.raises(LayoutError, match="does not match"):
            load_record(path_for(other), record.to_bytes())

    def test_garbage_content(self, make_record, alice):
        record = make_record(alice[0])
        with pytest.raises(LayoutError, match="Unparseable"):
            load_record(path_for(record), b"\xff\xfe")
