"""Tests for the content comparators."""

from __future__ import annotations

import os

import pytest

from replica_sync import (
    ConfigurationError,
    DigestComparator,
    TimestampComparator,
    make_comparator,
    md5_file,
)


class TestMd5File:
    def test_known_digest(self, tmp_path):
        path = tmp_path / "hello.txt"
        path.write_bytes(b"hello")

        assert md5_file(path) == "5d41402abc4b2a76b9719d911017c592"

    def test_small_chunks_give_same_digest(self, tmp_path):
        path = tmp_path / "big.bin"
        path.write_bytes(os.urandom(10_000))

        assert md5_file(path, chunk_size=7) == md5_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty"
        path.write_bytes(b"")

        assert md5_file(path) == "d41d8cd98f00b204e9800998ecf8427e"


class TestDigestComparator:
    def test_identical_content_is_equal(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"same bytes")
        b.write_bytes(b"same bytes")

        assert DigestComparator().content_equals(a, b) is True

    def test_same_size_different_content(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"abcd")
        b.write_bytes(b"abce")

        assert DigestComparator().content_equals(a, b) is False

    def test_different_size_is_not_read(self, tmp_path, monkeypatch):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"short")
        b.write_bytes(b"much longer")
        comparator = DigestComparator()
        monkeypatch.setattr(comparator, "digest", lambda path: pytest.fail("digest computed"))

        assert comparator.content_equals(a, b) is False

    def test_timestamps_are_ignored(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"payload")
        b.write_bytes(b"payload")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (2_000_000, 2_000_000))

        assert DigestComparator().content_equals(a, b) is True

    def test_missing_file_raises(self, tmp_path):
        a = tmp_path / "a"
        a.write_bytes(b"x")

        with pytest.raises(FileNotFoundError):
            DigestComparator().content_equals(a, tmp_path / "gone")


class TestTimestampComparator:
    def test_same_size_and_mtime(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"abcd")
        b.write_bytes(b"wxyz")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_000.5, 1_000_000.5))

        # content differs, but this variant only looks at metadata
        assert TimestampComparator().content_equals(a, b) is True

    def test_mtime_outside_tolerance(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"abcd")
        b.write_bytes(b"abcd")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_005, 1_000_005))

        assert TimestampComparator().content_equals(a, b) is False

    def test_size_mismatch(self, tmp_path):
        a = tmp_path / "a"
        b = tmp_path / "b"
        a.write_bytes(b"abcd")
        b.write_bytes(b"abc")
        os.utime(a, (1_000_000, 1_000_000))
        os.utime(b, (1_000_000, 1_000_000))

        assert TimestampComparator().content_equals(a, b) is False


class TestMakeComparator:
    def test_modes(self):
        assert isinstance(make_comparator("md5"), DigestComparator)
        assert isinstance(make_comparator("mtime"), TimestampComparator)

    def test_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            make_comparator("sha1")
