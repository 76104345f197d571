"""Tests for file_handler module: encoding-aware reads, atomic writes, checksums."""

import hashlib

from agentsync.file_handler import (
    checksum_bytes,
    checksum_path,
    checksum_tree,
    read_file_with_encoding,
    read_text,
    read_tree,
    remove_path,
    write_bytes_atomic,
)

# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8_file(self, tmp_path):
        """UTF-8 file returns content and 'utf-8' encoding."""
        f = tmp_path / "SKILL.md"
        f.write_text("Résumé skill", encoding="utf-8")
        content, encoding = read_file_with_encoding(f)
        assert content == "Résumé skill"
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        """Empty file returns empty string and 'utf-8' default encoding."""
        f = tmp_path / "empty.md"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_non_utf8_file(self, tmp_path):
        """Non-UTF-8 file detects encoding and returns decoded content."""
        f = tmp_path / "latin1.md"
        # Latin-1 bytes that are not valid UTF-8
        text = "Café résumé naïve üöä"
        f.write_bytes(text.encode("latin-1"))
        content, encoding = read_file_with_encoding(f)
        assert "Caf" in content
        assert isinstance(encoding, str)
        assert read_text(f) == content


# =============================================================================
# read_tree / write_bytes_atomic / remove_path
# =============================================================================


class TestTreeAndWrites:
    def test_read_tree_uses_posix_relative_paths(self, tmp_path):
        (tmp_path / "scripts").mkdir()
        (tmp_path / "SKILL.md").write_bytes(b"skill")
        (tmp_path / "scripts" / "run.sh").write_bytes(b"echo")

        assert read_tree(tmp_path) == {
            "SKILL.md": b"skill",
            "scripts/run.sh": b"echo",
        }

    def test_atomic_write_creates_parents(self, tmp_path):
        path = tmp_path / "a" / "b" / "out.md"

        written = write_bytes_atomic(path, b"hello")

        assert written == 5
        assert path.read_bytes() == b"hello"
        assert [p.name for p in path.parent.iterdir()] == ["out.md"]

    def test_atomic_write_replaces(self, tmp_path):
        path = tmp_path / "out.md"
        path.write_bytes(b"old")
        write_bytes_atomic(path, b"new")
        assert path.read_bytes() == b"new"

    def test_remove_file_and_directory(self, tmp_path):
        f = tmp_path / "x.md"
        f.write_text("x")
        d = tmp_path / "bundle"
        (d / "nested").mkdir(parents=True)
        (d / "nested" / "y").write_text("y")

        remove_path(f)
        remove_path(d)

        assert not f.exists()
        assert not d.exists()


# =============================================================================
# Checksums
# =============================================================================


class TestChecksums:
    def test_bytes(self):
        assert checksum_bytes(b"abc") == hashlib.sha256(b"abc").hexdigest()

    def test_tree_is_order_independent(self):
        a = checksum_tree({"a": b"1", "b/c": b"2"})
        b = checksum_tree({"b/c": b"2", "a": b"1"})
        assert a == b
        assert a != checksum_tree({"a": b"1", "b/c": b"3"})
        assert a != checksum_tree({"a": b"1", "b/d": b"2"})

    def test_path(self, tmp_path):
        f = tmp_path / "f.md"
        f.write_bytes(b"data")
        d = tmp_path / "dir"
        d.mkdir()
        (d / "SKILL.md").write_bytes(b"data")

        assert checksum_path(f) == checksum_bytes(b"data")
        assert checksum_path(d) == checksum_tree({"SKILL.md": b"data"})
        assert checksum_path(tmp_path / "missing") is None
