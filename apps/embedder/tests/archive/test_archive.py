"""Tests for the zip archive access layer."""

import os
import stat
import zipfile

import pytest

from agent_embedder.archive import (
    ArchivePath,
    HostZipStrategy,
    NestedZipStrategy,
    normalize_entry_name,
    open_archive,
    select_strategy,
)
from agent_embedder.types import ArchiveIOError
from tests.conftest import build_zip, read_zip, zip_bytes


@pytest.fixture
def sample(tmp_path):
    return build_zip(tmp_path / "sample.zip", {
        "META-INF/MANIFEST.MF": "Main-Class: app.Main\r\n\r\n",
        "app/": b"",
        "app/Main.class": b"main",
        "lib/util/Helper.class": b"helper",
    })


class TestOpen:
    def test_missing_file_without_create_returns_none(self, tmp_path):
        assert open_archive(tmp_path / "missing.zip") is None

    def test_create_makes_empty_valid_container(self, tmp_path):
        path = tmp_path / "new" / "dir" / "created.zip"
        with open_archive(path, create=True) as archive:
            assert archive.entries() == []
        assert zipfile.is_zipfile(path)

    def test_not_a_zip_raises_archive_io_error(self, tmp_path):
        path = tmp_path / "broken.zip"
        path.write_bytes(b"definitely not a zip")
        with pytest.raises(ArchiveIOError, match="Cannot open archive"):
            open_archive(path)

    def test_strategy_selection(self, tmp_path, sample):
        assert isinstance(select_strategy(tmp_path / "x.zip"), HostZipStrategy)
        assert isinstance(select_strategy(str(sample)), HostZipStrategy)
        with open_archive(sample) as archive:
            assert isinstance(select_strategy(archive.path("lib/x.zip")), NestedZipStrategy)
        with pytest.raises(TypeError):
            select_strategy(42)


class TestQueries:
    def test_entries_in_archive_order(self, sample):
        with open_archive(sample) as archive:
            assert archive.entries() == [
                "META-INF/MANIFEST.MF", "app/", "app/Main.class", "lib/util/Helper.class",
            ]

    def test_implicit_and_explicit_directories(self, sample):
        with open_archive(sample) as archive:
            assert archive.is_dir("app")
            assert archive.is_dir("app/")
            assert archive.is_dir("lib/util")
            assert archive.exists("lib")
            assert not archive.is_file("lib")
            assert archive.is_dir("/")

    def test_leading_slash_and_backslashes_are_normalized(self, sample):
        with open_archive(sample) as archive:
            assert archive.is_file("/app/Main.class")
            assert archive.is_file("lib\\util\\Helper.class")

    def test_find_returns_first_match(self, sample):
        with open_archive(sample) as archive:
            assert archive.find(lambda name: name.endswith(".class")) == "app/Main.class"
            assert archive.find(lambda name: name.endswith(".jar")) is None

    def test_read_missing_entry_raises(self, sample):
        with open_archive(sample) as archive:
            with pytest.raises(ArchiveIOError, match="No such file"):
                archive.read_bytes("nope.txt")


class TestMutation:
    def test_changes_are_flushed_on_close(self, sample):
        with open_archive(sample) as archive:
            archive.write_bytes("agt/Boot.class", b"boot")
            archive.delete("lib/util/Helper.class")

        content = read_zip(sample)
        assert content["agt/Boot.class"] == b"boot"
        assert "lib/util/Helper.class" not in content
        assert content["app/Main.class"] == b"main"

    def test_overwrite_keeps_entry_position(self, sample):
        with open_archive(sample) as archive:
            archive.write_bytes("META-INF/MANIFEST.MF", b"Main-Class: other\r\n\r\n")
        with zipfile.ZipFile(sample) as zf:
            assert zf.namelist()[0] == "META-INF/MANIFEST.MF"
            assert zf.read("META-INF/MANIFEST.MF") == b"Main-Class: other\r\n\r\n"

    def test_unmodified_archive_is_not_rewritten(self, sample):
        before = sample.read_bytes()
        with open_archive(sample) as archive:
            archive.read_bytes("app/Main.class")
        assert sample.read_bytes() == before

    def test_exception_discards_pending_changes(self, sample):
        before = sample.read_bytes()
        with pytest.raises(RuntimeError):
            with open_archive(sample) as archive:
                archive.write_bytes("new.txt", b"x")
                raise RuntimeError("boom")
        assert sample.read_bytes() == before
        assert archive.closed

    def test_close_is_idempotent(self, sample):
        archive = open_archive(sample)
        archive.write_bytes("one.txt", b"1")
        archive.close()
        archive.close()
        assert read_zip(sample)["one.txt"] == b"1"

    def test_use_after_close_raises(self, sample):
        archive = open_archive(sample)
        archive.close()
        with pytest.raises(ArchiveIOError, match="closed"):
            archive.write_bytes("x", b"")
        with pytest.raises(ArchiveIOError, match="closed"):
            archive.entries()

    def test_make_dir_adds_explicit_entry_once(self, sample):
        with open_archive(sample) as archive:
            archive.make_dir("empty")
            archive.make_dir("app")
            assert archive.entries().count("empty/") == 1
        assert "empty/" in read_zip(sample)

    def test_cannot_write_over_a_directory(self, sample):
        with open_archive(sample) as archive:
            with pytest.raises(ArchiveIOError, match="is a directory"):
                archive.write_bytes("lib/util", b"x")

    def test_delete_missing_entry_is_false(self, sample):
        with open_archive(sample) as archive:
            assert archive.delete("nope") is False
            assert not archive.modified

    def test_delete_non_empty_directory_raises(self, sample):
        with open_archive(sample) as archive:
            with pytest.raises(ArchiveIOError, match="not empty"):
                archive.delete("app/")

    def test_preserves_interpreter_prefix(self, tmp_path):
        prefix = b"#!/usr/bin/env python3\n"
        path = build_zip(tmp_path / "app.pyz", {"__main__.py": "print('hi')\n"}, prefix=prefix)
        with open_archive(path) as archive:
            archive.write_bytes("extra.txt", b"x")

        assert path.read_bytes().startswith(prefix)
        assert read_zip(path) == {"__main__.py": b"print('hi')\n", "extra.txt": b"x"}

    def test_overwrite_keeps_entry_metadata(self, tmp_path):
        path = tmp_path / "meta.zip"
        info = zipfile.ZipInfo("data.bin", date_time=(2001, 2, 3, 4, 5, 6))
        info.compress_type = zipfile.ZIP_STORED
        info.external_attr = 0o100755 << 16
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr(info, b"old")

        with open_archive(path) as archive:
            archive.write_bytes("data.bin", b"new")

        with zipfile.ZipFile(path) as zf:
            written = zf.getinfo("data.bin")
            assert zf.read(written) == b"new"
        assert written.compress_type == zipfile.ZIP_STORED
        assert written.external_attr == 0o100755 << 16
        assert written.date_time == (2001, 2, 3, 4, 5, 6)

    def test_extra_field_survives_rewrite(self, tmp_path):
        path = tmp_path / "app.jar"
        marker = zipfile.ZipInfo("META-INF/")
        marker.extra = b"\xfe\xca\x00\x00"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr(marker, b"")
            zf.writestr("META-INF/MANIFEST.MF", "Manifest-Version: 1.0\r\n\r\n")

        with open_archive(path) as archive:
            archive.write_bytes("extra.txt", b"x")

        with zipfile.ZipFile(path) as zf:
            assert zf.getinfo("META-INF/").extra == b"\xfe\xca\x00\x00"

    def test_directories_follow_writes_and_deletes(self, sample):
        with open_archive(sample) as archive:
            archive.write_bytes("new/deep/file.txt", b"x")
            assert archive.is_dir("new")
            assert archive.is_dir("new/deep")
            assert archive.delete("new/deep/file.txt")
            assert not archive.is_dir("new")
            archive.make_dir("solo")
            assert archive.delete("solo/")
            assert not archive.exists("solo")
            assert archive.delete("app/Main.class")
            assert archive.delete("app")
            assert not archive.is_dir("app")
            assert archive.is_dir("lib/util")

    @pytest.mark.skipif(os.name != "posix", reason="POSIX file modes")
    def test_preserves_file_mode(self, sample):
        os.chmod(sample, 0o755)
        with open_archive(sample) as archive:
            archive.write_bytes("extra.txt", b"x")
        assert stat.S_IMODE(os.stat(sample).st_mode) == 0o755

    def test_failed_flush_leaves_original_untouched(self, sample, monkeypatch):
        before = sample.read_bytes()
        archive = open_archive(sample)
        archive.write_bytes("extra.txt", b"x")

        def fail(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("agent_embedder.archive.os.replace", fail)
        with pytest.raises(ArchiveIOError, match="disk full"):
            archive.close()

        assert sample.read_bytes() == before
        assert [p.name for p in sample.parent.iterdir()] == [sample.name]


class TestNestedArchives:
    @pytest.fixture
    def outer(self, tmp_path):
        return build_zip(tmp_path / "outer.zip", {
            "META-INF/MANIFEST.MF": "Main-Class: app.Main\r\n\r\n",
            "BOOT-INF/lib/inner.jar": zip_bytes({"inner/A.class": b"a"}),
        })

    def test_reads_nested_archive(self, outer):
        with open_archive(outer) as archive:
            with open_archive(archive.path("BOOT-INF/lib/inner.jar")) as inner:
                assert inner.read_bytes("inner/A.class") == b"a"
            assert not archive.modified

    def test_writes_nested_changes_back_into_parent(self, outer):
        with open_archive(outer) as archive:
            with open_archive(archive.path("BOOT-INF/lib/inner.jar")) as inner:
                inner.write_bytes("inner/B.class", b"b")
                temp_dir = inner.file_path.parent
            assert not temp_dir.exists()
            assert archive.modified

        nested = outer.parent / "check.jar"
        nested.write_bytes(read_zip(outer)["BOOT-INF/lib/inner.jar"])
        assert read_zip(nested) == {"inner/A.class": b"a", "inner/B.class": b"b"}

    def test_stored_nested_archive_stays_stored(self, tmp_path):
        outer = tmp_path / "boot.jar"
        nested = zipfile.ZipInfo("BOOT-INF/lib/inner.jar", date_time=(2020, 1, 1, 0, 0, 0))
        nested.compress_type = zipfile.ZIP_STORED
        with zipfile.ZipFile(outer, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("META-INF/MANIFEST.MF", "Main-Class: app.Main\r\n\r\n")
            zf.writestr(nested, zip_bytes({"inner/A.class": b"a"}))

        with open_archive(outer) as archive:
            with open_archive(archive.path("BOOT-INF/lib/inner.jar")) as inner:
                inner.write_bytes("inner/B.class", b"b")

        with zipfile.ZipFile(outer) as zf:
            written = zf.getinfo("BOOT-INF/lib/inner.jar")
        assert written.compress_type == zipfile.ZIP_STORED
        assert written.date_time == (2020, 1, 1, 0, 0, 0)

    def test_nested_failure_discards_and_cleans_up(self, outer):
        with open_archive(outer) as archive:
            before = archive.read_bytes("BOOT-INF/lib/inner.jar")
            with pytest.raises(RuntimeError):
                with open_archive(archive.path("BOOT-INF/lib/inner.jar")) as inner:
                    inner.write_bytes("inner/B.class", b"b")
                    temp_dir = inner.file_path.parent
                    raise RuntimeError("merge failed")
            assert not temp_dir.exists()
            assert archive.read_bytes("BOOT-INF/lib/inner.jar") == before

    def test_missing_nested_archive_returns_none(self, outer):
        with open_archive(outer) as archive:
            assert open_archive(archive.path("BOOT-INF/lib/missing.jar")) is None

    def test_create_nested_archive(self, outer):
        with open_archive(outer) as archive:
            with open_archive(archive.path("lib/created.zip"), create=True) as created:
                assert created.entries() == []
            assert archive.is_file("lib/created.zip")

    def test_archive_path_helpers(self, outer):
        with open_archive(outer) as archive:
            location = archive.path("/BOOT-INF/lib/inner.jar")
            assert location == ArchivePath(archive, "BOOT-INF/lib/inner.jar")
            assert location.file_name == "inner.jar"
            assert location.exists()
            assert str(location).endswith("outer.zip!/BOOT-INF/lib/inner.jar")


def test_normalize_entry_name():
    assert normalize_entry_name("/a/b") == "a/b"
    assert normalize_entry_name("a\\b\\c.jar") == "a/b/c.jar"
    assert normalize_entry_name("./lib/x.jar") == "lib/x.jar"
