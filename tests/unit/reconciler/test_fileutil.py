from pathlib import Path

import pytest

from appsd import fileutil
from appsd.errors import FileIOFailure


def test_conf_path(tmp_path):
    assert fileutil.conf_path(tmp_path, "svc-a") == tmp_path / "svc-a.conf"


def test_check_file_exists(tmp_path):
    path = tmp_path / "a.conf"
    assert not fileutil.check_file_exists(path)
    path.write_text("x", encoding="utf-8")
    assert fileutil.check_file_exists(path)


def test_check_file_exists_rejects_relative_path():
    with pytest.raises(FileIOFailure):
        fileutil.check_file_exists(Path("relative.conf"))


def test_write_file_atomic_creates_parent_and_leaves_no_temp(tmp_path):
    path = tmp_path / "nested" / "svc-a.conf"

    fileutil.write_file_atomic(path, "k=v\n")

    assert path.read_text(encoding="utf-8") == "k=v\n"
    assert [p.name for p in path.parent.iterdir()] == ["svc-a.conf"]
    assert path.stat().st_mode & 0o777 == 0o640


def test_write_file_atomic_replaces_content(tmp_path):
    path = tmp_path / "svc-a.conf"
    path.write_text("old", encoding="utf-8")

    fileutil.write_file_atomic(path, "new")

    assert fileutil.read_file(path) == "new"


def test_backup_file_uses_epoch_suffix_and_keeps_original(tmp_path):
    path = tmp_path / "svc-a.conf"
    path.write_text("old", encoding="utf-8")

    backup = fileutil.backup_file(path, now=1700000000.7)

    assert backup == tmp_path / "svc-a.conf.1700000000"
    assert backup.read_text(encoding="utf-8") == "old"
    assert path.read_text(encoding="utf-8") == "old"


def test_read_missing_file_is_file_io_failure(tmp_path):
    with pytest.raises(FileIOFailure):
        fileutil.read_file(tmp_path / "missing.conf")


def test_contents_equal():
    assert fileutil.contents_equal("", "")
    assert fileutil.contents_equal("a=1\n", "a=1\n")
    assert not fileutil.contents_equal("a=1\n", "a=1")
    assert fileutil.hash_content("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
