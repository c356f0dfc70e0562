"""Unit tests for file management utilities."""

import time

import pytest

from screenrec.utils.file_manager import FileManager


@pytest.fixture
def manager(tmp_path):
    return FileManager(str(tmp_path / "recordings"))


class TestFindLatest:
    """Tests for FileManager.find_latest."""

    def test_empty_directory(self, manager):
        assert manager.find_latest() is None

    def test_newest_by_creation_time(self, manager):
        first = manager.base_directory / "temp_audio_1.wav"
        first.write_bytes(b"a")
        time.sleep(0.05)
        second = manager.base_directory / "temp_audio_2.wav"
        second.write_bytes(b"b")
        (manager.base_directory / "recording.mp4").write_bytes(b"c")

        assert manager.find_latest("temp_*.wav") == second

    def test_creates_base_directory(self, tmp_path):
        FileManager(str(tmp_path / "a" / "b"))

        assert (tmp_path / "a" / "b").is_dir()


class TestStableSize:
    """Tests for FileManager.wait_for_stable_size."""

    def test_stable_file(self, tmp_path):
        path = tmp_path / "video.mp4"
        path.write_bytes(b"\x00" * 100)
        sleeps = []

        assert FileManager.wait_for_stable_size(path, sleep=sleeps.append)
        # One sample to learn the size, then three unchanged samples
        assert len(sleeps) == 3

    def test_growing_file_times_out(self, tmp_path):
        path = tmp_path / "video.mp4"
        path.write_bytes(b"")

        def grow(interval):
            with open(path, "ab") as f:
                f.write(b"\x00")

        assert not FileManager.wait_for_stable_size(
            path, timeout=1.0, interval=0.1, sleep=grow
        )

    def test_missing_file(self, tmp_path):
        assert not FileManager.wait_for_stable_size(
            tmp_path / "missing.mp4", sleep=lambda _: None
        )


class TestFileOperations:
    """Tests for replace and delete helpers."""

    def test_temp_sibling(self, tmp_path):
        path = FileManager.temp_sibling(tmp_path / "recording.mp4")

        assert path == tmp_path / "recording.temp.mp4"

    def test_replace(self, tmp_path):
        src = tmp_path / "out.temp.mp4"
        dst = tmp_path / "out.mp4"
        src.write_bytes(b"new")
        dst.write_bytes(b"old")

        FileManager.replace(src, dst)

        assert dst.read_bytes() == b"new"
        assert not src.exists()

    def test_safe_delete(self, tmp_path):
        path = tmp_path / "x.tmp"
        path.write_bytes(b"x")

        assert FileManager.safe_delete(path)
        assert not path.exists()
        assert FileManager.safe_delete(path)

    def test_file_size_of_missing_file(self, tmp_path):
        assert FileManager.file_size(tmp_path / "missing") == 0
