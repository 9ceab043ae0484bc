"""Tests for batch intake."""
import asyncio
from pathlib import Path

import pytest

from gallery_uploader.errors import NoFilesFound
from gallery_uploader.models import FileDescriptor
from gallery_uploader.orchestrator.file_collector import FileCollector, PathEntry, guess_mime_type


@pytest.fixture
def property_folder(tmp_path):
    folder = tmp_path / "Villa Seeblick"
    (folder / "garden").mkdir(parents=True)
    (folder / "b_living.jpg").write_bytes(b"b")
    (folder / "a_front.png").write_bytes(b"a")
    (folder / "notes.txt").write_text("not an image")
    (folder / "garden" / "pool.jpg").write_bytes(b"pool")
    return folder


class FakeEntry:
    """In-memory dropped entry with an optional delay to shuffle completion order."""

    def __init__(self, name, children=None, mime_type="image/jpeg", delay=0.0):
        self.name = name
        self._children = children
        self._mime_type = mime_type
        self._delay = delay

    @property
    def is_file(self):
        return self._children is None

    @property
    def is_directory(self):
        return self._children is not None

    async def file(self):
        await asyncio.sleep(self._delay)
        return FileDescriptor.from_bytes(self.name, b"data", self._mime_type)

    async def children(self):
        await asyncio.sleep(self._delay)
        return list(self._children)


class TestGuessMimeType:
    def test_known_extensions(self):
        assert guess_mime_type("photo.jpg") == "image/jpeg"
        assert guess_mime_type("photo.png") == "image/png"

    def test_unknown_extension(self):
        assert guess_mime_type("blob.unknownext") == "application/octet-stream"


class TestFromFiles:
    def test_collects_in_selection_order(self, property_folder):
        collected = FileCollector.from_files([
            property_folder / "b_living.jpg",
            property_folder / "notes.txt",
            property_folder / "a_front.png",
        ])

        assert [f.name for f in collected.files] == ["b_living.jpg", "notes.txt", "a_front.png"]
        assert collected.files[1].mime_type == "text/plain"
        assert collected.label is None

    def test_skips_directories(self, property_folder):
        collected = FileCollector.from_files([property_folder / "garden", property_folder / "a_front.png"])
        assert len(collected) == 1

    def test_empty_selection(self):
        with pytest.raises(NoFilesFound, match="No files selected"):
            FileCollector.from_files([])


class TestFromFolder:
    def test_recursive_images_only(self, property_folder):
        collected = FileCollector.from_folder(property_folder)

        assert [f.relative_path for f in collected.files] == [
            "Villa Seeblick/a_front.png",
            "Villa Seeblick/b_living.jpg",
            "Villa Seeblick/garden/pool.jpg",
        ]
        assert collected.label == "Villa Seeblick"
        assert collected.files[2].size == 4

    def test_current_directory_label(self, property_folder, monkeypatch):
        monkeypatch.chdir(property_folder)

        collected = FileCollector.from_folder(Path("."))

        assert collected.label == "Villa Seeblick"
        assert collected.files[0].relative_path == "Villa Seeblick/a_front.png"
        assert collected.files[2].relative_path == "Villa Seeblick/garden/pool.jpg"

    def test_folder_without_images(self, tmp_path):
        folder = tmp_path / "docs"
        folder.mkdir()
        (folder / "readme.txt").write_text("hi")

        with pytest.raises(NoFilesFound, match="contains no image files"):
            FileCollector.from_folder(folder)


class TestFromEntries:
    @pytest.mark.asyncio
    async def test_order_is_kept_despite_completion_order(self):
        entries = [
            FakeEntry("first.jpg", delay=0.03),
            FakeEntry("album", children=[
                FakeEntry("slow.jpg", delay=0.02),
                FakeEntry("fast.jpg"),
                FakeEntry("readme.txt", mime_type="text/plain"),
            ]),
            FakeEntry("last.png", mime_type="image/png"),
        ]

        collected = await FileCollector().from_entries(entries)

        assert [f.name for f in collected.files] == ["first.jpg", "slow.jpg", "fast.jpg", "last.png"]
        assert collected.label is None

    @pytest.mark.asyncio
    async def test_label_from_dropped_folder(self):
        entries = [FakeEntry("Chalet", children=[FakeEntry("1.jpg"), FakeEntry("2.jpg")])]

        collected = await FileCollector().from_entries(entries)

        assert collected.label == "Chalet"
        assert len(collected) == 2

    @pytest.mark.asyncio
    async def test_no_images_dropped(self):
        entries = [FakeEntry("a.txt", mime_type="text/plain"), FakeEntry("empty", children=[])]

        with pytest.raises(NoFilesFound, match="no image files"):
            await FileCollector().from_entries(entries)

    @pytest.mark.asyncio
    async def test_path_entries(self, property_folder):
        collected = await FileCollector().from_entries([PathEntry(property_folder)])

        assert [f.name for f in collected.files] == ["a_front.png", "b_living.jpg", "pool.jpg"]
        assert collected.label == "Villa Seeblick"
