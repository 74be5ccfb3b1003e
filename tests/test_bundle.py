"""Tests for bundle packaging and reading."""

from __future__ import annotations

import json
import tarfile
from datetime import datetime
from io import BytesIO
from pathlib import Path

import pytest

from loopd.bundle import (
    build_bundle,
    bundle_filename,
    load_document,
    read_bundle,
    write_bundle,
)
from loopd.exceptions import BundleError
from loopd.schemas import ExportResult
from loopd.schemas.images import ImageRecord
from loopd.schemas.nodes import DocNode, paragraph, root, text

AFTERNOON = datetime(2024, 5, 1, 15, 7)


def _result(**kwargs) -> ExportResult:
    defaults = {
        "title": "Sprint notes",
        "markdown": "# Sprint notes\n\n![chart](images/image_0.png)\n",
        "raw_tree": root([DocNode(type="heading", depth=1, children=[text("Sprint notes")])]),
        "automation_types": {"Paragraph": {"count": 1, "samples": []}},
    }
    defaults.update(kwargs)
    return ExportResult(**defaults)


def _files(data: bytes) -> list[str]:
    with tarfile.open(fileobj=BytesIO(data)) as tar:
        return [member.name for member in tar.getmembers() if member.isfile()]


def _tar(members: dict[str, bytes]) -> bytes:
    buffer = BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, BytesIO(data))
    return buffer.getvalue()


class TestBundleFilename:
    """Tests for bundle_filename function."""

    def test_title_and_timestamp(self) -> None:
        """Title followed by a 12-hour timestamp."""
        assert bundle_filename("Sprint notes", AFTERNOON) == "Sprint notes - 2024-05-01 at 3.07 PM.tar"

    def test_midnight_is_twelve_am(self) -> None:
        """Hour zero prints as 12 AM."""
        assert bundle_filename("x", datetime(2024, 5, 1, 0, 5)).endswith("at 12.05 AM.tar")

    def test_forbidden_characters_removed(self) -> None:
        """Path and shell-hostile characters are dropped and spaces collapsed."""
        assert bundle_filename('Q3 / Q4: "plan"?', AFTERNOON) == "Q3 Q4 plan - 2024-05-01 at 3.07 PM.tar"

    def test_long_title_truncated(self) -> None:
        """Titles are cut to sixty characters."""
        name = bundle_filename("a" * 100, AFTERNOON)

        assert name == "a" * 60 + " - 2024-05-01 at 3.07 PM.tar"

    @pytest.mark.parametrize("title", [None, "", "  ...  ", "???"])
    def test_fallback_name(self, title: str | None) -> None:
        """Titles that clean down to nothing use the generic name."""
        assert bundle_filename(title, AFTERNOON) == "Loop Export 2024-05-01 at 3.07 PM.tar"


class TestBuildBundle:
    """Tests for build_bundle function."""

    def test_members(self) -> None:
        """Markdown first, then debug tree, census and images."""
        image = ImageRecord(source_url="https://x/chart.png", filename="image_0.png", data=b"png")

        data = build_bundle(_result(), [image])

        assert _files(data) == [
            "content.md",
            "debug-tree.json",
            "automation-types.json",
            "images/image_0.png",
        ]

    def test_debug_tree_is_raw_tree_json(self) -> None:
        """The debug member holds the tree without unset fields."""
        data = build_bundle(_result())

        with tarfile.open(fileobj=BytesIO(data)) as tar:
            tree = json.loads(tar.extractfile("debug-tree.json").read())

        assert tree["type"] == "root"
        assert tree["children"][0] == {
            "type": "heading",
            "depth": 1,
            "children": [{"type": "text", "value": "Sprint notes", "children": []}],
        }

    def test_optional_members_left_out(self) -> None:
        """No debug tree when disabled, no census when empty, no images dir without images."""
        data = build_bundle(_result(automation_types={}), include_debug_tree=False)

        assert _files(data) == ["content.md"]
        with tarfile.open(fileobj=BytesIO(data)) as tar:
            assert tar.getnames() == ["content.md"]


class TestReadBundle:
    """Tests for read_bundle and load_document."""

    def test_reads_markdown_and_images(self) -> None:
        """Bundles written by build_bundle read back in memory."""
        image = ImageRecord(source_url="https://x/chart.png", filename="image_0.png", data=b"png")
        bundle = read_bundle(build_bundle(_result(), [image]))

        assert bundle.markdown == "# Sprint notes\n\n![chart](images/image_0.png)\n"
        assert bundle.images == {"image_0.png": b"png"}

    def test_ignores_unsafe_member_names(self) -> None:
        """Absolute paths and parent traversal are skipped."""
        data = _tar(
            {
                "./content.md": b"hello\n",
                "../content.md": b"evil\n",
                "/etc/passwd": b"root",
                "images/../../x.png": b"evil",
                "images/a.png": b"a",
            }
        )

        bundle = read_bundle(data)

        assert bundle.markdown == "hello\n"
        assert bundle.images == {"a.png": b"a"}

    def test_missing_content(self) -> None:
        """A bundle without content.md is rejected."""
        with pytest.raises(BundleError, match="no content.md"):
            read_bundle(_tar({"images/a.png": b"a"}))

    def test_not_a_tar(self) -> None:
        """Garbage input is a BundleError, not a tarfile error."""
        with pytest.raises(BundleError, match="Unable to read bundle"):
            read_bundle(b"definitely not a tar archive" * 40)

    def test_load_document_from_path(self, tmp_path: Path) -> None:
        """A bundle on disk parses back into a document tree."""
        path = write_bundle(build_bundle(_result(markdown="Hello **world**\n")), tmp_path / "out", "a.tar")

        tree = load_document(path)

        assert path.exists()
        assert tree == root(
            [paragraph([text("Hello "), DocNode(type="strong", children=[text("world")])])]
        )
