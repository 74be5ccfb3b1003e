"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from loopd.__main__ import main, parse_args
from loopd.bundle import build_bundle, read_bundle, write_bundle
from loopd.schemas import ExportResult
from loopd.schemas.images import ImageRecord


class TestParseArgs:
    """Tests for parse_args function."""

    def test_export_defaults(self) -> None:
        """Export runs headed, expands and downloads images by default."""
        args = parse_args(["export", "https://loop.cloud.microsoft/p/1"])

        assert args.command == "export"
        assert args.wait == 5.0
        assert not args.headless
        assert not args.no_expand
        assert not args.no_images
        assert args.max_operations is None

    def test_subcommand_required(self) -> None:
        """Running without a subcommand is a usage error."""
        with pytest.raises(SystemExit):
            parse_args([])


class TestMain:
    """Tests for main function."""

    def test_convert_writes_bundle(self, loop_html, tmp_path: Path) -> None:
        """A saved snapshot is converted into a bundle in the output directory."""
        snapshot = tmp_path / "page.html"
        snapshot.write_text(loop_html("<h1>Plan</h1><p>Ship it</p>"), encoding="utf-8")
        output = tmp_path / "out"

        exit_code = main(["convert", str(snapshot), "--output", str(output), "--no-images"])

        assert exit_code == 0
        bundles = list(output.glob("*.tar"))
        assert len(bundles) == 1
        assert read_bundle(bundles[0]).markdown == "# Plan\n\nShip it\n"

    def test_inspect_reports_missing_images(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Inspect lists node counts and whether each image is bundled."""
        result = ExportResult(
            markdown="# T\n\n![a](images/image_0.png)\n\n![b](images/image_1.png)\n",
        )
        image = ImageRecord(source_url="https://x/a.png", filename="image_0.png", data=b"a")
        path = write_bundle(build_bundle(result, [image]), tmp_path, "t.tar")

        exit_code = main(["inspect", str(path)])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "heading: 1" in out
        assert "images/image_0.png: bundled" in out
        assert "images/image_1.png: missing" in out

    def test_errors_return_nonzero(self, tmp_path: Path) -> None:
        """Library errors are logged and turned into exit code 1."""
        path = tmp_path / "broken.tar"
        path.write_bytes(b"not a tar archive" * 64)

        assert main(["inspect", str(path)]) == 1
