"""
Manifest loading tests.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from quadstack.errors import DeploymentError  # noqa: E402
from quadstack.manifest import iter_manifest_entries, load_manifest, parse_manifest  # noqa: E402


def _response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    response.raise_for_status.return_value = None
    return response


class TestManifestEntries:
    def test_comments_blank_lines_and_whitespace(self):
        text = "# header\n\n a.container  b.container # trailing\r\nc.container|gw\n"

        assert list(iter_manifest_entries(text)) == [
            ("a.container", ""),
            ("b.container", ""),
            ("c.container", "gw"),
        ]

    def test_empty_locator_is_skipped(self):
        assert list(iter_manifest_entries("|label other.container")) == [("other.container", "")]


class TestParseManifest:
    def test_local_entries_resolve_and_normalize(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "postgresql.container").write_text("[Container]\n")
        (tmp_path / "gateway.tmpl").write_text("[Container]\n")

        descriptors = parse_manifest(
            "./postgresql.container gateway.tmpl|gw",
            tmp_path,
        )

        assert [d.install_name for d in descriptors] == ["postgresql.container", "gw.container"]
        assert descriptors[0].path == (tmp_path / "postgresql.container").resolve()
        assert descriptors[1].display_label == "gw.container  (from local: gateway.tmpl)"
        assert descriptors[0].short_name() == "postgresql"

    def test_missing_local_entry_is_skipped(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "a.container").write_text("")

        descriptors = parse_manifest("a.container missing.container", tmp_path)

        assert [d.install_name for d in descriptors] == ["a.container"]

    def test_remote_entries_are_cached_in_workdir(self, tmp_path):
        with patch("quadstack.manifest.requests.get", return_value=_response("[Container]\nImage=x\n")) as mock_get:
            descriptors = parse_manifest(
                "https://example.com/units/pwpush.container https://example.com/units/app|web",
                tmp_path,
            )

        assert mock_get.call_count == 2
        assert descriptors[0].path == tmp_path / "01_pwpush.container"
        assert descriptors[0].path.read_text() == "[Container]\nImage=x\n"
        assert descriptors[1].install_name == "web.container"
        assert descriptors[1].path == tmp_path / "02_app"
        assert descriptors[1].source == "https://example.com/units/app"

    def test_remote_entry_download_failure_is_fatal(self, tmp_path):
        with patch("quadstack.manifest.requests.get", side_effect=requests.ConnectionError("boom")):
            with pytest.raises(DeploymentError, match="Failed to download"):
                parse_manifest("https://example.com/a.container", tmp_path)


class TestLoadManifest:
    def test_missing_manifest_is_fatal(self, tmp_path):
        with pytest.raises(DeploymentError, match="Manifest not found"):
            load_manifest(str(tmp_path / "nope.txt"), tmp_path)

    def test_empty_manifest_is_fatal(self, tmp_path):
        manifest = tmp_path / "manifest.txt"
        manifest.write_text("# nothing here\n\n")

        with pytest.raises(DeploymentError, match="No valid .container entries"):
            load_manifest(str(manifest), tmp_path)

    def test_remote_manifest_is_fetched(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "a.container").write_text("")

        with patch("quadstack.manifest.requests.get", return_value=_response("a.container\n")):
            descriptors = load_manifest("https://example.com/manifest.txt", tmp_path)

        assert [d.install_name for d in descriptors] == ["a.container"]

    def test_undecodable_manifest_is_fatal(self, tmp_path):
        manifest = tmp_path / "manifest.txt"
        manifest.write_bytes(b"a.container\n\xff\xfe\n")

        with pytest.raises(DeploymentError, match="Cannot read"):
            load_manifest(str(manifest), tmp_path)
