"""
CLI helper tests.
"""

from importlib.metadata import PackageNotFoundError
from pathlib import Path
from unittest.mock import patch

import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
import quadstack  # noqa: E402
from quadstack.cli_utils import get_cli_version, prompt_install_dir  # noqa: E402


class TestGetCliVersion:
    def test_installed_distribution(self):
        with patch("quadstack.cli_utils.package_version", return_value="1.2.3"):
            assert get_cli_version() == "1.2.3"

    def test_falls_back_to_build_version(self):
        with patch("quadstack.cli_utils.package_version", side_effect=PackageNotFoundError("quadstack")):
            assert get_cli_version() == quadstack.__version__


class TestPromptInstallDir:
    def test_empty_answer_keeps_default(self, settings):
        before = settings.install_dir

        assert prompt_install_dir(settings, prompt=lambda q: "  ") == before

    def test_answer_replaces_install_dir(self, settings, tmp_path):
        questions = []

        def prompt(question):
            questions.append(question)
            return str(tmp_path / "data")

        assert prompt_install_dir(settings, prompt=prompt) == tmp_path / "data"
        assert settings.install_dir == tmp_path / "data"
        assert questions[0].startswith("Install/data path [")
