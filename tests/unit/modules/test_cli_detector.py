"""Tests for hypervisor CLI detection."""

from pathlib import Path
from unittest.mock import patch

from hvsession.modules.cli_detector import HypervisorDetector


class TestFindBinary:
    """Unit tests for binary lookup."""

    def test_found_on_path(self):
        with patch("shutil.which", return_value="/usr/bin/VBoxManage"):
            assert HypervisorDetector().find_binary() == Path("/usr/bin/VBoxManage")

    def test_known_location_fallback(self, tmp_path):
        binary = tmp_path / "VBoxManage"
        binary.touch()

        with (
            patch("shutil.which", return_value=None),
            patch("platform.system", return_value="Linux"),
            patch.dict(HypervisorDetector.KNOWN_LOCATIONS, {"Linux": [tmp_path / "nope", binary]}),
        ):
            assert HypervisorDetector().find_binary() == binary

    def test_not_found(self):
        with (
            patch("shutil.which", return_value=None),
            patch("platform.system", return_value="Plan9"),
        ):
            detector = HypervisorDetector()
            assert detector.find_binary() is None
            assert detector.is_available() is False

    def test_explicit_path_exists(self, tmp_path):
        binary = tmp_path / "VBoxManage"
        binary.touch()

        with patch("shutil.which") as mock_which:
            assert HypervisorDetector(str(binary)).find_binary() == binary
        mock_which.assert_not_called()

    def test_explicit_path_missing(self, tmp_path):
        detector = HypervisorDetector(str(tmp_path / "VBoxManage"))
        assert detector.find_binary() is None

    def test_relative_path_not_searched_on_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "VBoxManage").touch()

        assert HypervisorDetector("bin/VBoxManage").is_available() is True
