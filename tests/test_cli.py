"""Tests for the command-line interface."""

import json
import os
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from conftest import SAMPLE_ID_TEXT

from idscan.cli import main, scan_file, sweep_temp
from idscan.utils.config import CONFIG_ENV_VAR, AppConfig, OCRConfig


@pytest.fixture(autouse=True)
def _quiet_logging():
    """Keep log records out of captured stdout."""
    with patch("idscan.cli.setup_logging"):
        yield


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a config file pointing scratch storage into tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.dump({"ocr": {"temp_dir": str(tmp_path / "scratch"), "language": "eng"}})
    )
    return path


@pytest.fixture
def image_file(tmp_path: Path, sample_png_bytes: bytes) -> Path:
    path = tmp_path / "id.png"
    path.write_bytes(sample_png_bytes)
    return path


class TestScanFile:
    """Tests for the scan_file helper."""

    @patch("idscan.ocr.tesseract_engine.pytesseract.image_to_string")
    def test_extracts_fields(
        self, mock_ocr: MagicMock, tmp_path: Path, image_file: Path
    ) -> None:
        mock_ocr.return_value = SAMPLE_ID_TEXT
        config = AppConfig(ocr=OCRConfig(temp_dir=str(tmp_path / "scratch")))

        response = scan_file(config, image_file)

        assert response.success is True
        assert response.data.idnp == "2001234567890"
        assert response.data.last_name == "POPESCU"

    @patch("idscan.ocr.tesseract_engine.pytesseract.image_to_string")
    def test_language_override(
        self, mock_ocr: MagicMock, tmp_path: Path, image_file: Path
    ) -> None:
        mock_ocr.return_value = ""
        config = AppConfig(ocr=OCRConfig(temp_dir=str(tmp_path / "scratch")))

        scan_file(config, image_file, language="ron")

        assert mock_ocr.call_args.kwargs["lang"] == "ron"
        assert config.ocr.language == "eng"


class TestSweepTemp:
    """Tests for the sweep helper."""

    def test_removes_stale_files(self, tmp_path: Path) -> None:
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        stale = scratch / "scan_1.jpg"
        stale.write_bytes(b"old")
        old = time.time() - 2 * 3600
        os.utime(stale, (old, old))

        removed = sweep_temp(AppConfig(ocr=OCRConfig(temp_dir=str(scratch))))

        assert removed == 1
        assert not stale.exists()


class TestMain:
    """Tests for argument parsing and command dispatch."""

    @patch("idscan.ocr.tesseract_engine.pytesseract.image_to_string")
    def test_scan_prints_json(
        self,
        mock_ocr: MagicMock,
        config_file: Path,
        image_file: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        mock_ocr.return_value = SAMPLE_ID_TEXT

        main(["-c", str(config_file), "scan", str(image_file)])

        body = json.loads(capsys.readouterr().out)
        assert body["success"] is True
        assert body["data"]["birth_date"] == "15.03.1990"

    @patch("idscan.ocr.tesseract_engine.pytesseract.image_to_string")
    def test_scan_writes_output_file(
        self,
        mock_ocr: MagicMock,
        tmp_path: Path,
        config_file: Path,
        image_file: Path,
    ) -> None:
        mock_ocr.return_value = SAMPLE_ID_TEXT
        output = tmp_path / "out" / "result.json"

        main(["-c", str(config_file), "scan", str(image_file), "-o", str(output)])

        assert json.loads(output.read_text())["data"]["first_name"] == "ION"

    def test_scan_missing_file_exits(
        self, tmp_path: Path, config_file: Path
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(config_file), "scan", str(tmp_path / "missing.png")])
        assert exc_info.value.code == 1

    def test_scan_failure_exits_with_code_two(
        self, tmp_path: Path, config_file: Path
    ) -> None:
        bogus = tmp_path / "bogus.png"
        bogus.write_bytes(b"not an image")

        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(config_file), "scan", str(bogus)])
        assert exc_info.value.code == 2

    def test_sweep_reports_count(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["-c", str(config_file), "sweep"])
        assert "Removed 0 stale files" in capsys.readouterr().out

    @patch("idscan.cli.consume")
    def test_consume_dispatch(self, mock_consume: MagicMock, config_file: Path) -> None:
        main(["-c", str(config_file), "consume"])
        config = mock_consume.call_args.args[0]
        assert config.ocr.temp_dir.endswith("scratch")

    @patch("idscan.cli.uvicorn.run")
    def test_serve_passes_config_path(
        self,
        mock_run: MagicMock,
        config_file: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, "unused.yaml")

        main(["-c", str(config_file), "serve", "--port", "9001"])

        mock_run.assert_called_once_with(
            "idscan.api.app:app", host="0.0.0.0", port=9001
        )
        assert os.environ[CONFIG_ENV_VAR] == str(config_file)

    def test_no_command_prints_help(
        self, config_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(config_file)])
        assert exc_info.value.code == 0
        assert "usage" in capsys.readouterr().out.lower()
