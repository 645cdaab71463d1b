import json
from pathlib import Path

import pytest

from shared.config import load_config, load_settings, remember_data_root
from shared.detect import guess_mimetype, validate_upload
from shared.errors import ValidationError


def test_validate_upload_accepts_known_types():
    assert validate_upload("thesis.pdf", 1024) == "application/pdf"
    assert validate_upload("notes.txt", 10) == "text/plain"
    assert guess_mimetype("chapter.DOCX").endswith("wordprocessingml.document")


@pytest.mark.parametrize("name,size,mimetype,message", [
    ("", 10, None, "No file uploaded."),
    ("thesis.pdf", 0, None, "Uploaded file is empty."),
    ("picture.png", 10, None, "Invalid file type"),
    ("thesis.pdf", 11 * 1024 * 1024, None, "File size exceeds 10MB."),
])
def test_validate_upload_rejects(name, size, mimetype, message):
    with pytest.raises(ValidationError, match=message.replace(".", r"\.")):
        validate_upload(name, size, mimetype)


def test_load_config_creates_and_resets_corrupt(tmp_path: Path):
    cfg_path = tmp_path / "cfg" / "config.json"
    cfg = load_config(cfg_path)
    assert cfg_path.exists() and cfg["poll_interval_seconds"] == 90

    cfg_path.write_text("{not json", encoding="utf-8")
    cfg2 = load_config(cfg_path)
    assert cfg_path.with_suffix(".bak").exists()
    assert cfg2["dspace"]["base_url"] == "http://localhost:8080"


def test_load_settings_merges_file_and_env(tmp_path: Path, monkeypatch):
    cfg_path = tmp_path / "config.json"
    cfg_path.write_text(json.dumps({"poll_interval_seconds": 30, "dspace": {"collection": "c-1"}}), encoding="utf-8")
    monkeypatch.setenv("DISSPORTAL_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("DSPACE_URL", "https://repo.example.edu/")
    monkeypatch.delenv("DISSPORTAL_LOG_LEVEL", raising=False)

    s = load_settings(cfg_path)
    assert s.poll_interval_seconds == 30
    assert s.data_root == tmp_path / "data"
    assert s.dspace.base_url == "https://repo.example.edu"
    assert s.dspace.collection == "c-1"
    assert s.log_level == "info"


def test_remember_data_root(tmp_path: Path):
    cfg_path = tmp_path / "config.json"
    remember_data_root(tmp_path / "elsewhere", cfg_path)
    assert load_config(cfg_path)["data_root"] == str(tmp_path / "elsewhere")
