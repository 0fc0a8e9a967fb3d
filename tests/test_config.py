import json

import pytest

from sheet_scan.config import ScanSettings, ConfigError, load_settings, save_settings


def test_defaults_without_file_or_env(tmp_path):
    settings = load_settings(tmp_path / "settings.json", environ={})

    assert settings.max_images_per_request == 50
    assert settings.allowed_mime_types == ("image/jpeg", "image/png", "image/webp")
    assert settings.image_quality == 85


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"image_quality": 70, "max_workers": 2, "unknown_key": 1}))
    environ = {
        "SHEETSCAN_STORAGE_ROOT": str(tmp_path / "store"),
        "SHEETSCAN_MAX_IMAGES": "12",
        "SHEETSCAN_ALLOWED_MIME_TYPES": "image/jpeg, image/png",
        "SHEETSCAN_IMAGE_QUALITY": "90",
    }

    settings = load_settings(path, environ=environ)

    assert settings.storage_root == str(tmp_path / "store")
    assert settings.max_images_per_request == 12
    assert settings.allowed_mime_types == ("image/jpeg", "image/png")
    assert settings.image_quality == 90
    assert settings.max_workers == 2


def test_unparseable_env_value_is_an_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "settings.json", environ={"SHEETSCAN_MAX_WORKERS": "four"})


def test_out_of_range_value_is_an_error():
    with pytest.raises(ConfigError):
        ScanSettings(image_quality=0)


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    assert load_settings(path, environ={}).image_quality == 85


def test_saved_settings_load_back(tmp_path):
    path = tmp_path / "settings.json"
    save_settings(ScanSettings(storage_root="/srv/scans", max_workers=3), path)

    loaded = load_settings(path, environ={})

    assert loaded.storage_root == "/srv/scans"
    assert loaded.max_workers == 3
