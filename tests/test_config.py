import os

import pytest

from review_stream.config import default_config, load_config
from review_stream.errors import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in ("REVIEW_API_BASE_URL", "REVIEW_UPLOAD_TIMEOUT", "REVIEW_THROTTLE_MS"):
        monkeypatch.delenv(key, raising=False)


def test_missing_file_uses_defaults(tmp_path):
    assert load_config(str(tmp_path / "missing.yaml")) == default_config()


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("api:\n  base_url: http://review.local:8000/\n  num_reviewers: 2\nsession:\n  throttle_ms: 50\n")

    config = load_config(str(path))

    assert config['api']['base_url'] == "http://review.local:8000"
    assert config['api']['num_reviewers'] == 2
    assert config['api']['review_endpoint'] == "/review"
    assert config['session']['throttle_ms'] == 50
    assert config['upload']['timeout'] == 30.0


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("api:\n  base_url: http://from-file\n")
    monkeypatch.setenv("REVIEW_API_BASE_URL", "http://from-env/")
    monkeypatch.setenv("REVIEW_THROTTLE_MS", "100")

    config = load_config(str(path))

    assert config['api']['base_url'] == "http://from-env"
    assert config['session']['throttle_ms'] == 100.0
    assert load_config(str(path), use_env=False)['api']['base_url'] == "http://from-file"


def test_dotenv_file_is_loaded(tmp_path):
    (tmp_path / ".env").write_text("REVIEW_UPLOAD_TIMEOUT=5\n")

    try:
        config = load_config()
    finally:
        # load_dotenv writes straight into os.environ
        os.environ.pop("REVIEW_UPLOAD_TIMEOUT", None)

    assert config["upload"]["timeout"] == 5.0


def test_invalid_number_in_environment(monkeypatch):
    monkeypatch.setenv("REVIEW_THROTTLE_MS", "fast")
    with pytest.raises(ConfigurationError):
        load_config()


def test_invalid_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("api: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_config(str(path))
