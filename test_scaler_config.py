import logging

import pytest

import logging_utils
from scaler_config import load_settings_file
from scaling_errors import ValidationError


def test_settings_file_normalizes_option_names(tmp_path):
    path = tmp_path / "scaler.yaml"
    path.write_text("cpu-threshold: 70\nmemory_threshold: 60\nprometheus-url: http://prom:9090\ndry-run: true\n")

    settings = load_settings_file(str(path))

    assert settings == {
        "cpu_threshold": 70,
        "memory_threshold": 60,
        "prometheus_url": "http://prom:9090",
        "dry_run": True,
    }


def test_empty_settings_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_settings_file(str(path)) == {}


@pytest.mark.parametrize("content", [
    "replicas: 3\n",
    "- min\n- max\n",
    "min: [1, 2\n",
])
def test_invalid_settings_files(tmp_path, content):
    path = tmp_path / "bad.yaml"
    path.write_text(content)

    with pytest.raises(ValidationError):
        load_settings_file(str(path))


def test_missing_settings_file(tmp_path):
    with pytest.raises(ValidationError):
        load_settings_file(str(tmp_path / "missing.yaml"))


def test_setup_logging_appends_to_log_file(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_utils, "_configured", False)
    log_file = tmp_path / "logs" / "scale.log"
    log_file.parent.mkdir()
    log_file.write_text("previous run\n")
    root = logging.getLogger()
    before = list(root.handlers)

    try:
        logging_utils.setup_logging(logging.INFO, str(log_file))
        logging.getLogger("scaler.test").info("[DRY-RUN] Would scale deployment 'web'")
        for handler in root.handlers:
            handler.flush()

        content = log_file.read_text()
        assert content.startswith("previous run\n")
        assert "INFO - [DRY-RUN] Would scale deployment 'web'" in content
    finally:
        for handler in root.handlers[:]:
            if handler not in before:
                root.removeHandler(handler)
                handler.close()
