import json

import pytest
import yaml

from cbdcp.loader import SimpleConsumer, format_configuration, load_config
from cbdcp.models import ListenerContext, Offset


CONFIG_WITH_ENV = """
hosts: ["localhost:8091"]
username: ${DCP_USERNAME}
password: ${DCP_PASSWORD}
bucketName: ${DCP_BUCKET_NAME}
"""

PASSWORD = "password"
MASKED = "*****"


def _write(tmp_path, content):
    path = tmp_path / "dcpConfig.yaml"
    path.write_text(content, encoding="utf-8")
    return path


def test_config_with_env_variables(tmp_path, monkeypatch):
    password = PASSWORD
    monkeypatch.setenv("DCP_USERNAME", "envUser")
    monkeypatch.setenv("DCP_PASSWORD", password)
    monkeypatch.setenv("DCP_BUCKET_NAME", "envBucket")

    config = load_config(_write(tmp_path, CONFIG_WITH_ENV))

    assert config["username"] == "envUser"
    assert config["password"] == password
    assert config["bucketName"] == "envBucket"
    assert config["hosts"] == ["localhost:8091"]


def test_unset_env_variable_is_left_in_place(tmp_path, monkeypatch):
    monkeypatch.delenv("DCP_MISSING_NAME", raising=False)
    config = load_config(_write(tmp_path, "bucketName: ${DCP_MISSING_NAME}\n"))
    assert config["bucketName"] == "${DCP_MISSING_NAME}"


def test_empty_file_gives_empty_config(tmp_path):
    assert load_config(_write(tmp_path, "")) == {}


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yml")


def test_invalid_yaml_raises(tmp_path):
    with pytest.raises(yaml.YAMLError):
        load_config(_write(tmp_path, "hosts: [unclosed\n"))


def test_non_mapping_raises(tmp_path):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "- a\n- b\n"))


def test_format_configuration_masks_password_and_keeps_original():
    password = PASSWORD
    config = {"username": "user", "password": password, "bucketName": "dcp-test"}
    text = format_configuration(config)
    assert json.loads(text) == {
        "username": "user",
        "password": MASKED,
        "bucketName": "dcp-test",
    }
    assert " " not in text
    assert config["password"] == password


def test_simple_consumer_forwards_events_and_keeps_offsets():
    received = []
    consumer = SimpleConsumer(received.append)
    ctx = ListenerContext(commit=lambda: None, event="event", ack=lambda: None)
    consumer.consume_event(ctx)
    offset = Offset(seq_no=9)
    consumer.track_offset(3, offset)
    assert received == [ctx]
    assert consumer.offsets == {3: offset}