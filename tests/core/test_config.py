import json

import pytest

from prsync.core.config import (
    ConfigManager,
    ConfigurationError,
    Direction,
    RemoteEndpoint,
    TransferConfig,
    UserDefaults,
)


def test_creates_default_config(tmp_path):
    manager = ConfigManager(tmp_path / "prsync")

    assert manager.config_file.exists()
    assert manager.defaults == UserDefaults()
    assert json.loads(manager.config_file.read_text())["batch_size"] == 10
    assert manager.log_dir == tmp_path / "prsync" / "logs"


def test_loads_saved_values(tmp_path):
    (tmp_path / "config.json").write_text(
        json.dumps({"parallel": 16, "total_bw": 2000, "unknown": True})
    )

    manager = ConfigManager(tmp_path)

    assert manager.defaults.parallel == 16
    assert manager.defaults.total_bw == 2000
    assert manager.defaults.batch_size == 10


def test_corrupt_config_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.json").write_text("{not json")

    manager = ConfigManager(tmp_path)

    assert manager.defaults == UserDefaults()


def test_update_persists(tmp_path):
    ConfigManager(tmp_path).update(batch_size=25, log_dir=str(tmp_path / "runs"))

    manager = ConfigManager(tmp_path)
    assert manager.defaults.batch_size == 25
    assert manager.log_dir == tmp_path / "runs"


def test_update_unknown_key(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigManager(tmp_path).update(colour="blue")


def test_transfer_config_sides():
    config = TransferConfig(
        options=(),
        direction=Direction.DOWNLOAD,
        endpoint=RemoteEndpoint(host="dtn", path="/data/"),
        local_path="copy/",
        workers=2,
    )

    assert config.source == "dtn:/data/"
    assert config.destination == "copy/"
    assert config.sides(RemoteEndpoint(host="dtn3", path="/data/")) == ("dtn3:/data/", "copy/")
