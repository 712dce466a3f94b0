from __future__ import annotations

import json
from urllib.parse import urlparse

import pytest

from config import Config, SecurityKeys, Timing
from errors import ConfigError


def test_defaults() -> None:
    config = Config()

    assert config.server_url == "ws://localhost:3000"
    assert config.web_port == 8099
    assert config.timing.settle_delay_sec == 5.0
    assert config.timing.ready_timeout_sec == 60.0
    assert config.clears_before_set(8) is False


def test_web_port_does_not_collide_with_server() -> None:
    config = Config()

    assert urlparse(config.server_url).port != config.web_port


def test_save_and_load(tmp_path) -> None:
    config = Config(data_dir=str(tmp_path))
    config.server_url = "ws://hub.local:3000"
    config.clear_before_set = [8]
    config.timing.settle_delay_sec = 2.5
    config.save()

    loaded = Config.load(config.config_file)

    assert loaded.server_url == "ws://hub.local:3000"
    assert loaded.clears_before_set(8) is True
    assert loaded.timing.settle_delay_sec == 2.5
    assert loaded.data_dir == str(tmp_path)


def test_load_missing_file_gives_defaults(tmp_path) -> None:
    config = Config.load(str(tmp_path / "config.json"))

    assert config.server_url == "ws://localhost:3000"
    assert config.codes_file == str(tmp_path / "user-codes.json")


def test_load_invalid_json(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")

    with pytest.raises(ConfigError):
        Config.load(str(path))


def test_legacy_security_keys_name(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"securityKeys": {"S0_Legacy": "00" * 16}}))

    config = Config.load(str(path))

    assert config.security_keys.S0_Legacy == "00" * 16
    assert config.security_keys.configured() == ["S0_Legacy"]


@pytest.mark.parametrize("value", ["zz" * 16, "00" * 15])
def test_invalid_security_key(value: str) -> None:
    with pytest.raises(ConfigError):
        SecurityKeys.from_dict({"S2_Authenticated": value})


def test_security_keys_generated_once(tmp_path) -> None:
    config = Config(data_dir=str(tmp_path))

    generated = config.ensure_security_keys()
    keys = config.security_keys.to_dict()

    assert len(generated) == 4
    assert config.security_keys.complete
    assert all(len(bytes.fromhex(value)) == 16 for value in keys.values())
    assert len(set(keys.values())) == 4

    reloaded = Config.load(config.config_file)
    assert reloaded.ensure_security_keys() == []
    assert reloaded.security_keys.to_dict() == keys


def test_existing_keys_are_kept(tmp_path) -> None:
    config = Config(data_dir=str(tmp_path))
    config.security_keys.S0_Legacy = "AB" * 16

    assert "S0_Legacy" not in config.ensure_security_keys()
    assert config.security_keys.S0_Legacy == "AB" * 16


@pytest.mark.parametrize("url", ["ws://localhost:3000", "wss://hub.example:443"])
def test_valid_server_url(url: str) -> None:
    assert Config(server_url=url).validate_server_url() == url


@pytest.mark.parametrize("url", ["", "   ", "http://localhost:3000", "/dev/ttyUSB0", "ws://"])
def test_invalid_server_url(url: str) -> None:
    with pytest.raises(ConfigError):
        Config(server_url=url).validate_server_url()


def test_env_overrides() -> None:
    config = Config()
    config.apply_env({"ZWAVE_SERVER_URL": "ws://other:3000", "ZWAVE_LOCK_WEB_PORT": "8080"})

    assert config.server_url == "ws://other:3000"
    assert config.web_port == 8080


def test_env_invalid_port() -> None:
    with pytest.raises(ConfigError):
        Config().apply_env({"ZWAVE_LOCK_WEB_PORT": "web"})


def test_timing_from_partial_dict() -> None:
    timing = Timing.from_dict({"settle_delay_sec": 1})

    assert timing.settle_delay_sec == 1.0
    assert timing.reconnect_delay_sec == 5.0
