import json
from pathlib import Path

import pytest

from skipper_chat.config import ClientConfig, Config, load_config, save_config


class TestLoadConfig:
    def test_defaults_when_file_missing(self, tmp_path):
        cfg = load_config(tmp_path / "missing.json", env={})
        assert cfg.server.port == 3031
        assert cfg.server.host == "127.0.0.1"
        assert cfg.client.ack_timeout == 3.0
        assert cfg.client.max_reconnect_attempts == 10
        assert cfg.client.pong_timeout == 10.0

    def test_file_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server": {"port": 4000}, "client": {"poll_interval": 2}}))
        cfg = load_config(path, env={})
        assert cfg.server.port == 4000
        assert cfg.client.poll_interval == 2.0

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server": {"port": 4000}}))
        cfg = load_config(path, env={
            "SKIPPER_PORT": "5000",
            "SKIPPER_DATA_DIR": str(tmp_path / "data"),
            "SKIPPER_ALLOWED_ORIGINS": "http://a.test, http://b.test",
            "SKIPPER_BASE_URL": "http://relay.test:5000",
        })
        assert cfg.server.port == 5000
        assert cfg.server.data_dir == tmp_path / "data"
        assert cfg.server.allowed_origins == ["http://a.test", "http://b.test"]
        assert cfg.client.base_url == "http://relay.test:5000"

    def test_invalid_values_fall_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server": {"port": "not a port"}}))
        assert load_config(path, env={}) == Config()

    def test_one_bad_value_keeps_the_rest(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"server": {"host": "0.0.0.0"}, "client": {"poll_interval": 2}}))
        cfg = load_config(path, env={
            "SKIPPER_PORT": "not a port",
            "SKIPPER_DATA_DIR": str(tmp_path / "data"),
        })
        assert cfg.server.port == 3031
        assert cfg.server.data_dir == tmp_path / "data"
        assert cfg.server.host == "0.0.0.0"
        assert cfg.client.poll_interval == 2.0
        assert "server.port" in caplog.text

    def test_section_check_failure_resets_only_that_section(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "server": {"port": 4000},
            "client": {"reconnect_base": 0.1, "reconnect_jitter": 0.5},
        }))
        cfg = load_config(path, env={})
        assert cfg.server.port == 4000
        assert cfg.client == ClientConfig()

    def test_unreadable_json_is_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{oops")
        assert load_config(path, env={}).server.port == 3031


def test_save_and_reload(tmp_path):
    path = tmp_path / "nested" / "config.json"
    cfg = Config()
    cfg.client.base_url = "http://relay.test"
    save_config(cfg, path)
    assert load_config(path, env={}).client.base_url == "http://relay.test"


def test_jitter_may_not_exceed_base():
    with pytest.raises(ValueError):
        ClientConfig(reconnect_base=0.1, reconnect_jitter=0.5)
    assert ClientConfig(reconnect_base=0.1, reconnect_jitter=0.1).reconnect_jitter == 0.1


def test_data_dir_is_a_path():
    assert isinstance(Config().server.data_dir, Path)


def test_kanban_origins_allowed_by_default():
    origins = Config().server.cors_origins()
    assert "http://localhost:3030" in origins
    assert "http://127.0.0.1:3030" in origins


def test_tailscale_domain_from_environment(tmp_path):
    cfg = load_config(tmp_path / "missing.json", env={"SKIPPER_TAILSCALE_DOMAIN": "skipper.tail1234.ts.net"})
    origins = cfg.server.cors_origins()
    assert "https://skipper.tail1234.ts.net" in origins
    assert "http://skipper.tail1234.ts.net" in origins
    assert cfg.server.allowed_origins == Config().server.allowed_origins
