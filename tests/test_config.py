"""Tests for loading the TOML configuration."""

from pathlib import Path

import pytest

from config import Config, ConfigurationLoadError


@pytest.mark.asyncio
async def test_empty_file_uses_defaults(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("")

    config = Config(path)
    await config.initialize()

    assert config.config_opened is True
    assert config.config == {
        "server": {"host": "localhost", "port": 5000, "max_message_size": 4096},
        "relay": {"notify_out_of_turn": False, "outbox_size": 16},
    }


@pytest.mark.asyncio
async def test_values_from_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        '[server]\n'
        'host = "0.0.0.0"\n'
        'port = 8765\n'
        '\n'
        '[relay]\n'
        'notify_out_of_turn = true\n'
    )

    config = Config(path)
    await config.initialize()

    assert config.config["server"]["host"] == "0.0.0.0"
    assert config.config["server"]["port"] == 8765
    assert config.config["server"]["max_message_size"] == 4096
    assert config.config["relay"]["notify_out_of_turn"] is True
    assert config.config["relay"]["outbox_size"] == 16


@pytest.mark.asyncio
async def test_example_config_is_valid():
    config = Config(Path(__file__).parent.parent / ".example" / "config.toml")
    await config.initialize()

    assert config.config["server"]["port"] == 5000


@pytest.mark.asyncio
async def test_missing_file(tmp_path):
    config = Config(tmp_path / "missing.toml")

    with pytest.raises(ConfigurationLoadError):
        await config.initialize()
    assert config.config_opened is False


@pytest.mark.asyncio
async def test_invalid_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[server\nport = ")

    with pytest.raises(ConfigurationLoadError):
        await Config(path).initialize()


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    '[server]\nport = 70000\n',
    '[server]\nport = "5000"\n',
    '[server]\nhost = ""\n',
    '[server]\nmax_message_size = 0\n',
    '[relay]\noutbox_size = 0\n',
    '[relay]\nnotify_out_of_turn = "yes"\n',
    '[relay]\nunknown = 1\n',
])
async def test_schema_violations(tmp_path, body):
    path = tmp_path / "config.toml"
    path.write_text(body)

    with pytest.raises(ConfigurationLoadError):
        await Config(path).initialize()
