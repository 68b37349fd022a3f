import json

import pytest

from acp_host.config import (
    DEFAULT_LAUNCH_COMMAND,
    HostSettings,
    LaunchConfig,
    initialize_request,
    load_settings,
    save_settings,
)


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"launch_command": "  my-agent --acp --verbose  "}, "my-agent --acp --verbose"),
        ({"launch_command": "   ", "command": "gemini"}, "gemini --acp"),
        ({"command": "gemini", "args": ["--experimental-acp", "-m", "pro"]}, "gemini --experimental-acp -m pro"),
        ({"command": "gemini", "args": []}, "gemini"),
        ({"launch_command": "agent-a", "command": "agent-b", "args": ["x"]}, "agent-a"),
        ({}, DEFAULT_LAUNCH_COMMAND),
    ],
)
def test_resolve_command(kwargs, expected):
    assert LaunchConfig(**kwargs).resolve_command() == expected


def test_launch_config_accepts_wire_aliases(tmp_path):
    config = LaunchConfig.model_validate({"launchCommand": "a --acp", "autoStartAcp": True, "cwd": str(tmp_path)})
    assert config.launch_command == "a --acp"
    assert config.auto_start is True
    assert config.resolve_cwd() == str(tmp_path)


def test_missing_settings_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "settings.json")
    assert settings.acpLaunchCommand == DEFAULT_LAUNCH_COMMAND
    assert settings.autoAllow is False
    assert settings.autoStartAcp is False


def test_unreadable_settings_file_gives_defaults(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_settings(path).acpLaunchCommand == DEFAULT_LAUNCH_COMMAND


def test_legacy_command_and_args_are_migrated(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"acpCommand": "gemini", "acpArgs": "--experimental-acp"}), encoding="utf-8")
    settings = load_settings(path)
    assert settings.acpLaunchCommand == "gemini --experimental-acp"

    path.write_text(json.dumps({"acpCommand": "claude-code-acp"}), encoding="utf-8")
    assert load_settings(path).acpLaunchCommand == "claude-code-acp --acp"


def test_save_and_load_round_trip_keeps_unknown_keys(tmp_path):
    path = tmp_path / "nested" / "settings.json"
    settings = HostSettings(acpLaunchCommand="agent --acp", cwd=str(tmp_path), autoAllow=True, theme="dark")
    save_settings(path, settings)

    loaded = load_settings(path)
    assert loaded.acpLaunchCommand == "agent --acp"
    assert loaded.autoAllow is True
    assert loaded.model_extra == {"theme": "dark"}

    config = loaded.launch_config()
    assert config.resolve_command() == "agent --acp"
    assert config.resolve_cwd() == str(tmp_path)


def test_initialize_request_advertises_no_fs_or_terminal():
    params = initialize_request().model_dump(by_alias=True, exclude_none=True)
    assert params["protocolVersion"] == 1
    assert params["clientCapabilities"] == {"fs": {"readTextFile": False, "writeTextFile": False}, "terminal": False}
    assert params["clientInfo"]["name"] == "acp-host"
