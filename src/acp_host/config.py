"""Launch configuration and persisted host settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .meta import PROTOCOL_VERSION
from .schema import ClientCapabilities, Implementation, InitializeRequest

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_COMMAND = "buffer --acp"
DEFAULT_ARGS = "--acp"

DEFAULT_CLIENT_INFO = Implementation(name="acp-host", title="ACP Host", version="0.1.0")


class LaunchConfig(BaseModel):
    """How to start the agent process.

    ``launch_command`` wins over ``command`` + ``args``; with neither the
    default command is used.
    """

    model_config = ConfigDict(populate_by_name=True)

    launch_command: Optional[str] = Field(default=None, alias="launchCommand")
    command: Optional[str] = None
    args: Optional[List[str]] = None
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    auto_start: bool = Field(default=False, alias="autoStartAcp")

    def resolve_command(self) -> str:
        if self.launch_command and self.launch_command.strip():
            return self.launch_command.strip()
        if self.command:
            args = " ".join(self.args) if self.args is not None else DEFAULT_ARGS
            return f"{self.command} {args}".strip()
        return DEFAULT_LAUNCH_COMMAND

    def resolve_cwd(self) -> str:
        return self.cwd or os.getcwd()


class HostSettings(BaseModel):
    """Settings the host keeps between runs."""

    model_config = ConfigDict(extra="allow")

    acpLaunchCommand: str = DEFAULT_LAUNCH_COMMAND
    cwd: str = Field(default_factory=os.getcwd)
    autoAllow: bool = False
    autoStartAcp: bool = False

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_command(cls, data: Any) -> Any:
        # acpCommand/acpArgs predate the single launch string
        if not isinstance(data, dict) or isinstance(data.get("acpLaunchCommand"), str):
            return data
        if isinstance(data.get("acpCommand"), str):
            args = data.get("acpArgs") if isinstance(data.get("acpArgs"), str) else DEFAULT_ARGS
            data = {**data, "acpLaunchCommand": f"{data['acpCommand']} {args}".strip()}
        return data

    def launch_config(self) -> LaunchConfig:
        return LaunchConfig(
            launch_command=self.acpLaunchCommand.strip() or None,
            cwd=self.cwd,
            auto_start=self.autoStartAcp,
        )


def load_settings(path: Union[str, Path]) -> HostSettings:
    """Read settings from ``path``; a missing or unreadable file gives defaults."""
    path = Path(path)
    if not path.exists():
        return HostSettings()
    try:
        return HostSettings.model_validate_json(path.read_text(encoding="utf-8"))
    except ValueError:
        logger.warning("Ignoring unreadable settings file %s", path, exc_info=True)
        return HostSettings()


def save_settings(path: Union[str, Path], settings: HostSettings) -> HostSettings:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings.model_dump_json(indent=2), encoding="utf-8")
    return settings


def initialize_request(
    client_info: Optional[Implementation] = None,
    capabilities: Optional[ClientCapabilities] = None,
) -> InitializeRequest:
    """The handshake the host sends; it advertises no fs or terminal support."""
    return InitializeRequest(
        protocolVersion=PROTOCOL_VERSION,
        clientCapabilities=capabilities or ClientCapabilities(),
        clientInfo=client_info or DEFAULT_CLIENT_INFO,
    )
