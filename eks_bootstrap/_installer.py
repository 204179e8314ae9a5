"""Adapter for the platform installer (``init`` and ``render``)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ._commands import CommandContext, build_tool_env, run_command
from ._errors import CollaboratorCallFailure


class PlatformInstaller:
    """Drive the installer binary that owns the platform config format."""

    def __init__(self, binary: str = "gitpod-installer") -> None:
        self.binary = binary

    def _context(self) -> CommandContext:
        return CommandContext(env=build_tool_env())

    def init(self) -> dict[str, Any]:
        """Return the installer's base configuration document."""
        stdout = run_command(self.binary, "init", context=self._context())
        try:
            document = yaml.safe_load(stdout)
        except yaml.YAMLError as exc:
            msg = f"invalid YAML from init: {exc}"
            raise CollaboratorCallFailure(self.binary, 0, msg) from exc
        if not isinstance(document, dict):
            raise CollaboratorCallFailure(self.binary, 0, "init did not return a mapping")
        return document

    def render(self, config_file: Path) -> str:
        """Render the deployable manifest for *config_file*."""
        return run_command(
            self.binary, "render", f"--config={config_file}", context=self._context()
        )
