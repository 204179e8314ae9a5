"""Apply authentication provider changes to a running platform."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import yaml

from ._errors import ConfigNotFound, ConfigurationError
from ._kubectl import Kubectl

DEFAULT_AUTH_PROVIDERS_FILE = Path("auth-providers-patch.yaml")
AUTH_PROVIDERS_CONFIGMAP = "auth-providers-config"
SERVER_DEPLOYMENT = "deployment/server"


def load_auth_patch(path: Path) -> dict:
    """Read the ConfigMap merge patch from *path*.

    Raises
    ------
    ConfigNotFound
        If *path* does not exist.
    ConfigurationError
        If the file is not a YAML mapping.
    """

    if not path.is_file():
        msg = f"The auth providers patch file {path} does not exist."
        raise ConfigNotFound(msg)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path}: {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(document, dict):
        msg = f"{path} must contain a mapping"
        raise ConfigurationError(msg)
    return document


def update_auth_providers(
    patch_file: Path,
    kubectl: Kubectl,
    *,
    announce: Callable[[str], object] = print,
) -> None:
    """Merge *patch_file* into the auth providers ConfigMap and restart the server."""
    patch = load_auth_patch(patch_file)
    kubectl.patch("configmap", AUTH_PROVIDERS_CONFIGMAP, patch, patch_type="merge")
    announce("Restarting the server to pick up the new auth providers...")
    kubectl.rollout_restart(SERVER_DEPLOYMENT)
