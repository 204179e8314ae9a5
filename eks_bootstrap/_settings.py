"""Resolve bootstrap settings from CLI values and an explicit environment."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from ._errors import ConfigurationError
from ._input_resolution import InputResolution, parse_bool, resolve_input

DEFAULT_CLUSTER_CONFIG = Path("eks-cluster.yaml")
DEFAULT_POLL_INTERVAL = 5.0


@dataclass(frozen=True, slots=True)
class BootstrapSettings:
    """Configuration for one install or uninstall invocation.

    Required facts (``certificate_arn`` and ``domain``) are left optional
    here and enforced by the precondition checker so each gets its own
    diagnostic.
    """

    cluster_config: Path
    certificate_arn: str | None = None
    domain: str | None = None
    aws_profile: str | None = None
    route53_zone_id: str | None = None
    container_registry_bucket: str | None = None
    image_pull_secret_file: Path | None = None
    work_dir: Path = Path(".")
    cdk_app_dir: Path = Path(".")
    rotate_database_password: bool = True
    ingress_timeout: float | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    installer_binary: str = "gitpod-installer"

    @property
    def kubeconfig(self) -> Path:
        return self.work_dir / ".kubeconfig"

    @property
    def stack_outputs_file(self) -> Path:
        return self.work_dir / "cdk-outputs.json"

    @property
    def platform_config_file(self) -> Path:
        return self.work_dir / "gitpod-config.yaml"

    @property
    def platform_manifest_file(self) -> Path:
        return self.work_dir / "gitpod.yaml"


@dataclass(frozen=True, slots=True)
class RawSettings:
    """Raw settings from CLI parameters; ``None`` defers to the environment."""

    cluster_config: Path | None = None
    certificate_arn: str | None = None
    domain: str | None = None
    aws_profile: str | None = None
    route53_zone_id: str | None = None
    container_registry_bucket: str | None = None
    image_pull_secret_file: Path | None = None
    work_dir: Path | None = None
    cdk_app_dir: Path | None = None
    rotate_database_password: bool | str | None = None
    ingress_timeout: float | str | None = None
    poll_interval: float | str | None = None
    installer_binary: str | None = None


def _optional_str(value: str | Path | None) -> str | None:
    return str(value) if value else None


def _as_path(value: str | Path | None) -> Path | None:
    if value is None:
        return None
    return value if isinstance(value, Path) else Path(value)


def _parse_seconds(value: float | str | Path | None, env_key: str) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value if isinstance(value, float | int) else str(value))
    except ValueError as exc:
        msg = f"{env_key} must be a number of seconds, got: {value!r}"
        raise ConfigurationError(msg) from exc
    if seconds <= 0:
        msg = f"{env_key} must be positive, got: {value!r}"
        raise ConfigurationError(msg)
    return seconds


def resolve_settings(
    raw: RawSettings,
    env: cabc.Mapping[str, str] | None = None,
) -> BootstrapSettings:
    """Resolve settings with CLI values taking precedence over *env*.

    Parameters
    ----------
    raw
        Values supplied on the command line.
    env
        Environment mapping to fall back on; defaults to ``os.environ``.

    Returns
    -------
    BootstrapSettings
        Normalized settings passed explicitly through the rest of the run.

    Examples
    --------
    >>> resolve_settings(RawSettings(domain="cli.io"), env={"DOMAIN": "env.io"}).domain
    'cli.io'
    """

    env = os.environ if env is None else env

    def _resolved(value: object, resolution: InputResolution) -> str | Path | None:
        if value is not None:
            return value  # type: ignore[return-value]
        return resolve_input(None, resolution, env=env)

    cluster_config = _resolved(
        raw.cluster_config,
        InputResolution(
            env_key="EKSCTL_CONFIG", default=DEFAULT_CLUSTER_CONFIG, as_path=True
        ),
    )
    poll_interval = _parse_seconds(
        _resolved(raw.poll_interval, InputResolution(env_key="POLL_INTERVAL")),
        "POLL_INTERVAL",
    )
    rotate_raw = _resolved(
        raw.rotate_database_password,
        InputResolution(env_key="ROTATE_DATABASE_PASSWORD", default="true"),
    )

    return BootstrapSettings(
        cluster_config=_as_path(cluster_config) or DEFAULT_CLUSTER_CONFIG,
        certificate_arn=_optional_str(
            _resolved(raw.certificate_arn, InputResolution(env_key="CERTIFICATE_ARN"))
        ),
        domain=_optional_str(_resolved(raw.domain, InputResolution(env_key="DOMAIN"))),
        aws_profile=_optional_str(
            _resolved(raw.aws_profile, InputResolution(env_key="AWS_PROFILE"))
        ),
        route53_zone_id=_optional_str(
            _resolved(raw.route53_zone_id, InputResolution(env_key="ROUTE53_ZONEID"))
        ),
        container_registry_bucket=_optional_str(
            _resolved(
                raw.container_registry_bucket,
                InputResolution(env_key="CONTAINER_REGISTRY_BUCKET"),
            )
        ),
        image_pull_secret_file=_as_path(
            _resolved(
                raw.image_pull_secret_file,
                InputResolution(env_key="IMAGE_PULL_SECRET_FILE", as_path=True),
            )
        ),
        work_dir=_as_path(
            _resolved(
                raw.work_dir,
                InputResolution(env_key="WORK_DIR", default=Path("."), as_path=True),
            )
        )
        or Path("."),
        cdk_app_dir=_as_path(
            _resolved(
                raw.cdk_app_dir,
                InputResolution(env_key="CDK_APP_DIR", default=Path("."), as_path=True),
            )
        )
        or Path("."),
        rotate_database_password=parse_bool(
            rotate_raw if isinstance(rotate_raw, bool) else str(rotate_raw),
            default=True,
        ),
        ingress_timeout=_parse_seconds(
            _resolved(raw.ingress_timeout, InputResolution(env_key="INGRESS_TIMEOUT")),
            "INGRESS_TIMEOUT",
        ),
        poll_interval=DEFAULT_POLL_INTERVAL if poll_interval is None else poll_interval,
        installer_binary=str(
            _resolved(
                raw.installer_binary,
                InputResolution(env_key="INSTALLER_BINARY", default="gitpod-installer"),
            )
        ),
    )
