"""Install, remove or reconfigure the platform on Amazon EKS.

Settings resolve from CLI flags first, then environment variables, then
defaults. ``install`` is safe to re-run after a partial failure.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from cyclopts import App

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from eks_bootstrap._auth_providers import DEFAULT_AUTH_PROVIDERS_FILE, update_auth_providers
from eks_bootstrap._errors import BootstrapError
from eks_bootstrap._install_flow import install as run_install
from eks_bootstrap._kubectl import Kubectl
from eks_bootstrap._settings import RawSettings, resolve_settings
from eks_bootstrap._teardown_flow import prompt_confirmation
from eks_bootstrap._teardown_flow import uninstall as run_uninstall

app = App(help="Bootstrap the platform on an Amazon EKS cluster.")

logger = logging.getLogger(__name__)


def _configure_logging(*, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def install(
    cluster_config: Path | None = None,
    certificate_arn: str | None = None,
    domain: str | None = None,
    aws_profile: str | None = None,
    route53_zone_id: str | None = None,
    container_registry_bucket: str | None = None,
    image_pull_secret_file: Path | None = None,
    work_dir: Path | None = None,
    cdk_app_dir: Path | None = None,
    rotate_database_password: bool | None = None,
    ingress_timeout: float | None = None,
    poll_interval: float | None = None,
    installer_binary: str | None = None,
    verbose: bool = False,
) -> int:
    """Create or converge the cluster, its AWS services and the platform."""

    _configure_logging(verbose=verbose)
    try:
        settings = resolve_settings(
            RawSettings(
                cluster_config=cluster_config,
                certificate_arn=certificate_arn,
                domain=domain,
                aws_profile=aws_profile,
                route53_zone_id=route53_zone_id,
                container_registry_bucket=container_registry_bucket,
                image_pull_secret_file=image_pull_secret_file,
                work_dir=work_dir,
                cdk_app_dir=cdk_app_dir,
                rotate_database_password=rotate_database_password,
                ingress_timeout=ingress_timeout,
                poll_interval=poll_interval,
                installer_binary=installer_binary,
            )
        )
        run_install(settings)
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print("Platform install complete.")
    return 0


@app.command()
def uninstall(
    cluster_config: Path | None = None,
    certificate_arn: str | None = None,
    domain: str | None = None,
    aws_profile: str | None = None,
    route53_zone_id: str | None = None,
    container_registry_bucket: str | None = None,
    work_dir: Path | None = None,
    cdk_app_dir: Path | None = None,
    yes: bool = False,
    verbose: bool = False,
) -> int:
    """Destroy the stacks, the cluster and the stored database password."""

    _configure_logging(verbose=verbose)
    try:
        settings = resolve_settings(
            RawSettings(
                cluster_config=cluster_config,
                certificate_arn=certificate_arn,
                domain=domain,
                aws_profile=aws_profile,
                route53_zone_id=route53_zone_id,
                container_registry_bucket=container_registry_bucket,
                work_dir=work_dir,
                cdk_app_dir=cdk_app_dir,
            )
        )
        report = run_uninstall(
            settings,
            confirm=(lambda _question: True) if yes else prompt_confirmation,
        )
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if report is not None:
        print("Platform uninstall complete.")
    return 0


@app.command()
def auth(
    patch_file: Path | None = None,
    work_dir: Path | None = None,
    verbose: bool = False,
) -> int:
    """Apply an auth providers patch and restart the server."""

    _configure_logging(verbose=verbose)
    try:
        settings = resolve_settings(RawSettings(work_dir=work_dir))
        update_auth_providers(
            patch_file or DEFAULT_AUTH_PROVIDERS_FILE, Kubectl(settings.kubeconfig)
        )
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    logger.info("Auth providers updated")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
