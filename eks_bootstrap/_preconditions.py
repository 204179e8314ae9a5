"""Validate required external facts before any mutating call."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from ._errors import ConfigNotFound, ConfigurationError, PrerequisiteMissing
from ._run_context import CERTIFICATE_ARN, REGION, RunContext
from ._settings import BootstrapSettings

if TYPE_CHECKING:
    from ._aws import AwsCli

logger = logging.getLogger(__name__)


def check_preconditions(
    settings: BootstrapSettings,
    *,
    announce: Callable[[str], object] = print,
) -> None:
    """Check required settings in a fixed order, stopping at the first gap.

    The cluster configuration file, the certificate ARN and the domain are
    required. A missing AWS profile or Route53 zone only produces a warning.
    No external command is run here.

    Raises
    ------
    ConfigNotFound
        If the cluster configuration file does not exist.
    ConfigurationError
        If the certificate ARN or the domain is missing.
    """

    if not settings.cluster_config.is_file():
        msg = f"The cluster configuration file {settings.cluster_config} does not exist."
        raise ConfigNotFound(msg)
    announce(f"Using cluster configuration file: {settings.cluster_config}")

    if not settings.certificate_arn:
        raise ConfigurationError("Missing CERTIFICATE_ARN (--certificate-arn).")
    if not settings.domain:
        raise ConfigurationError("Missing DOMAIN (--domain).")

    if settings.aws_profile:
        announce(f"Using the AWS profile: {settings.aws_profile}")
    else:
        logger.warning("Missing (optional) AWS profile; using the default credentials.")

    if settings.route53_zone_id:
        announce("Using external-dns. No manual intervention required.")
    else:
        logger.warning(
            "Missing (optional) ROUTE53_ZONEID. Please configure the CNAME with "
            "the URL of the load balancer manually."
        )


def verify_certificate(context: RunContext, aws: AwsCli) -> None:
    """Confirm the TLS certificate exists in the cluster region.

    Raises
    ------
    PrerequisiteMissing
        If the certificate cannot be found.
    """

    arn = context.require(CERTIFICATE_ARN)
    if not aws.certificate_exists(arn, context.require(REGION)):
        msg = f"The certificate {arn} does not exist."
        raise PrerequisiteMissing(msg)
