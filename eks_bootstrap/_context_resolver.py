"""Derive the run context from the cluster spec, settings and account identity."""

from __future__ import annotations

from collections.abc import Callable

from ._aws import AwsCli
from ._cluster_spec import load_cluster_spec
from ._errors import ConfigurationError
from ._run_context import (
    ACCOUNT_ID,
    ADMIN_ROLE_NAME,
    CERTIFICATE_ARN,
    CLUSTER_CONFIG,
    CLUSTER_NAME,
    CREATE_REGISTRY_BUCKET,
    DESIRED_NODEGROUPS,
    DOMAIN,
    PARAMETER_KEY,
    REGION,
    REGISTRY_BUCKET,
    RunContext,
)
from ._settings import BootstrapSettings

PARAMETER_PREFIX = "/gitpod"


def default_registry_bucket(cluster_name: str, account_id: str) -> str:
    """Return the deterministic registry bucket name.

    Examples
    --------
    >>> default_registry_bucket("demo", "12345")
    'container-registry-demo-12345'
    """
    return f"container-registry-{cluster_name}-{account_id}"


def admin_role_name(cluster_name: str, region: str) -> str:
    """Return the IAM role name mapped to cluster administrators.

    Examples
    --------
    >>> admin_role_name("demo", "eu-west-1")
    'demo-region-eu-west-1-role-eksadmin'
    """
    return f"{cluster_name}-region-{region}-role-eksadmin"


def parameter_key(cluster_name: str, region: str) -> str:
    """Return the SSM parameter holding the database password.

    Examples
    --------
    >>> parameter_key("demo", "eu-west-1")
    '/gitpod/cluster/demo/region/eu-west-1'
    """
    return f"{PARAMETER_PREFIX}/cluster/{cluster_name}/region/{region}"


def resolve_context(
    settings: BootstrapSettings,
    aws: AwsCli,
    *,
    announce: Callable[[str], object] = print,
) -> RunContext:
    """Build the run context without mutating any remote resource.

    The registry bucket is only probed: whether it must be created is recorded
    as ``create_registry_bucket`` and left to the stack deployment.

    Raises
    ------
    ConfigNotFound
        If the cluster configuration file is missing.
    ConfigurationError
        If the cluster configuration lacks its name or region, or the domain
        or certificate ARN is unset.
    CollaboratorCallFailure
        If the account identity cannot be resolved.
    """

    if not settings.domain or not settings.certificate_arn:
        raise ConfigurationError("DOMAIN and CERTIFICATE_ARN must be set before resolving")
    spec = load_cluster_spec(settings.cluster_config)
    account_id = aws.caller_account_id()

    bucket = settings.container_registry_bucket or default_registry_bucket(
        spec.name, account_id
    )
    create_bucket = not aws.bucket_exists(bucket)
    announce(
        f"Cluster {spec.name} in {spec.region} (account {account_id}); "
        f"registry bucket {bucket}{' will be created' if create_bucket else ''}"
    )

    return RunContext(
        {
            CLUSTER_CONFIG: spec.path,
            CLUSTER_NAME: spec.name,
            REGION: spec.region,
            DESIRED_NODEGROUPS: spec.nodegroups,
            ACCOUNT_ID: account_id,
            DOMAIN: settings.domain,
            CERTIFICATE_ARN: settings.certificate_arn,
            REGISTRY_BUCKET: bucket,
            CREATE_REGISTRY_BUCKET: create_bucket,
            PARAMETER_KEY: parameter_key(spec.name, spec.region),
            ADMIN_ROLE_NAME: admin_role_name(spec.name, spec.region),
        }
    )
