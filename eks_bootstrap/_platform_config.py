"""Synthesize the platform configuration and auxiliary manifests.

The installer's ``init`` document is the base; the bootstrap overwrites a
fixed set of fields with facts gathered during the run. Each field is set
exactly once and none is read back, so the result depends only on the base
document and the run context.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import yaml

from ._cdk import StackOutputs
from ._errors import ConfigurationError

CERTIFICATE_NAME = "https-certificates"
DATABASE_SECRET_NAME = "mysql-gitpod-token"
STORAGE_SECRET_NAME = "object-storage-gitpod-token"
IMAGE_PULL_SECRET_NAME = "gitpod-image-pull-secret"
DATABASE_USERNAME = "gitpod"
DATABASE_PORT = "3306"
CONTAINERD_RUNTIME_DIR = "/var/lib/containerd/io.containerd.runtime.v2.task/k8s.io"
FS_SHIFT_METHOD = "shiftfs"

DATABASE_STACK_PREFIX = "ServicesRDS"
REGISTRY_STACK_PREFIX = "ServicesRegistry"


@dataclass(frozen=True, slots=True)
class PlatformFacts:
    """Run facts the platform configuration is built from."""

    domain: str
    region: str
    registry_bucket: str
    database_secret: str = DATABASE_SECRET_NAME
    storage_secret: str = STORAGE_SECRET_NAME
    certificate_name: str = CERTIFICATE_NAME


def config_overrides(facts: PlatformFacts) -> list[tuple[str, Any]]:
    """Return the ``(dotted path, value)`` pairs written into the base config."""
    return [
        ("certificate.name", facts.certificate_name),
        ("domain", facts.domain),
        ("metadata.region", facts.region),
        ("database.inCluster", False),
        ("database.external.certificate.kind", "secret"),
        ("database.external.certificate.name", facts.database_secret),
        ("workspace.runtime.containerdRuntimeDir", CONTAINERD_RUNTIME_DIR),
        ("containerRegistry.s3storage.bucket", facts.registry_bucket),
        ("containerRegistry.s3storage.certificate.kind", "secret"),
        ("containerRegistry.s3storage.certificate.name", facts.storage_secret),
        ("workspace.runtime.fsShiftMethod", FS_SHIFT_METHOD),
    ]


def set_path(document: dict[str, Any], dotted: str, value: Any) -> None:
    """Set *dotted* in *document*, creating intermediate mappings.

    Examples
    --------
    >>> doc = {"a": {"b": 1}}
    >>> set_path(doc, "a.c.d", True); doc
    {'a': {'b': 1, 'c': {'d': True}}}
    """

    *parents, leaf = dotted.split(".")
    node = document
    for part in parents:
        child = node.get(part)
        if child is None:
            child = node[part] = {}
        elif not isinstance(child, dict):
            msg = f"Cannot set {dotted!r}: {part!r} is not a mapping"
            raise ConfigurationError(msg)
        node = child
    node[leaf] = value


def synthesize_config(
    base: Mapping[str, Any],
    overrides: Sequence[tuple[str, Any]],
) -> dict[str, Any]:
    """Return a copy of *base* with every override applied exactly once."""
    paths = [path for path, _ in overrides]
    duplicates = sorted({path for path in paths if paths.count(path) > 1})
    if duplicates:
        msg = f"Config fields set more than once: {', '.join(duplicates)}"
        raise ConfigurationError(msg)
    document = copy.deepcopy(dict(base))
    for path, value in overrides:
        set_path(document, path, value)
    return document


def dump_config(document: Mapping[str, Any]) -> str:
    return yaml.safe_dump(dict(document), sort_keys=False)


def database_secret_literals(
    outputs: StackOutputs,
    *,
    password: str,
    encryption_keys: str,
    username: str = DATABASE_USERNAME,
) -> dict[str, str]:
    """Return the database secret literals for the external database."""
    return {
        "encryptionKeys": encryption_keys,
        "host": outputs.find(DATABASE_STACK_PREFIX, "MysqlEndpoint"),
        "password": password,
        "port": DATABASE_PORT,
        "username": username,
    }


def storage_secret_literals(outputs: StackOutputs) -> dict[str, str]:
    """Return the object storage secret literals for the registry."""
    return {
        "s3AccessKey": outputs.find(REGISTRY_STACK_PREFIX, "AccessKeyId"),
        "s3SecretKey": outputs.find(REGISTRY_STACK_PREFIX, "SecretAccessKey"),
    }


def certificate_manifest(domain: str, name: str = CERTIFICATE_NAME) -> str:
    """Return the cert-manager ``Certificate`` covering the platform domains.

    TLS is terminated at the load balancer; this certificate serves the
    in-cluster hops.
    """

    document = {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": name},
        "spec": {
            "dnsNames": [domain, f"*.{domain}", f"*.ws.{domain}"],
            "duration": "4380h0m0s",
            "issuerRef": {
                "group": "cert-manager.io",
                "kind": "Issuer",
                "name": "ca-issuer",
            },
            "secretName": name,
        },
    }
    return yaml.safe_dump(document, sort_keys=False)
