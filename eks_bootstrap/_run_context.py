"""Run context shared by the provisioning steps of one invocation."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from ._errors import MissingContextKey

# Keys produced by the context resolver.
CLUSTER_NAME = "cluster_name"
REGION = "region"
ACCOUNT_ID = "account_id"
CLUSTER_CONFIG = "cluster_config"
DOMAIN = "domain"
CERTIFICATE_ARN = "certificate_arn"
REGISTRY_BUCKET = "registry_bucket"
CREATE_REGISTRY_BUCKET = "create_registry_bucket"
PARAMETER_KEY = "parameter_key"
ADMIN_ROLE_NAME = "admin_role_name"
DESIRED_NODEGROUPS = "desired_nodegroups"

# Keys produced by provisioning steps.
CLUSTER_PRESENT = "cluster_present"
KUBECONFIG = "kubeconfig"
NETWORKING_READY = "networking_ready"
MISSING_NODEGROUPS = "missing_nodegroups"
DATABASE_USERNAME = "database_username"
DATABASE_PASSWORD = "database_password"
ENCRYPTION_KEYS = "encryption_keys"
ADMIN_ROLE_ARN = "admin_role_arn"
OIDC_ISSUER = "oidc_issuer"
STACK_OUTPUTS = "stack_outputs"
DATABASE_SECRET = "database_secret"
STORAGE_SECRET = "storage_secret"
PLATFORM_CONFIG = "platform_config"
PLATFORM_MANIFEST = "platform_manifest"


class RunContext:
    """Mutable fact accumulator for a single bootstrap invocation.

    Values written with ``secret=True`` are masked in ``repr`` so the context
    can be logged without exposing credential material.

    Examples
    --------
    >>> ctx = RunContext({"cluster_name": "demo"})
    >>> ctx.set("database_password", "hunter2", secret=True)
    >>> ctx.require("database_password")
    'hunter2'
    >>> ctx
    RunContext(cluster_name='demo', database_password='***')
    """

    __slots__ = ("_secret_keys", "_values")

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._secret_keys: set[str] = set()

    def set(self, key: str, value: Any, *, secret: bool = False) -> None:
        self._values[key] = value
        if secret:
            self._secret_keys.add(key)

    def require(self, key: str) -> Any:
        """Return the value for *key* or raise :class:`MissingContextKey`."""
        try:
            return self._values[key]
        except KeyError:
            msg = f"Run context key {key!r} has not been produced by an earlier step"
            raise MissingContextKey(msg) from None

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def keys(self) -> frozenset[str]:
        return frozenset(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __repr__(self) -> str:
        parts = ", ".join(
            f"{key}={'***' if key in self._secret_keys else repr(value)}"
            for key, value in self._values.items()
        )
        return f"RunContext({parts})"
