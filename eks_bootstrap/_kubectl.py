"""Adapter for ``kubectl`` against the bootstrap kubeconfig."""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from ._commands import CommandContext, build_tool_env, probe_command, run_command

_NOT_FOUND = "(NotFound)"


def build_secret_manifest(
    name: str,
    literals: Mapping[str, str],
    *,
    secret_type: str = "Opaque",
    namespace: str | None = None,
) -> str:
    """Render a ``Secret`` document carrying *literals* as ``stringData``.

    Examples
    --------
    >>> print(build_secret_manifest("db", {"port": "3306"}), end="")
    apiVersion: v1
    kind: Secret
    metadata:
      name: db
    stringData:
      port: '3306'
    type: Opaque
    """

    metadata: dict[str, str] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    document = {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": metadata,
        "stringData": dict(literals),
        "type": secret_type,
    }
    return yaml.safe_dump(document, sort_keys=False)


class Kubectl:
    """Run ``kubectl`` with an explicit kubeconfig."""

    def __init__(self, kubeconfig: Path) -> None:
        self.kubeconfig = kubeconfig

    def _args(self, *args: str, namespace: str | None = None) -> tuple[str, ...]:
        prefix: tuple[str, ...] = ("--kubeconfig", str(self.kubeconfig))
        if namespace:
            prefix = (*prefix, "--namespace", namespace)
        return (*prefix, *args)

    def _context(self, stdin: str | None = None) -> CommandContext:
        return CommandContext(
            env=build_tool_env(KUBECONFIG=str(self.kubeconfig)), stdin=stdin
        )

    def apply(self, manifest: str | Path) -> None:
        """Apply a manifest file, a manifest URL or an inline document."""
        if isinstance(manifest, Path):
            source, stdin = str(manifest), None
        elif manifest.startswith(("https://", "http://")):
            source, stdin = manifest, None
        else:
            source, stdin = "-", manifest
        run_command(
            "kubectl",
            *self._args("apply", "-f", source),
            context=self._context(stdin=stdin),
        )

    def create_secret(
        self,
        name: str,
        literals: Mapping[str, str],
        *,
        secret_type: str = "Opaque",
        namespace: str | None = None,
    ) -> None:
        """Create or replace secret *name*.

        The document is piped over stdin so secret values never appear in a
        process argument list.
        """
        manifest = build_secret_manifest(
            name, literals, secret_type=secret_type, namespace=namespace
        )
        run_command(
            "kubectl",
            *self._args("replace", "--force", "-f", "-"),
            context=self._context(stdin=manifest),
        )

    def patch(
        self,
        kind: str,
        name: str,
        patch: str | Mapping[str, Any] | list[Any],
        *,
        patch_type: str | None = None,
        namespace: str | None = None,
    ) -> None:
        """Patch a resource; ``patch_type`` is ``merge``, ``json`` or strategic (``None``)."""
        body = patch if isinstance(patch, str) else json.dumps(patch)
        args = ["patch", kind, name]
        if patch_type:
            args.extend(["--type", patch_type])
        args.extend(["--patch", body])
        run_command(
            "kubectl", *self._args(*args, namespace=namespace), context=self._context()
        )

    def get_jsonpath(
        self,
        kind: str,
        name: str,
        jsonpath: str,
        *,
        namespace: str | None = None,
    ) -> str | None:
        """Return the JSONPath value, or ``None`` when the resource is absent."""
        result = probe_command(
            "kubectl",
            *self._args("get", kind, name, "-o", f"jsonpath={jsonpath}", namespace=namespace),
            not_found=(_NOT_FOUND, f'"{name}" not found'),
            context=self._context(),
        )
        return result.stdout.strip() if result.found else None

    def resource_exists(self, kind: str, name: str, *, namespace: str | None = None) -> bool:
        return self.get_jsonpath(kind, name, "{.metadata.name}", namespace=namespace) is not None

    def ingress_hostname(self, name: str) -> str:
        """Return the first load balancer hostname of ingress *name*, or ``""``."""
        value = self.get_jsonpath(
            "ingress", name, "{.status.loadBalancer.ingress[0].hostname}"
        )
        return value or ""

    def delete_pods(self, namespace: str, selector: str) -> None:
        run_command(
            "kubectl",
            *self._args("delete", "pod", "-l", selector, namespace=namespace),
            context=self._context(),
        )

    def rollout_restart(self, resource: str, *, namespace: str | None = None) -> None:
        run_command(
            "kubectl",
            *self._args("rollout", "restart", resource, namespace=namespace),
            context=self._context(),
        )
