"""Adapter for ``eksctl``: cluster, node group and identity mapping lifecycle."""

from __future__ import annotations

import json
from pathlib import Path

from ._commands import CommandContext, build_tool_env, probe_command, run_command
from ._errors import CollaboratorCallFailure

_CLUSTER_NOT_FOUND = ("ResourceNotFoundException", "No cluster found")
_MAPPING_NOT_FOUND = ("no iamidentitymapping",)
_NODEGROUPS_NOT_FOUND = ("No nodegroups found",)


class Eksctl:
    """Run ``eksctl`` with a fixed kubeconfig and optional AWS profile."""

    def __init__(self, kubeconfig: Path, profile: str | None = None) -> None:
        self.kubeconfig = kubeconfig
        self.profile = profile

    def _context(self) -> CommandContext:
        return CommandContext(env=build_tool_env(AWS_PROFILE=self.profile))

    def cluster_exists(self, name: str, region: str) -> bool:
        return probe_command(
            "eksctl",
            "get",
            "cluster",
            "--name",
            name,
            "--region",
            region,
            not_found=_CLUSTER_NOT_FOUND,
            context=self._context(),
        ).found

    def create_cluster(self, config_file: Path) -> Path:
        """Create the control plane only; node groups are attached later."""
        run_command(
            "eksctl",
            "create",
            "cluster",
            "--config-file",
            str(config_file),
            "--without-nodegroup",
            "--kubeconfig",
            str(self.kubeconfig),
            context=self._context(),
        )
        return self.kubeconfig

    def write_kubeconfig(self, name: str, region: str) -> Path:
        run_command(
            "eksctl",
            "utils",
            "write-kubeconfig",
            "--cluster",
            name,
            "--region",
            region,
            "--kubeconfig",
            str(self.kubeconfig),
            context=self._context(),
        )
        return self.kubeconfig

    def list_nodegroups(self, cluster: str, region: str) -> list[str]:
        """Return the names of node groups attached to *cluster*."""
        result = probe_command(
            "eksctl",
            "get",
            "nodegroup",
            "--cluster",
            cluster,
            "--region",
            region,
            "--output",
            "json",
            not_found=_NODEGROUPS_NOT_FOUND,
            context=self._context(),
        )
        if not result.found or not result.stdout.strip():
            return []
        try:
            groups = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            msg = f"invalid JSON from get nodegroup: {exc}"
            raise CollaboratorCallFailure("eksctl", 0, msg) from exc
        return [str(group["Name"]) for group in groups if group.get("Name")]

    def create_nodegroups(self, config_file: Path) -> None:
        run_command(
            "eksctl",
            "create",
            "nodegroup",
            f"--config-file={config_file}",
            context=self._context(),
        )

    def identity_mapping_exists(self, cluster: str, role_arn: str, region: str) -> bool:
        return probe_command(
            "eksctl",
            "get",
            "iamidentitymapping",
            "--cluster",
            cluster,
            "--arn",
            role_arn,
            "--region",
            region,
            not_found=_MAPPING_NOT_FOUND,
            context=self._context(),
        ).found

    def create_identity_mapping(
        self,
        cluster: str,
        role_arn: str,
        *,
        username: str,
        group: str,
        region: str,
    ) -> None:
        run_command(
            "eksctl",
            "create",
            "iamidentitymapping",
            "--cluster",
            cluster,
            "--arn",
            role_arn,
            "--username",
            username,
            "--group",
            group,
            "--region",
            region,
            context=self._context(),
        )

    def delete_cluster(self, name: str, region: str) -> None:
        run_command(
            "eksctl",
            "delete",
            "cluster",
            "--name",
            name,
            "--region",
            region,
            context=self._context(),
        )
