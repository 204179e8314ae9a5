"""Adapter for the ``aws`` CLI: identity, IAM, SSM, S3, ACM and EKS calls."""

from __future__ import annotations

import json
from typing import Any

from ._commands import (
    CommandContext,
    ProbeResult,
    build_tool_env,
    probe_command,
    run_command,
)
from ._errors import CollaboratorCallFailure

_ROLE_NOT_FOUND = ("NoSuchEntity",)
_CERTIFICATE_NOT_FOUND = ("ResourceNotFoundException", "ValidationException")
_PARAMETER_NOT_FOUND = ("ParameterNotFound",)
_BUCKET_NOT_FOUND = ("(404)", "Not Found", "NoSuchBucket")
_CLUSTER_NOT_FOUND = ("ResourceNotFoundException",)


def build_trust_policy(account_id: str) -> dict[str, Any]:
    """Return a trust policy allowing principals of *account_id* to assume a role.

    Examples
    --------
    >>> build_trust_policy("12345")["Statement"][0]["Principal"]
    {'AWS': 'arn:aws:iam::12345:root'}
    """

    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": f"arn:aws:iam::{account_id}:root"},
                "Action": "sts:AssumeRole",
                "Condition": {},
            }
        ],
    }


def _parse_json(stdout: str, what: str) -> Any:
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as exc:
        raise CollaboratorCallFailure("aws", 0, f"invalid JSON from {what}: {exc}") from exc


class AwsCli:
    """Thin wrapper over the ``aws`` CLI honouring an optional profile."""

    def __init__(self, profile: str | None = None) -> None:
        self.profile = profile

    def _args(self, *args: str) -> tuple[str, ...]:
        if self.profile:
            return ("--profile", self.profile, *args)
        return args

    def _context(self) -> CommandContext:
        return CommandContext(env=build_tool_env(AWS_PAGER=""))

    def _run(self, *args: str) -> str:
        return run_command("aws", *self._args(*args), context=self._context())

    def _probe(self, *args: str, not_found: tuple[str, ...]) -> ProbeResult:
        return probe_command(
            "aws", *self._args(*args), not_found=not_found, context=self._context()
        )

    def caller_account_id(self) -> str:
        """Return the account ID of the ambient credentials."""
        payload = _parse_json(
            self._run("sts", "get-caller-identity", "--output", "json"),
            "sts get-caller-identity",
        )
        account = payload.get("Account") if isinstance(payload, dict) else None
        if not account:
            raise CollaboratorCallFailure("aws", 0, "caller identity has no Account")
        return str(account)

    def certificate_exists(self, arn: str, region: str) -> bool:
        return self._probe(
            "acm",
            "describe-certificate",
            "--certificate-arn",
            arn,
            "--region",
            region,
            not_found=_CERTIFICATE_NOT_FOUND,
        ).found

    def bucket_exists(self, name: str) -> bool:
        return self._probe(
            "s3api", "head-bucket", "--bucket", name, not_found=_BUCKET_NOT_FOUND
        ).found

    def get_role_arn(self, name: str) -> str | None:
        """Return the ARN of role *name*, or ``None`` if it does not exist."""
        result = self._probe(
            "iam",
            "get-role",
            "--role-name",
            name,
            "--output",
            "json",
            not_found=_ROLE_NOT_FOUND,
        )
        if not result.found:
            return None
        payload = _parse_json(result.stdout, "iam get-role")
        return str(payload["Role"]["Arn"])

    def create_role(
        self,
        name: str,
        trust_policy: dict[str, Any],
        description: str,
    ) -> str:
        """Create role *name* with *trust_policy* and return its ARN."""
        stdout = self._run(
            "iam",
            "create-role",
            "--role-name",
            name,
            "--description",
            description,
            "--assume-role-policy-document",
            json.dumps(trust_policy, separators=(",", ":")),
            "--output",
            "text",
            "--query",
            "Role.Arn",
        )
        return stdout.strip()

    def put_parameter(self, key: str, value: str, region: str) -> None:
        self._run(
            "ssm",
            "put-parameter",
            "--overwrite",
            "--name",
            key,
            "--type",
            "String",
            "--value",
            value,
            "--region",
            region,
        )

    def get_parameter(self, key: str, region: str) -> str | None:
        result = self._probe(
            "ssm",
            "get-parameter",
            "--name",
            key,
            "--region",
            region,
            "--query",
            "Parameter.Value",
            "--output",
            "text",
            not_found=_PARAMETER_NOT_FOUND,
        )
        return result.stdout.strip() if result.found else None

    def delete_parameter(self, key: str, region: str) -> None:
        self._run("ssm", "delete-parameter", "--name", key, "--region", region)

    def cluster_exists(self, name: str, region: str) -> bool:
        return self._probe(
            "eks",
            "describe-cluster",
            "--name",
            name,
            "--region",
            region,
            not_found=_CLUSTER_NOT_FOUND,
        ).found

    def cluster_oidc_issuer(self, name: str, region: str) -> str:
        """Return the OIDC issuer URL of cluster *name*."""
        stdout = self._run(
            "eks",
            "describe-cluster",
            "--name",
            name,
            "--query",
            "cluster.identity.oidc.issuer",
            "--output",
            "text",
            "--region",
            region,
        )
        return stdout.strip()
