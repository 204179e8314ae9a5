"""Stack deployer helpers wrapping the AWS CDK CLI.

The CDK application in ``cdk_app_dir`` provisions the auxiliary services
(database, registry storage, add-ons). Deploy outputs are read from the
``--outputs-file`` document and exposed as :class:`StackOutputs`, keyed by
``(stack id, output name)`` so lookups are never ambiguous.

Examples
--------
>>> outputs = StackOutputs.from_mapping({"ServicesRDS1A2B": {"MysqlEndpoint": "db.local"}})
>>> outputs.find("ServicesRDS", "MysqlEndpoint")
'db.local'
"""

from __future__ import annotations

import json
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from ._commands import CommandContext, build_tool_env, run_command
from ._errors import StackOutputError


@dataclass(frozen=True, slots=True)
class StackContext:
    """Context values passed to every stack.

    Attributes
    ----------
    cluster_name
        EKS cluster the stacks attach to.
    region
        AWS region of the cluster.
    domain
        Public domain served by the platform.
    certificate_arn
        ACM certificate terminating TLS at the load balancer.
    oidc_issuer
        OIDC issuer URL of the cluster, used for IRSA roles.
    """

    cluster_name: str
    region: str
    domain: str
    certificate_arn: str
    oidc_issuer: str

    def as_cli_args(self) -> list[str]:
        """Return ``--context key=value`` arguments.

        Examples
        --------
        >>> StackContext("demo", "eu-west-1", "d.io", "arn", "https://oidc").as_cli_args()[:2]
        ['--context', 'clusterName=demo']
        """
        pairs = {
            "clusterName": self.cluster_name,
            "region": self.region,
            "domain": self.domain,
            "certificatearn": self.certificate_arn,
            "identityoidcissuer": self.oidc_issuer,
        }
        args: list[str] = []
        for key, value in pairs.items():
            args.extend(["--context", f"{key}={value}"])
        return args


@dataclass(frozen=True, slots=True)
class StackOutputs:
    """Deploy outputs keyed by ``(stack id, output name)``."""

    values: Mapping[tuple[str, str], str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> StackOutputs:
        values: dict[tuple[str, str], str] = {}
        for stack_id, outputs in payload.items():
            if not isinstance(outputs, Mapping):
                msg = f"Outputs of stack {stack_id!r} must be a mapping"
                raise StackOutputError(msg)
            for name, value in outputs.items():
                values[(str(stack_id), str(name))] = str(value)
        return cls(values=values)

    @classmethod
    def from_file(cls, path: Path) -> StackOutputs:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            msg = f"Failed to read stack outputs from {path}: {exc}"
            raise StackOutputError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"Stack outputs file {path} must contain a JSON object"
            raise StackOutputError(msg)
        return cls.from_mapping(payload)

    def lookup(self, stack_id: str, output: str) -> str:
        try:
            return self.values[(stack_id, output)]
        except KeyError:
            msg = f"Stack {stack_id!r} has no output {output!r}"
            raise StackOutputError(msg) from None

    def find(self, stack_prefix: str, output: str) -> str:
        """Return *output* from the single stack whose id starts with *stack_prefix*.

        CDK appends a hash to nested stack ids, so callers know only the
        prefix. More than one candidate is an error rather than a guess.
        """
        matches = sorted(
            stack_id
            for stack_id, name in self.values
            if name == output and stack_id.startswith(stack_prefix)
        )
        if not matches:
            msg = f"No stack matching {stack_prefix!r}* exposes output {output!r}"
            raise StackOutputError(msg)
        if len(matches) > 1:
            msg = (
                f"Output {output!r} is ambiguous: stacks {', '.join(matches)} "
                f"all match {stack_prefix!r}*"
            )
            raise StackOutputError(msg)
        return self.values[(matches[0], output)]


class Cdk:
    """Run the ``cdk`` CLI against the stack application directory."""

    def __init__(self, app_dir: Path, profile: str | None = None) -> None:
        self.app_dir = app_dir
        self.profile = profile

    def _profile_args(self) -> list[str]:
        return ["--profile", self.profile] if self.profile else []

    def _context(
        self,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> CommandContext:
        return CommandContext(
            env=build_tool_env(**{"AWS_PROFILE": self.profile, **dict(env or {})}),
            cwd=cwd or self.app_dir,
        )

    def bootstrap(self, account_id: str, region: str) -> None:
        """Bootstrap the CDK toolkit stack for the target environment."""
        # Outside the app directory so bootstrap does not synthesize the app.
        run_command(
            "cdk",
            "bootstrap",
            f"aws://{account_id}/{region}",
            *self._profile_args(),
            context=self._context(cwd=Path(tempfile.gettempdir())),
        )

    def deploy(
        self,
        context: StackContext,
        outputs_file: Path,
        env: Mapping[str, str] | None = None,
    ) -> StackOutputs:
        """Deploy all stacks and return their outputs."""
        run_command(
            "cdk",
            "deploy",
            *context.as_cli_args(),
            *self._profile_args(),
            "--require-approval",
            "never",
            "--outputs-file",
            str(outputs_file.resolve()),
            "--all",
            context=self._context(env),
        )
        return StackOutputs.from_file(outputs_file)

    def destroy(
        self,
        context: StackContext,
        env: Mapping[str, str] | None = None,
    ) -> None:
        run_command(
            "cdk",
            "destroy",
            *context.as_cli_args(),
            *self._profile_args(),
            "--require-approval",
            "never",
            "--force",
            "--all",
            context=self._context(env),
        )

    def clear_context(self) -> None:
        """Drop cached context values (``cdk.context.json``) from the app."""
        run_command("cdk", "context", "--clear", context=self._context())
