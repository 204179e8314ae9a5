"""Uninstall workflow: remove what the install created, in reverse order."""

from __future__ import annotations

from collections.abc import Callable

from ._collaborators import Collaborators, build_collaborators
from ._context_resolver import resolve_context
from ._errors import PrerequisiteMissing
from ._install_flow import stack_context, stack_environment
from ._preconditions import check_preconditions
from ._run_context import (
    ADMIN_ROLE_ARN,
    ADMIN_ROLE_NAME,
    CERTIFICATE_ARN,
    CLUSTER_NAME,
    CLUSTER_PRESENT,
    CREATE_REGISTRY_BUCKET,
    DOMAIN,
    PARAMETER_KEY,
    REGION,
    REGISTRY_BUCKET,
    RunContext,
)
from ._settings import BootstrapSettings
from ._steps import ExecutionReport, ProvisioningStep, execute_steps


def prompt_confirmation(question: str, read: Callable[[str], str] = input) -> bool:
    """Return ``True`` only when the reply starts with ``y`` or ``Y``."""
    reply = read(f"{question} [y/N] ").strip()
    return reply[:1] in {"y", "Y"}


class TeardownSteps:
    """Reverse-order removal of the platform, stopping at the first failure."""

    def __init__(
        self,
        settings: BootstrapSettings,
        collaborators: Collaborators,
        *,
        announce: Callable[[str], object] = print,
    ) -> None:
        self.settings = settings
        self.announce = announce
        self.aws = collaborators.aws
        self.eksctl = collaborators.eksctl
        self.cdk = collaborators.cdk

    def check_cluster(self, ctx: RunContext) -> None:
        name, region = ctx.require(CLUSTER_NAME), ctx.require(REGION)
        present = self.aws.cluster_exists(name, region)
        if not present and self.aws.get_parameter(ctx.require(PARAMETER_KEY), region) is None:
            msg = f"The cluster {name} does not exist in {region}."
            raise PrerequisiteMissing(msg)
        ctx.set(CLUSTER_PRESENT, present)

    def cluster_removed(self, ctx: RunContext) -> bool:
        return not ctx.require(CLUSTER_PRESENT)

    def parameter_removed(self, ctx: RunContext) -> bool:
        return self.aws.get_parameter(ctx.require(PARAMETER_KEY), ctx.require(REGION)) is None

    def read_admin_role(self, ctx: RunContext) -> None:
        # The stacks still reference the role even when it was removed by hand.
        ctx.set(ADMIN_ROLE_ARN, self.aws.get_role_arn(ctx.require(ADMIN_ROLE_NAME)) or "")

    def destroy_stacks(self, ctx: RunContext) -> None:
        self.announce("Destroying stacks...")
        oidc_issuer = self.aws.cluster_oidc_issuer(ctx.require(CLUSTER_NAME), ctx.require(REGION))
        self.cdk.destroy(
            stack_context(ctx, oidc_issuer),
            env=stack_environment(ctx, self.settings),
        )

    def clear_stack_context(self, ctx: RunContext) -> None:
        self.cdk.clear_context()

    def delete_cluster(self, ctx: RunContext) -> None:
        self.announce(f"Deleting cluster {ctx.require(CLUSTER_NAME)}...")
        self.eksctl.delete_cluster(ctx.require(CLUSTER_NAME), ctx.require(REGION))

    def delete_parameter(self, ctx: RunContext) -> None:
        self.aws.delete_parameter(ctx.require(PARAMETER_KEY), ctx.require(REGION))

    def steps(self) -> list[ProvisioningStep]:
        """Removal steps; those needing the cluster are skipped once it is gone."""
        return [
            ProvisioningStep(
                "check-cluster",
                action=self.check_cluster,
                reads=(CLUSTER_NAME, REGION, PARAMETER_KEY),
                writes=(CLUSTER_PRESENT,),
            ),
            ProvisioningStep(
                "admin-role",
                action=self.read_admin_role,
                reads=(ADMIN_ROLE_NAME,),
                writes=(ADMIN_ROLE_ARN,),
            ),
            ProvisioningStep(
                "destroy-stacks",
                action=self.destroy_stacks,
                exists=self.cluster_removed,
                reads=(
                    CLUSTER_PRESENT,
                    CLUSTER_NAME,
                    REGION,
                    DOMAIN,
                    CERTIFICATE_ARN,
                    ADMIN_ROLE_ARN,
                    REGISTRY_BUCKET,
                    CREATE_REGISTRY_BUCKET,
                ),
            ),
            ProvisioningStep(
                "clear-stack-context",
                action=self.clear_stack_context,
                exists=self.cluster_removed,
                reads=(CLUSTER_PRESENT,),
            ),
            ProvisioningStep(
                "delete-cluster",
                action=self.delete_cluster,
                exists=self.cluster_removed,
                reads=(CLUSTER_PRESENT, CLUSTER_NAME, REGION),
            ),
            ProvisioningStep(
                "delete-parameter",
                action=self.delete_parameter,
                exists=self.parameter_removed,
                reads=(PARAMETER_KEY, REGION),
            ),
        ]


def uninstall(
    settings: BootstrapSettings,
    collaborators: Collaborators | None = None,
    *,
    confirm: Callable[[str], bool] = prompt_confirmation,
    announce: Callable[[str], object] = print,
) -> ExecutionReport | None:
    """Remove the platform after explicit confirmation.

    Returns ``None`` when the operator declines; nothing remote is modified
    in that case.

    Raises
    ------
    BootstrapError
        The first precondition or step failure. Later removals are not
        attempted. A rerun skips the cluster removals once the cluster is
        gone and still deletes a leftover database password parameter.
        ``PrerequisiteMissing`` is raised only when neither remains.
    """

    check_preconditions(settings, announce=announce)
    collaborators = collaborators or build_collaborators(settings)
    context = resolve_context(settings, collaborators.aws, announce=announce)

    question = (
        f"Are you sure you want to delete the cluster {context.require(CLUSTER_NAME)} "
        "and all its AWS resources?"
    )
    if not confirm(question):
        announce("Aborted; nothing was deleted.")
        return None

    report = execute_steps(
        TeardownSteps(settings, collaborators, announce=announce).steps(),
        context,
        announce=announce,
    )
    report.raise_for_failure()
    return report
