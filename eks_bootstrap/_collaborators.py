"""Bundle of the external collaborators a bootstrap run talks to."""

from __future__ import annotations

from dataclasses import dataclass

from ._aws import AwsCli
from ._cdk import Cdk
from ._eksctl import Eksctl
from ._installer import PlatformInstaller
from ._kubectl import Kubectl
from ._settings import BootstrapSettings


@dataclass(frozen=True, slots=True)
class Collaborators:
    """External systems the orchestrator sequences and waits on."""

    aws: AwsCli
    eksctl: Eksctl
    kubectl: Kubectl
    cdk: Cdk
    installer: PlatformInstaller


def build_collaborators(settings: BootstrapSettings) -> Collaborators:
    """Create CLI-backed collaborators for *settings*."""
    return Collaborators(
        aws=AwsCli(profile=settings.aws_profile),
        eksctl=Eksctl(settings.kubeconfig, profile=settings.aws_profile),
        kubectl=Kubectl(settings.kubeconfig),
        cdk=Cdk(settings.cdk_app_dir, profile=settings.aws_profile),
        installer=PlatformInstaller(settings.installer_binary),
    )
