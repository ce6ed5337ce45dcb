# src/cloudstrap/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_REPOSITORIES = [
    "github.com/microsoft/Azure-Orbital-Space-SDK-QuickStarts",
    "github.com/microsoft/Azure-Orbital-Space-SDK-Host-Services",
    "github.com/microsoft/Azure-Orbital-Space-SDK-Client-Library-dotnet",
    "github.com/microsoft/Azure-Orbital-Space-SDK-Client-Library-python",
    "github.com/microsoft/Azure-Orbital-Space-SDK-Virtual-Test-Harness",
    "github.com/glennmusa/vm-from-cloud-shell",
]


class RetryPolicy(BaseModel):
    """Capped exponential backoff. attempts counts the first try."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=2.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_backoff_seconds: float = Field(default=30.0, ge=0)

    def delay(self, attempt: int) -> float:
        """Sleep before retry number `attempt` (1-based)."""
        return min(self.backoff_seconds * (self.multiplier ** (attempt - 1)), self.max_backoff_seconds)


class ProvisionConfig(BaseModel):
    prefix: str = "space-sdk-demo"
    region: str = "eastus"

    # VM shape
    image: str = "Canonical:0001-com-ubuntu-server-focal:20_04-lts:20.04.202302090"
    vm_size: str = "Standard_E4s_v5"
    os_disk_size_gb: int = 80
    admin_username: str = "azureuser"

    # Public IP
    public_ip_sku: str = "Standard"
    public_ip_version: str = "IPv4"
    public_ip_zones: List[str] = Field(default_factory=lambda: ["1", "2", "3"])

    # SSH
    ssh_port: int = Field(default=2222, ge=1, le=65535)
    identity_dir: str = "~/Downloads"   # where the operator keeps the private key locally

    # Prerequisites
    username_env: str = "GHUsername"
    token_env: str = "CR_PAT"
    required_tools: List[str] = Field(default_factory=lambda: ["az", "git", "ssh-keygen"])

    # Remote workspace
    repositories: List[str] = Field(default_factory=lambda: list(DEFAULT_REPOSITORIES))
    remote_home: str = "/home/azureuser"

    # Behaviour
    run_bootstrap: bool = False
    on_failure: Literal["leave", "cleanup"] = "leave"
    home: Optional[Path] = None          # defaults to the operator's home directory

    @property
    def required_env(self) -> List[str]:
        return [self.username_env, self.token_env]


class BootstrapConfig(BaseModel):
    az_install_uri: str = "https://aka.ms/InstallAzureCLIDeb"
    docker_install_uri: str = "https://get.docker.com"
    k3s_install_uri: str = "https://get.k3s.io"
    k3s_version: str = "v1.25.2+k3s1"
    kubeconfig: str = "/etc/rancher/k3s/k3s.yaml"
    helm_install_uri: str = "https://raw.githubusercontent.com/helm/helm/main/scripts/get-helm-3"
    dapr_version: str = "1.8"
    dapr_chart_uri: str = "https://github.com/dapr/helm-charts/raw/master/dapr-1.8.4.tgz"
    dapr_namespace: str = "dapr-system"
    docker_ce_version: str = "5:20.10.23~3-0~ubuntu-focal"
    docker_compose_version: str = "v2.11.2"
    oras_version: str = "0.16.0"
    work_dir: str = "~"
    # checked on the target before the first install step
    remote_tools: List[str] = Field(default_factory=lambda: ["bash", "sudo", "curl", "apt-get"])
    # step names to run; empty means all
    only: List[str] = Field(default_factory=list)

    @property
    def oras_uri(self) -> str:
        v = self.oras_version
        return f"https://github.com/oras-project/oras/releases/download/v{v}/oras_{v}_linux_amd64.tar.gz"


class CloudstrapConfig(BaseModel):
    provision: ProvisionConfig = Field(default_factory=ProvisionConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
