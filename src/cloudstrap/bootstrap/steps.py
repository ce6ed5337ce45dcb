# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/bootstrap/steps.py
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config.models import BootstrapConfig
from ..remote.ssh import quote


@dataclass
class Command:
    script: str
    sudo: bool = False
    fetch: bool = False     # downloads from the network; retried on transient failure


@dataclass
class InstallStep:
    """
    One installer routine on the target machine.

    present -- shell predicate; exit 0 means the tool is already installed
               at the expected version and the step is skipped
    remove  -- run before install (uninstall-then-install routines)
    verify  -- post-condition; exit 0 means the tool is invocable and at the
               expected version
    """
    name: str
    install: List[Command]
    version: str = ""
    uri: str = ""
    depends_on: List[str] = field(default_factory=list)
    present: Optional[str] = None
    remove: List[Command] = field(default_factory=list)
    verify: Optional[str] = None


def _persist_line(line: str, path: str = "~/.bashrc") -> str:
    return f"touch {path} && (grep -qxF {quote(line)} {path} || echo {quote(line)} >> {path})"


def default_install_steps(cfg: BootstrapConfig) -> List[InstallStep]:
    kc = cfg.kubeconfig
    chart_dir = posixpath.join(cfg.work_dir, "dapr-helm-chart")
    compose_bin = "/usr/local/bin/docker-compose"
    dce = cfg.docker_ce_version

    return [
        InstallStep(
            name="azure-cli",
            uri=cfg.az_install_uri,
            remove=[
                Command("DEBIAN_FRONTEND=noninteractive apt-get remove -y azure-cli || true", sudo=True),
                Command("rm -rf ~/.azure"),
            ],
            install=[
                Command("apt-get update -y", sudo=True, fetch=True),
                Command(
                    "DEBIAN_FRONTEND=noninteractive apt-get install -y "
                    "ca-certificates curl apt-transport-https lsb-release gnupg",
                    sudo=True, fetch=True,
                ),
                Command(f"set -o pipefail; curl -sSfL {quote(cfg.az_install_uri)} | sudo bash", fetch=True),
            ],
            verify="az version --output none",
        ),
        InstallStep(
            name="k3s",
            version=cfg.k3s_version,
            uri=cfg.k3s_install_uri,
            present=f"k3s --version | grep -qF {quote(cfg.k3s_version)}",
            install=[
                Command(
                    f"set -o pipefail; curl -sfL {quote(cfg.k3s_install_uri)} | "
                    f"INSTALL_K3S_VERSION={quote(cfg.k3s_version)} sh -s - --write-kubeconfig-mode 0644",
                    fetch=True,
                ),
                Command(_persist_line(f"export KUBECONFIG={kc}")),
            ],
            verify=f"k3s --version | grep -qF {quote(cfg.k3s_version)}",
        ),
        InstallStep(
            name="helm",
            uri=cfg.helm_install_uri,
            depends_on=["k3s"],
            present="helm version --short | grep -q '^v3\\.'",
            install=[Command(f"set -o pipefail; curl -fsSL {quote(cfg.helm_install_uri)} | bash", fetch=True)],
            verify="helm version --short | grep -q '^v3\\.'",
        ),
        InstallStep(
            name="dapr",
            version=cfg.dapr_version,
            uri=cfg.dapr_chart_uri,
            depends_on=["k3s", "helm"],
            present=f"helm status dapr --kubeconfig {kc} --namespace {cfg.dapr_namespace}",
            install=[
                Command(
                    f"[ -d {chart_dir}/dapr ] || (mkdir -p {chart_dir}"
                    f" && curl -fsSL -o {chart_dir}/dapr-helm-charts.tgz {quote(cfg.dapr_chart_uri)}"
                    f" && tar -xf {chart_dir}/dapr-helm-charts.tgz -C {chart_dir}"
                    f" && rm {chart_dir}/dapr-helm-charts.tgz)",
                    fetch=True,
                ),
                Command(
                    f"helm upgrade --install dapr {chart_dir}/dapr --version={cfg.dapr_version}"
                    f" --kubeconfig {kc} --namespace {cfg.dapr_namespace} --create-namespace --wait",
                    fetch=True,
                ),
            ],
            verify=f"helm status dapr --kubeconfig {kc} --namespace {cfg.dapr_namespace}",
        ),
        InstallStep(
            name="docker",
            uri=cfg.docker_install_uri,
            present="docker --version",
            install=[
                Command(f"set -o pipefail; curl -fsSL {quote(cfg.docker_install_uri)} | sudo bash", fetch=True),
                Command("chmod 666 /var/run/docker.sock", sudo=True),
            ],
            verify="docker --version",
        ),
        InstallStep(
            name="docker-compose",
            version=cfg.docker_compose_version,
            depends_on=["docker"],
            present=f"{compose_bin} version | grep -qF {quote(cfg.docker_compose_version)}",
            install=[
                Command(
                    f"curl -fsSL -o {compose_bin} "
                    f"\"https://github.com/docker/compose/releases/download/{cfg.docker_compose_version}"
                    f"/docker-compose-$(uname -s)-$(uname -m)\"",
                    sudo=True, fetch=True,
                ),
                Command(f"chmod +x {compose_bin}", sudo=True),
            ],
            verify=f"{compose_bin} version | grep -qF {quote(cfg.docker_compose_version)}",
        ),
        InstallStep(
            name="docker-ce",
            version=dce,
            depends_on=["docker"],
            present=f"dpkg-query -W -f='${{Version}}' docker-ce | grep -qxF {quote(dce)}",
            install=[
                Command(
                    "apt-get install -y apt-transport-https ca-certificates curl software-properties-common",
                    sudo=True, fetch=True,
                ),
                Command(
                    "set -o pipefail; curl -fsSL https://download.docker.com/linux/ubuntu/gpg | sudo apt-key add -",
                    fetch=True,
                ),
                Command(
                    "add-apt-repository -y \"deb [arch=amd64] https://download.docker.com/linux/ubuntu focal stable\"",
                    sudo=True, fetch=True,
                ),
                Command(
                    f"apt-get install -y docker-ce={quote(dce)} docker-ce-cli={quote(dce)} containerd.io "
                    "docker-buildx-plugin docker-compose-plugin --allow-downgrades",
                    sudo=True, fetch=True,
                ),
            ],
            verify=f"dpkg-query -W -f='${{Version}}' docker-ce | grep -qxF {quote(dce)} && docker compose version",
        ),
        InstallStep(
            name="jq",
            present="jq --version",
            install=[
                Command("apt-get update", sudo=True, fetch=True),
                Command("apt-get install -y jq", sudo=True, fetch=True),
            ],
            verify="jq --version",
        ),
        InstallStep(
            name="oras",
            version=cfg.oras_version,
            uri=cfg.oras_uri,
            present=f"oras version | grep -qF {quote(cfg.oras_version)}",
            install=[
                Command(
                    "tmp=$(mktemp -d) && cd \"$tmp\""
                    f" && curl -fsSLO {quote(cfg.oras_uri)}"
                    f" && tar -zxf oras_{cfg.oras_version}_*.tar.gz"
                    " && sudo mv oras /usr/local/bin/"
                    " && cd / && rm -rf \"$tmp\"",
                    fetch=True,
                ),
            ],
            verify=f"oras version | grep -qF {quote(cfg.oras_version)}",
        ),
    ]


def select(steps: Sequence[InstallStep], only: Sequence[str]) -> List[InstallStep]:
    """
    Keep the named steps plus everything they depend on, in declaration order.
    An empty selection keeps all steps.
    """
    if not only:
        return list(steps)
    by_name: Dict[str, InstallStep] = {s.name: s for s in steps}
    unknown = [n for n in only if n not in by_name]
    if unknown:
        raise ValueError(f"Unknown install steps: {', '.join(unknown)}")

    wanted = set()
    pending = list(only)
    while pending:
        n = pending.pop()
        if n in wanted:
            continue
        wanted.add(n)
        pending.extend(by_name[n].depends_on)
    return [s for s in steps if s.name in wanted]
