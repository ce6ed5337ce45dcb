# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/provision/provisioner.py
from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Callable, List, Optional

from ..cloud.interface import CloudProvider
from ..config.models import BootstrapConfig, ProvisionConfig, RetryPolicy
from ..engine.executor import RunOptions, run_steps
from ..engine.models import RunReport, Step
from ..engine.state import RunState
from ..errors import CloudstrapError
from ..hosts import HostEntryWriter
from ..keys import KeyPair, KeyPairGenerator
from ..naming import NamingContext
from ..observers.interface import Observers
from ..remote.azure_run_command import AzureRunCommandExecutor
from ..remote.interface import RemoteExecutor
from ..remote.ssh import SSHExecutor, SSHTarget, quote
from ..secrets import RemoteSecret
from ..template_renderer import TemplateRenderer
from ..bootstrap.bootstrapper import Bootstrapper

log = logging.getLogger("cloudstrap")

ExecutorFactory = Callable[[str], RemoteExecutor]

CREDENTIALS_FILE = ".cloudstrap/credentials.env"


def repo_dir(repo: str) -> str:
    return posixpath.basename(repo.rstrip("/")).removesuffix(".git")


def repo_url(repo: str) -> str:
    url = repo if "://" in repo else f"https://{repo}"
    return url if url.endswith(".git") else f"{url}.git"


class Provisioner:
    """
    Compiles the provisioning workflow into engine steps:

      key-pair -> resource-group -> public-ip -> vm -> open-port
               -> sshd-port -> host-entry -> credentials -> repositories
               [-> bootstrap install steps]

    Every step that creates a cloud resource checks for it first, so a
    resumed run never duplicates resources.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        naming: NamingContext,
        secret: RemoteSecret,
        state: RunState,
        *,
        cloud: CloudProvider,
        keygen: Optional[KeyPairGenerator] = None,
        retry: Optional[RetryPolicy] = None,
        bootstrap: Optional[BootstrapConfig] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.config = config
        self.naming = naming
        self.secret = secret
        self.state = state
        self.cloud = cloud
        self.keygen = keygen or KeyPairGenerator()
        self.retry = retry or RetryPolicy()
        self.bootstrap_config = bootstrap or BootstrapConfig()
        self.executor_factory = executor_factory or self._ssh_executor
        self.renderer = renderer or TemplateRenderer()
        self._executor: Optional[RemoteExecutor] = None

    # ------------------ helpers ------------------

    @property
    def key_pair(self) -> KeyPair:
        return KeyPair(private=self.naming.key_path, public=self.naming.public_key_path)

    @property
    def identity_file(self) -> str:
        return posixpath.join(self.config.identity_dir, self.naming.key_name)

    @property
    def credentials_path(self) -> str:
        return posixpath.join(self.config.remote_home, CREDENTIALS_FILE)

    def _ssh_executor(self, address: str) -> RemoteExecutor:
        target = SSHTarget(
            address=address,
            username=self.config.admin_username,
            port=self.config.ssh_port,
            pkey_path=self.naming.key_path,
        )
        return SSHExecutor(target, connect_retry=self.retry)

    def remote(self) -> RemoteExecutor:
        if self._executor is None:
            address = self.state.outputs("host-entry").get("public_ip")
            if not address:
                raise CloudstrapError("public IP unknown; the host-entry step has not completed")
            self._executor = self.executor_factory(address)
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.close()
            self._executor = None

    # ------------------ actions ------------------

    def _keys_present(self) -> bool:
        # only keys this run created count; anything else is a collision
        return str(self.naming.key_path) in self.state.artifacts and self.key_pair.exists()

    def _create_keys(self):
        pair = self.keygen.generate(self.naming.key_path)
        self.state.add_artifact(str(pair.private))
        self.state.add_artifact(str(pair.public))
        return {"private_key": str(pair.private), "public_key": str(pair.public)}

    def _remove_keys(self) -> None:
        KeyPairGenerator.remove(self.key_pair)
        self.state.remove_artifact(str(self.key_pair.private))
        self.state.remove_artifact(str(self.key_pair.public))

    def _create_group(self):
        self.cloud.create_group(self.naming.resource_group, self.naming.region)
        self.state.add_artifact(f"resource-group:{self.naming.resource_group}")
        return {"resource_group": self.naming.resource_group}

    def _delete_group(self) -> None:
        self.cloud.delete_group(self.naming.resource_group, wait=False)
        self.state.remove_artifact(f"resource-group:{self.naming.resource_group}")

    def _create_public_ip(self):
        c = self.config
        self.cloud.create_public_ip(
            self.naming.resource_group,
            self.naming.public_ip,
            sku=c.public_ip_sku,
            version=c.public_ip_version,
            zones=c.public_ip_zones,
        )

    def _create_vm(self):
        c = self.config
        self.cloud.create_vm(
            self.naming.resource_group,
            self.naming.vm,
            image=c.image,
            admin_username=c.admin_username,
            public_key_path=self.naming.public_key_path,
            public_ip=self.naming.public_ip,
            os_disk_size_gb=c.os_disk_size_gb,
            size=c.vm_size,
        )
        return {"vm": self.naming.vm}

    def _open_port(self):
        self.cloud.open_port(self.naming.resource_group, self.naming.vm, self.config.ssh_port)

    def _sshd_port_script(self) -> str:
        line = f"Port {self.config.ssh_port}"
        return (
            f"(grep -qxF {quote(line)} /etc/ssh/sshd_config || echo {quote(line)} >> /etc/ssh/sshd_config)"
            " && (systemctl restart ssh || service sshd restart)"
        )

    def _set_sshd_port(self):
        log.info(f"Setting port {self.config.ssh_port} as the SSH port on virtual machine \"{self.naming.vm}\"...")
        run_command = AzureRunCommandExecutor(self.cloud, self.naming.resource_group, self.naming.vm)
        run_command.run(self._sshd_port_script(), sudo=True).check("set sshd port")

    def _write_host_entry(self):
        entry = HostEntryWriter(self.cloud, self.renderer).write(
            group=self.naming.resource_group,
            vm=self.naming.vm,
            user=self.config.admin_username,
            port=self.config.ssh_port,
            identity_file=self.identity_file,
            path=self.naming.hosts_path,
        )
        return {"public_ip": entry.hostname, "hosts_path": str(self.naming.hosts_path)}

    def _inject_credentials(self):
        log.info(f"Copying {self.secret.username_env} and {self.secret.token_env} to virtual machine \"{self.naming.vm}\"...")
        content = self.renderer.render("credentials.env.j2", {
            "username_env": self.secret.username_env,
            "token_env": self.secret.token_env,
            "username": self.secret.username,
            "token": self.secret.token,
        })
        remote = self.remote()
        remote.put_text(content, self.credentials_path, mode=0o600)

        source_line = f"[ -f ~/{CREDENTIALS_FILE} ] && . ~/{CREDENTIALS_FILE}"
        remote.run(
            f"touch ~/.bashrc && (grep -qxF {quote(source_line)} ~/.bashrc || echo {quote(source_line)} >> ~/.bashrc)"
        ).check("source credentials from ~/.bashrc")

    def _clone_script(self) -> str:
        u, t = self.secret.username_env, self.secret.token_env
        # the helper expands the variables itself; values never reach argv
        helper = f'!f() {{ echo "username=${{{u}}}"; echo "password=${{{t}}}"; }}; f'
        lines = [
            "set -e",
            f". {quote(self.credentials_path)}",
            f"cd {quote(self.config.remote_home)}",
        ]
        for repo in self.config.repositories:
            d = repo_dir(repo)
            lines.append(
                f"[ -d {quote(d + '/.git')} ] || git -c credential.helper={quote(helper)} clone {quote(repo_url(repo))} {quote(d)}"
            )
        return "\n".join(lines)

    def _clone_repositories(self):
        log.info(f"Cloning repositories on virtual machine \"{self.naming.vm}\"...")
        self.remote().run(self._clone_script()).check("clone repositories")

    def _repositories_present(self) -> bool:
        checks = " && ".join(
            f"[ -d {quote(posixpath.join(self.config.remote_home, repo_dir(r), '.git'))} ]"
            for r in self.config.repositories
        )
        return self.remote().run(checks or "true").ok

    # ------------------ workflow ------------------

    def steps(self) -> List[Step]:
        n = self.naming
        r = self.retry
        steps = [
            Step(
                name="key-pair",
                description=f"generate SSH key pair {n.key_path}",
                action=self._create_keys,
                check=self._keys_present,
                cleanup=self._remove_keys,
            ),
            Step(
                name="resource-group",
                description=f"create resource group {n.resource_group} in {n.region}",
                action=self._create_group,
                check=lambda: self.cloud.group_exists(n.resource_group),
                cleanup=self._delete_group,
                retry=r,
            ),
            Step(
                name="public-ip",
                depends_on=["resource-group"],
                description=f"create public IP {n.public_ip}",
                action=self._create_public_ip,
                check=lambda: self.cloud.public_ip_exists(n.resource_group, n.public_ip),
                retry=r,
            ),
            Step(
                name="vm",
                depends_on=["key-pair", "resource-group", "public-ip"],
                description=f"create virtual machine {n.vm}",
                action=self._create_vm,
                check=lambda: self.cloud.vm_exists(n.resource_group, n.vm),
                retry=r,
            ),
            Step(
                name="open-port",
                depends_on=["vm"],
                description=f"open port {self.config.ssh_port}",
                action=self._open_port,
                retry=r,
            ),
            Step(
                name="sshd-port",
                depends_on=["vm"],
                description=f"move sshd to port {self.config.ssh_port}",
                action=self._set_sshd_port,
                retry=r,
            ),
            Step(
                name="host-entry",
                depends_on=["vm"],
                description=f"write SSH host entry to {n.hosts_path}",
                action=self._write_host_entry,
                retry=r,
            ),
            Step(
                name="credentials",
                depends_on=["open-port", "sshd-port", "host-entry"],
                description="inject credentials into the remote profile",
                action=self._inject_credentials,
                retry=r,
            ),
            Step(
                name="repositories",
                depends_on=["credentials"],
                description=f"clone {len(self.config.repositories)} repositories",
                action=self._clone_repositories,
                check=self._repositories_present,
                retry=r,
            ),
        ]
        if self.config.run_bootstrap:
            bootstrapper = Bootstrapper(self.remote, self.bootstrap_config, retry=r)
            steps += bootstrapper.steps(after="repositories")
        return steps

    def run(self, *, observers: Optional[Observers] = None) -> RunReport:
        try:
            return run_steps(
                self.steps(),
                self.state,
                options=RunOptions(on_failure=self.config.on_failure, phase="provision", target=self.naming.vm),
                observers=observers,
            )
        finally:
            self.close()


def cleanup_run(state: RunState, cloud: CloudProvider, *, wait: bool = False) -> List[str]:
    """
    Delete everything a run recorded as created: the resource group (which
    holds the IP and VM) and the local key files. Returns what was removed.
    """
    removed: List[str] = []
    for artifact in list(state.artifacts):
        if artifact.startswith("resource-group:"):
            group = artifact.split(":", 1)[1]
            if cloud.group_exists(group):
                cloud.delete_group(group, wait=wait)
            removed.append(artifact)
        else:
            p = Path(artifact)
            if p.exists():
                p.unlink()
                log.info(f"Removed {p}")
            removed.append(artifact)
        state.remove_artifact(artifact)
    return removed
