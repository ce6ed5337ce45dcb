# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/cloudstrap/remote/ssh.py
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

from ..config.models import RetryPolicy
from ..errors import ExternalCallError
from ..execution.retry import call_with_retry
from ..secrets import scrub
from .interface import CommandResult

log = logging.getLogger("cloudstrap")


@dataclass
class SSHTarget:
    address: str
    username: str
    port: int = 22
    pkey_path: Optional[Path] = None


def quote(s: str) -> str:
    """
    Quote for bash -lc.
    """
    return "'" + s.replace("'", "'\"'\"'") + "'"


def _load_pkey(key_path: str):
    for key_cls in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key_file(key_path)
        except paramiko.SSHException:
            continue
    raise ExternalCallError(f"load key {key_path}", 1, "unsupported private key format", retriable=False)


class SSHExecutor:
    """
    RemoteExecutor over paramiko. The connection is opened lazily and retried,
    since sshd restarts on the custom port right before first use.
    """

    def __init__(
        self,
        target: SSHTarget,
        *,
        connect_timeout: float = 30.0,
        cmd_timeout: float = 1800.0,
        connect_retry: Optional[RetryPolicy] = None,
    ):
        self.host = target
        self.target = f"{target.username}@{target.address}:{target.port}"
        self.connect_timeout = connect_timeout
        self.cmd_timeout = cmd_timeout
        self.connect_retry = connect_retry or RetryPolicy(attempts=5, backoff_seconds=5.0)
        self._client: Optional[paramiko.SSHClient] = None

    # ------------------ connection ------------------

    def _connect_once(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        pkey = _load_pkey(str(self.host.pkey_path)) if self.host.pkey_path else None
        try:
            client.connect(
                hostname=self.host.address,
                port=self.host.port,
                username=self.host.username,
                pkey=pkey,
                look_for_keys=pkey is None,
                allow_agent=pkey is None,
                timeout=self.connect_timeout,
            )
        except paramiko.AuthenticationException as exc:
            raise ExternalCallError(f"ssh {self.target}", 255, str(exc), retriable=False) from exc
        except (paramiko.SSHException, OSError) as exc:
            # refused/reset while sshd restarts
            raise ExternalCallError(f"ssh {self.target}", 255, f"connection reset: {exc}", retriable=True) from exc
        return client

    @property
    def client(self) -> paramiko.SSHClient:
        if self._client is None:
            log.info(f"Connecting to {self.target}...")
            self._client = call_with_retry(
                self._connect_once,
                self.connect_retry,
                on_retry=lambda a, e, d: log.warning(f"ssh connect attempt {a} failed ({e}); retrying in {d:.1f}s"),
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------ commands ------------------

    def run(self, script: str, *, sudo: bool = False, timeout: Optional[float] = None) -> CommandResult:
        if sudo:
            cmd = f"sudo -H -E bash -lc {quote(script)}"
        else:
            cmd = f"bash -lc {quote(script)}"

        log.debug(f"({self.target}) $ {scrub(cmd)}")
        stdin, stdout, stderr = self.client.exec_command(cmd, timeout=timeout or self.cmd_timeout)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace")
        rc = stdout.channel.recv_exit_status()
        if out.strip():
            log.debug(f"({self.target}) [stdout]\n{out.rstrip()}")
        if err.strip():
            log.debug(f"({self.target}) [stderr]\n{err.rstrip()}")
        log.debug(f"({self.target}) [exit {rc}]")
        return CommandResult(returncode=rc, stdout=out, stderr=err)

    def put_text(self, content: str, remote_path: str, *, mode: int = 0o600) -> None:
        """
        Write content through SFTP. Permissions are set before any byte is
        written, so the file is never readable by others.
        """
        parent = posixpath.dirname(remote_path)
        if parent:
            self.run(f"install -d -m 700 {quote(parent)}").check(f"mkdir {parent}")

        sftp = self.client.open_sftp()
        try:
            f = sftp.open(remote_path, "w")
            try:
                sftp.chmod(remote_path, mode)
                f.write(content)
            finally:
                f.close()
        finally:
            sftp.close()
        log.debug(f"({self.target}) wrote {remote_path} mode={oct(mode)}")
