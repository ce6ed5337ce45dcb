import os
import stat
import subprocess
import types
from pathlib import Path

import paramiko
import pytest

from cloudstrap.config.models import RetryPolicy
from cloudstrap.errors import ExternalCallError
from cloudstrap.remote.local import LocalExecutor
from cloudstrap.remote.ssh import SSHExecutor, SSHTarget, quote

# ----------------- Fakes for Paramiko -----------------

class _FakeChannel:
    def __init__(self, rc=0): self._rc = rc
    def recv_exit_status(self): return self._rc

class _Buf:
    def __init__(self, s=""): self._s = s
    def read(self): return self._s.encode()

class _FakeFile:
    def __init__(self, log, path):
        self._buf = []
        self.log = log
        self.path = path
    def write(self, data):
        self.log.append(("sftp_write", self.path, data))
    def close(self):
        self.log.append(("sftp_file_close", self.path))

class FakeSFTP:
    def __init__(self, log): self.log = log
    def open(self, path, mode):
        self.log.append(("sftp_open", path, mode))
        return _FakeFile(self.log, path)
    def chmod(self, path, mode):
        self.log.append(("sftp_chmod", path, mode))
    def close(self): self.log.append(("sftp_close",))

class FakeSSHClient:
    def __init__(self, log, responses=None, connect_errors=None):
        self.log = log
        self._responses = responses or {}
        self._connect_errors = connect_errors if connect_errors is not None else []
    def set_missing_host_key_policy(self, policy): pass
    def connect(self, **kw):
        self.log.append(("connect", kw))
        if self._connect_errors:
            raise self._connect_errors.pop(0)
    def open_sftp(self):
        return FakeSFTP(self.log)
    def exec_command(self, cmd, timeout=None):
        self.log.append(("exec", cmd))
        out = self._responses.get(cmd, ("", "", 0))
        stdout = _Buf(out[0])
        stderr = _Buf(out[1])
        stdout.channel = _FakeChannel(out[2])
        return types.SimpleNamespace(), stdout, stderr
    def close(self):
        self.log.append(("close",))


def _patch_client(monkeypatch, log, **kw):
    monkeypatch.setattr(paramiko, "SSHClient", lambda: FakeSSHClient(log, **kw))


def _executor(**kw):
    return SSHExecutor(
        SSHTarget(address="10.0.0.5", username="azureuser", port=2222),
        connect_retry=RetryPolicy(attempts=3, backoff_seconds=0),
        **kw,
    )

# ----------------- Tests -----------------

def test_run_wraps_script_in_login_shell(monkeypatch):
    log = []
    cmd = "bash -lc " + quote("echo hi")
    _patch_client(monkeypatch, log, responses={cmd: ("hi\n", "", 0)})

    ex = _executor()
    result = ex.run("echo hi")

    assert result.ok and result.stdout == "hi\n"
    connect = next(e for e in log if e[0] == "connect")[1]
    assert connect["hostname"] == "10.0.0.5"
    assert connect["port"] == 2222
    assert connect["username"] == "azureuser"
    assert ex.target == "azureuser@10.0.0.5:2222"


def test_sudo_and_exit_status(monkeypatch):
    log = []
    cmd = "sudo -H -E bash -lc " + quote("apt-get install -y jq")
    _patch_client(monkeypatch, log, responses={cmd: ("", "E: Unable to locate package jq", 100)})

    result = _executor().run("apt-get install -y jq", sudo=True)

    assert ("exec", cmd) in log
    assert result.returncode == 100
    with pytest.raises(ExternalCallError) as ei:
        result.check("install jq")
    assert "Unable to locate package" in str(ei.value)


def test_connection_refused_is_retried(monkeypatch):
    log = []
    _patch_client(monkeypatch, log, connect_errors=[ConnectionRefusedError("refused")])

    _executor().run("true")

    assert len([e for e in log if e[0] == "connect"]) == 2


def test_authentication_failure_is_not_retried(monkeypatch):
    log = []
    _patch_client(monkeypatch, log, connect_errors=[paramiko.AuthenticationException("denied")] * 3)

    with pytest.raises(ExternalCallError) as ei:
        _executor().run("true")

    assert not ei.value.retriable
    assert len([e for e in log if e[0] == "connect"]) == 1


def test_put_text_sets_mode_before_writing(monkeypatch):
    log = []
    _patch_client(monkeypatch, log)

    _executor().put_text("export CR_PAT=x\n", "/home/azureuser/.cloudstrap/credentials.env", mode=0o600)

    assert ("exec", "bash -lc " + quote("install -d -m 700 '/home/azureuser/.cloudstrap'")) in log
    sftp_ops = [e[0] for e in log if e[0].startswith("sftp_")]
    assert sftp_ops == ["sftp_open", "sftp_chmod", "sftp_write", "sftp_file_close", "sftp_close"]
    assert ("sftp_chmod", "/home/azureuser/.cloudstrap/credentials.env", 0o600) in log


def test_close_closes_client(monkeypatch):
    log = []
    _patch_client(monkeypatch, log)
    ex = _executor()
    ex.run("true")
    ex.close()
    assert log[-1] == ("close",)


def test_quote_survives_single_quotes():
    assert quote("it's") == "'it'\"'\"'s'"

# ----------------- Local executor -----------------

def test_local_executor_runs_bash(monkeypatch):
    calls = []

    def fake_run(argv, **kw):
        calls.append(argv)
        return subprocess.CompletedProcess(argv, 3, "out", "err")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = LocalExecutor().run("jq --version", sudo=True)
    assert calls[0] == ["sudo", "-H", "-E", "bash", "-lc", "jq --version"]
    assert result.returncode == 3
    assert not result.ok


def test_local_put_text_is_private(tmp_path: Path):
    target = tmp_path / "sub" / "credentials.env"
    LocalExecutor().put_text("secret\n", str(target), mode=0o600)
    assert target.read_text() == "secret\n"
    assert stat.S_IMODE(os.stat(target).st_mode) == 0o600
