import json
from types import SimpleNamespace
from pathlib import Path

import pytest
from typer.testing import CliRunner

import cloudstrap.cli.app as cli
import cloudstrap.provision.provisioner as provisioner
from cloudstrap.engine.models import RunReport, StepOutcome, StepStatus
from cloudstrap.engine.state import RunState
from cloudstrap.keys import KeyPair
from cloudstrap.naming import NamingContext
from cloudstrap.remote.interface import CommandResult

runner = CliRunner()


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def tools(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    for tool in ("az", "git", "ssh-keygen"):
        exe = bin_dir / tool
        exe.write_text("#!/bin/sh\nexit 0\n")
        exe.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir))
    return bin_dir


@pytest.fixture
def creds(monkeypatch):
    monkeypatch.setenv("GHUsername", "octo-cli")
    monkeypatch.setenv("CR_PAT", "ghp_cli_token")


def _log_text(home: Path) -> str:
    return "".join(p.read_text() for p in (home / ".cloudstrap" / "logs").glob("*.log"))


class FakeProvisioner:
    instances = []
    report = RunReport()

    def __init__(self, config, naming, secret, state, **kw):
        self.config, self.naming, self.secret, self.state, self.kw = config, naming, secret, state, kw
        FakeProvisioner.instances.append(self)

    def run(self, *, observers=None):
        return FakeProvisioner.report


@pytest.fixture
def fake_provisioner(monkeypatch):
    FakeProvisioner.instances = []
    FakeProvisioner.report = RunReport()
    monkeypatch.setattr(cli, "Provisioner", FakeProvisioner)
    monkeypatch.setattr(cli, "AzureCli", lambda: object())
    return FakeProvisioner


def test_check_ok(home, tools, creds):
    result = runner.invoke(cli.app, ["check"])
    assert result.exit_code == 0, result.output
    assert "All prerequisites are present" in _log_text(home)


def test_check_reports_every_missing_item(home, monkeypatch, tmp_path):
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))
    monkeypatch.delenv("GHUsername", raising=False)
    monkeypatch.delenv("CR_PAT", raising=False)

    result = runner.invoke(cli.app, ["check"])

    assert result.exit_code == 1
    text = _log_text(home)
    for item in ("env:GHUsername", "env:CR_PAT", "tool:az", "tool:git", "tool:ssh-keygen"):
        assert item in text


def test_provision_passes_overrides_and_reports_files(home, tools, creds, fake_provisioner):
    result = runner.invoke(cli.app, ["provision", "demo1", "--region", "westus2", "--on-failure", "cleanup"])

    assert result.exit_code == 0, result.output
    prov = fake_provisioner.instances[0]
    assert prov.naming.prefix == "demo1"
    assert prov.naming.region == "westus2"
    assert prov.naming.home == str(home)
    assert prov.config.on_failure == "cleanup"
    assert prov.secret.token == "ghp_cli_token"
    assert prov.state.path.exists()
    assert prov.state.path.parent == home / ".cloudstrap" / "state"

    text = _log_text(home)
    assert "Success!" in text
    assert str(prov.naming.key_path) in text
    assert str(prov.naming.hosts_path) in text
    assert "ghp_cli_token" not in text


def test_provision_failure_exits_1_with_resume_hint(home, tools, creds, fake_provisioner):
    fake_provisioner.report = RunReport(
        outcomes=[StepOutcome(name="vm", status=StepStatus.FAILED, attempts=1, error="bad image")],
        error="Step 'vm' failed: bad image",
        failed_step="vm",
    )

    result = runner.invoke(cli.app, ["provision", "demo1"])

    assert result.exit_code == 1
    text = _log_text(home)
    assert "Step 'vm' failed: bad image. Exiting." in text
    assert "cloudstrap provision --resume" in text


def test_provision_rejects_bad_prefix(home, tools, creds, fake_provisioner):
    result = runner.invoke(cli.app, ["provision", "Not_Valid"])
    assert result.exit_code == 1
    assert fake_provisioner.instances == []


def test_provision_stops_on_missing_prerequisites(home, tools, monkeypatch, fake_provisioner):
    monkeypatch.delenv("CR_PAT", raising=False)
    monkeypatch.setenv("GHUsername", "octo")
    result = runner.invoke(cli.app, ["provision"])
    assert result.exit_code == 1
    assert fake_provisioner.instances == []
    assert "env:CR_PAT" in _log_text(home)


def test_provision_resume_reuses_recorded_names(home, tools, creds, fake_provisioner):
    naming = NamingContext(prefix="demo1", region="eastus", suffix=7, home=str(home))
    state = RunState.for_naming(naming, state_dir=home / "states")
    state.mark("key-pair", StepStatus.SUCCEEDED)

    result = runner.invoke(cli.app, ["provision", "--resume", str(state.path)])

    assert result.exit_code == 0, result.output
    prov = fake_provisioner.instances[0]
    assert prov.naming == naming
    assert prov.state.run_id == state.run_id
    assert prov.state.status("key-pair") == StepStatus.SUCCEEDED


class FakeCloud:
    def __init__(self, ip="10.0.0.5"):
        self.ip = ip
        self.calls = []
        self.deleted = []
        self.groups, self.ips, self.vms = set(), set(), set()

    def group_exists(self, name): return name in self.groups
    def public_ip_exists(self, group, name): return name in self.ips
    def vm_exists(self, group, name): return name in self.vms

    def create_group(self, name, region):
        self.calls.append(("create_group", name, region))
        self.groups.add(name)

    def delete_group(self, name, *, wait=False):
        self.deleted.append((name, wait))
        self.groups.discard(name)

    def create_public_ip(self, group, name, **kw):
        self.calls.append(("create_public_ip", name))
        self.ips.add(name)

    def create_vm(self, group, name, **kw):
        self.calls.append(("create_vm", name, kw))
        self.vms.add(name)

    def open_port(self, group, name, port):
        self.calls.append(("open_port", name, port))

    def run_shell(self, group, name, script):
        self.calls.append(("run_shell", name, script))
        return CommandResult(0, "", "")

    def get_public_ip(self, group, name):
        return self.ip


def test_cleanup_deletes_recorded_artifacts(home, monkeypatch):
    cloud = FakeCloud()
    cloud.groups.add("demo1-rg-7")
    monkeypatch.setattr(cli, "AzureCli", lambda: cloud)
    key = home / "demo1-7-key"
    key.write_text("x")
    state_path = home / "run.json"
    state_path.write_text(json.dumps({"run_id": "r1", "artifacts": ["resource-group:demo1-rg-7", str(key)]}))

    result = runner.invoke(cli.app, ["cleanup", str(state_path), "--wait"])

    assert result.exit_code == 0, result.output
    assert cloud.deleted == [("demo1-rg-7", True)]
    assert not key.exists()


class FakeExecutor:
    target = "localhost"

    def __init__(self):
        self.scripts = []
        self.closed = False

    def run(self, script, *, sudo=False, timeout=None):
        self.scripts.append(script)
        return CommandResult(0, "", "")

    def close(self):
        self.closed = True


def test_bootstrap_local_runs_selected_steps(home, monkeypatch):
    ex = FakeExecutor()
    monkeypatch.setattr(cli, "LocalExecutor", lambda: ex)

    result = runner.invoke(cli.app, ["bootstrap", "--local", "--only", "jq"])

    assert result.exit_code == 0, result.output
    assert ex.scripts[0].startswith("for t in")
    assert ex.scripts[1:] == ["jq --version"]
    assert ex.closed


def test_bootstrap_needs_exactly_one_target(home):
    result = runner.invoke(cli.app, ["bootstrap"])
    assert result.exit_code == 2
    result = runner.invoke(cli.app, ["bootstrap", "--local", "--host", "10.0.0.5"])
    assert result.exit_code == 2


def test_bootstrap_unknown_step_exits_1(home, monkeypatch):
    monkeypatch.setattr(cli, "LocalExecutor", lambda: FakeExecutor())
    result = runner.invoke(cli.app, ["bootstrap", "--local", "--only", "terraform"])
    assert result.exit_code == 1
    assert "Unknown install steps: terraform" in _log_text(home)


# ----------------- full provisioning through the CLI -----------------

class FakeRemote:
    target = "azureuser@10.0.0.5:2222"

    def __init__(self):
        self.scripts = []
        self.files = []
        self.cloned = False

    def run(self, script, *, sudo=False, timeout=None):
        self.scripts.append(script)
        if script.startswith("[ -d"):
            return CommandResult(0 if self.cloned else 1)
        if "credential.helper" in script:
            self.cloned = True
        return CommandResult(0, "", "")

    def put_text(self, content, remote_path, *, mode=0o600):
        self.files.append((remote_path, content, mode))

    def close(self):
        pass


class FakeKeygen:
    def generate(self, key_path):
        pair = KeyPair(private=Path(key_path), public=Path(f"{key_path}.pub"))
        pair.private.write_text("PRIVATE")
        pair.public.write_text("ssh-rsa AAAA")
        return pair

    @staticmethod
    def remove(pair):
        pair.private.unlink(missing_ok=True)
        pair.public.unlink(missing_ok=True)


@pytest.fixture
def world(monkeypatch):
    cloud, remote, targets = FakeCloud(), FakeRemote(), []

    def ssh_executor(target, connect_retry=None):
        targets.append((target, connect_retry))
        return remote

    monkeypatch.setattr(cli, "AzureCli", lambda: cloud)
    monkeypatch.setattr(provisioner, "KeyPairGenerator", FakeKeygen)
    monkeypatch.setattr(provisioner, "SSHExecutor", ssh_executor)
    return SimpleNamespace(cloud=cloud, remote=remote, targets=targets)


def test_provision_end_to_end_writes_the_host_entry(home, tools, creds, world):
    result = runner.invoke(cli.app, ["provision", "demo1"])

    assert result.exit_code == 0, result.output

    key = next(p for p in home.glob("demo1-*-key"))
    stanza = (home / "demo1-hosts-entry.txt").read_text()
    suffix = key.name.split("-")[1]
    assert f"Host demo1-vm-{suffix}" in stanza
    assert "Hostname 10.0.0.5" in stanza
    assert "User azureuser" in stanza
    assert "Port 2222" in stanza
    assert f"IdentityFile ~/Downloads/{key.name}" in stanza

    assert [c[0] for c in world.cloud.calls] == [
        "create_group", "create_public_ip", "create_vm", "open_port", "run_shell",
    ]
    target, connect_retry = world.targets[0]
    assert (target.address, target.port, target.pkey_path) == ("10.0.0.5", 2222, key)
    assert connect_retry.attempts == 3
    assert world.remote.files[0][0] == "/home/azureuser/.cloudstrap/credentials.env"
    assert world.remote.files[0][2] == 0o600
    assert world.remote.cloned

    state = RunState.load(next((home / ".cloudstrap" / "state").glob("demo1-*.json")))
    assert state.status("repositories") == StepStatus.SUCCEEDED
    assert f"resource-group:{world.cloud.calls[0][1]}" in state.artifacts

    text = _log_text(home)
    assert "Success!" in text
    assert f'The private key at: "{key}"' in text
    assert f'The host file entry at: "{home / "demo1-hosts-entry.txt"}"' in text
    assert "ghp_cli_token" not in text


def test_username_in_home_path_is_not_redacted(tmp_path, tools, monkeypatch, world):
    home = tmp_path / "glenn"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GHUsername", "glenn")
    monkeypatch.setenv("CR_PAT", "ghp_glenn_token")

    result = runner.invoke(cli.app, ["provision", "demo1"])

    assert result.exit_code == 0, result.output
    key = next(p for p in home.glob("demo1-*-key"))
    text = _log_text(home)
    assert f'The private key at: "{key}"' in text
    assert "/glenn/" in text
    assert "ghp_glenn_token" not in text


# ----------------- unreadable config and state files -----------------

def test_provision_resume_with_missing_state_file_exits_1(home, tools, creds, fake_provisioner):
    result = runner.invoke(cli.app, ["provision", "--resume", str(home / "nope.json")])

    assert result.exit_code == 1
    assert not isinstance(result.exception, FileNotFoundError)
    assert fake_provisioner.instances == []
    assert "Cannot read state file" in _log_text(home)


def test_provision_resume_without_naming_exits_1(home, tools, creds, fake_provisioner):
    state_path = home / "bare.json"
    state_path.write_text(json.dumps({"run_id": "r1"}))

    result = runner.invoke(cli.app, ["provision", "--resume", str(state_path)])

    assert result.exit_code == 1
    assert "no naming context" in _log_text(home)


def test_cleanup_with_missing_state_file_exits_1(home, monkeypatch):
    monkeypatch.setattr(cli, "AzureCli", lambda: FakeCloud())
    result = runner.invoke(cli.app, ["cleanup", str(home / "nope.json")])

    assert result.exit_code == 1
    assert "Cannot read state file" in _log_text(home)


def test_invalid_config_exits_1(home, tools, creds):
    cfg = home / "cloudstrap.yaml"
    cfg.write_text("provision:\n  ssh_port: 99999\n")

    result = runner.invoke(cli.app, ["check", "--config", str(cfg)])

    assert result.exit_code == 1
    assert "provision.ssh_port" in _log_text(home)
