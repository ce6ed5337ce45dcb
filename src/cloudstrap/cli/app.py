# src/cloudstrap/cli/app.py
from pathlib import Path
from typing import Optional

import typer

from cloudstrap.bootstrap.bootstrapper import Bootstrapper
from cloudstrap.cloud.azure import AzureCli
from cloudstrap.config.loader import load_config
from cloudstrap.engine.executor import RunOptions
from cloudstrap.engine.state import RunState
from cloudstrap.errors import CloudstrapError
from cloudstrap.logging.log import init_logging
from cloudstrap.naming import InvalidPrefixError, NamingContext
from cloudstrap.observers.console import ConsoleObserver
from cloudstrap.observers.dispatcher import EventBus
from cloudstrap.observers.events import PreconditionsChecked, new_ctx
from cloudstrap.observers.interface import Observers
from cloudstrap.observers.jsonfile import JsonFileObserver
from cloudstrap.observers.logger import LoggerObserver
from cloudstrap.preconditions import check_preconditions
from cloudstrap.provision.provisioner import Provisioner, cleanup_run
from cloudstrap.remote.local import LocalExecutor
from cloudstrap.remote.ssh import SSHExecutor, SSHTarget
from cloudstrap.secrets import RemoteSecret, scrub


app = typer.Typer(help="cloudstrap: provision an Azure VM and bootstrap its toolchain")


def _observers(logger, log_path: Path, events: bool) -> Observers:
    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    if events:
        observers.append(ConsoleObserver())
    return observers


def _fail(logger, exc: Exception) -> None:
    logger.error(f"{scrub(str(exc))}. Exiting.")
    raise typer.Exit(code=1)


@app.command()
def check(
    config: Optional[Path] = typer.Option(None, "--config", "-f", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Verify the required environment variables and tools, reporting every missing item.
    """
    logger, run_id, log_path = init_logging(verbose=verbose)
    try:
        pc = load_config(config).provision
        report = check_preconditions(pc.required_env, pc.required_tools)
        report.raise_for_missing()
    except CloudstrapError as exc:
        _fail(logger, exc)
    logger.info("All prerequisites are present")


@app.command()
def provision(
    prefix: Optional[str] = typer.Argument(None, help="Resource naming prefix (default: space-sdk-demo)"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Azure region (default: eastus)"),
    config: Optional[Path] = typer.Option(None, "--config", "-f", help="YAML configuration file"),
    resume: Optional[Path] = typer.Option(
        None, "--resume", help="Resume a previous run from its state file"
    ),
    on_failure: Optional[str] = typer.Option(
        None, "--on-failure", help="What to do with created resources when a step fails: leave | cleanup"
    ),
    bootstrap: Optional[bool] = typer.Option(
        None, "--bootstrap/--no-bootstrap", help="Run the install steps on the new VM"
    ),
    events: bool = typer.Option(False, "--events", help="Print lifecycle events on the console"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Provisioning workflow:
      1) check prerequisites (all missing items reported at once)
      2) SSH key pair, resource group, public IP, VM, custom SSH port
      3) local SSH host entry
      4) credentials + repositories on the VM
      5) optionally, the bootstrap install steps over SSH
    """
    logger, run_id, log_path = init_logging(verbose=verbose)

    try:
        cfg = load_config(config)
        overrides = {}
        if prefix is not None:
            overrides["prefix"] = prefix
        if region is not None:
            overrides["region"] = region
        if on_failure is not None:
            if on_failure not in ("leave", "cleanup"):
                raise typer.BadParameter("--on-failure must be 'leave' or 'cleanup'")
            overrides["on_failure"] = on_failure
        if bootstrap is not None:
            overrides["run_bootstrap"] = bootstrap
        pc = cfg.provision.model_copy(update=overrides)

        observers = _observers(logger, log_path, events)

        pre = check_preconditions(pc.required_env, pc.required_tools)
        EventBus(observers).emit(
            PreconditionsChecked(ok=pre.ok, missing=pre.missing, **new_ctx("provision", None, run_id))
        )
        pre.raise_for_missing()

        secret = RemoteSecret.from_env(pc.username_env, pc.token_env)

        if resume is not None:
            state = RunState.load(resume)
            naming = state.naming_context()
            logger.info(f"Resuming run {state.run_id} for \"{naming.vm}\" from {resume}")
        else:
            naming = NamingContext.generate(pc.prefix, pc.region, home=pc.home)
            state = RunState.for_naming(naming)
            state.run_id = run_id
            state.save()
        logger.info(f"State file: {state.path}")

        provisioner = Provisioner(
            pc,
            naming,
            secret,
            state,
            cloud=AzureCli(),
            retry=cfg.retry,
            bootstrap=cfg.bootstrap,
        )
        report = provisioner.run(observers=observers)
    except (CloudstrapError, InvalidPrefixError) as exc:
        _fail(logger, exc)

    if not report.ok:
        logger.error(f"{report.error}. Exiting.")
        if pc.on_failure == "leave":
            logger.warning("Created resources were left in place. To resume:")
            logger.warning(f"  cloudstrap provision --resume {state.path}")
            logger.warning("To delete them:")
            logger.warning(f"  cloudstrap cleanup {state.path}")
        raise typer.Exit(code=1)

    logger.info("Success! You'll need to download two files to your Downloads directory:")
    logger.info(f"The private key at: \"{naming.key_path}\"")
    logger.info(f"The host file entry at: \"{naming.hosts_path}\"")


@app.command()
def bootstrap(
    host: Optional[str] = typer.Option(None, "--host", help="Address of the machine to bootstrap over SSH"),
    port: int = typer.Option(2222, "--port", "-p", help="SSH port"),
    user: str = typer.Option("azureuser", "--user", "-u", help="SSH username"),
    key: Optional[Path] = typer.Option(None, "--key", "-k", help="Path to SSH private key"),
    local: bool = typer.Option(False, "--local", help="Install on this machine instead of over SSH"),
    config: Optional[Path] = typer.Option(None, "--config", "-f", help="YAML configuration file"),
    only: Optional[str] = typer.Option(
        None, "--only", help="Comma-separated install steps to run (dependencies are added). Default: all."
    ),
    state_file: Optional[Path] = typer.Option(
        None, "--state", help="State file; completed steps recorded there are skipped"
    ),
    events: bool = typer.Option(False, "--events", help="Print lifecycle events on the console"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Install the toolchain (Azure CLI, k3s, Helm, Dapr, Docker, docker-compose,
    docker-ce, jq, ORAS) on a provisioned machine.
    """
    if local == (host is not None):
        raise typer.BadParameter("Pass exactly one of --host or --local")

    logger, run_id, log_path = init_logging(verbose=verbose)
    try:
        cfg = load_config(config)
        bc = cfg.bootstrap
        if only:
            bc = bc.model_copy(update={"only": [s.strip() for s in only.split(",") if s.strip()]})

        if local:
            executor = LocalExecutor()
        else:
            executor = SSHExecutor(
                SSHTarget(address=host, username=user, port=port, pkey_path=key),
                connect_retry=cfg.retry,
            )

        if state_file is not None and state_file.exists():
            state = RunState.load(state_file)
        else:
            state = RunState(run_id=run_id, path=state_file)

        try:
            report = Bootstrapper(executor, bc, retry=cfg.retry).run(
                state,
                observers=_observers(logger, log_path, events),
                options=RunOptions(phase="bootstrap", target=executor.target),
            )
        finally:
            executor.close()
    except (CloudstrapError, ValueError) as exc:
        _fail(logger, exc)

    if not report.ok:
        logger.error(f"{report.error}. Exiting.")
        raise typer.Exit(code=1)
    logger.info("Bootstrap finished")


@app.command()
def cleanup(
    state_file: Path = typer.Argument(..., help="State file written by `cloudstrap provision`"),
    wait: bool = typer.Option(False, "--wait", help="Block until the resource group is deleted"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug output on the console"),
):
    """
    Delete the resource group and local key files recorded by a run.
    """
    logger, run_id, log_path = init_logging(verbose=verbose)
    try:
        state = RunState.load(state_file)
        removed = cleanup_run(state, AzureCli(), wait=wait)
    except CloudstrapError as exc:
        _fail(logger, exc)

    if not removed:
        logger.info("Nothing to clean up")
    for item in removed:
        logger.info(f"Removed {item}")


if __name__ == "__main__":
    app()
