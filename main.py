import json
import os
import shutil
from pathlib import Path

import paramiko
import requests
import typer
from dotenv import load_dotenv

from cli import display
from drivers import DriverError, DriverOptions, State, get_driver
from drivers.atlanticnet import (
    DEFAULT_IMAGE_ID,
    DEFAULT_PLAN_NAME,
    DEFAULT_SSH_KEY_PATH,
    DEFAULT_VM_LOCATION,
    DOCKER_PORT,
    DRIVER_NAME,
)

CONFIG_FILE = "config.json"
DEFAULT_STORAGE_PATH = str(Path.home() / ".atlanticnet-machine")

# Failures reported to the user instead of a traceback
_ERRORS = (DriverError, requests.RequestException, paramiko.SSHException, OSError)

app = typer.Typer(help="Create and manage Atlantic.Net machines.")
load_dotenv()


def machine_dir(storage_path, name):
    return os.path.join(storage_path, "machines", name)


def save_machine(driver):
    path = machine_dir(driver.store_path, driver.machine_name)
    os.makedirs(path, exist_ok=True)
    with open(os.path.join(path, CONFIG_FILE), "w") as f:
        json.dump(driver.to_dict(), f, indent=4)


def load_machine(storage_path, name):
    config_path = os.path.join(machine_dir(storage_path, name), CONFIG_FILE)
    if not os.path.exists(config_path):
        return None
    with open(config_path, "r") as f:
        data = json.load(f)
    driver = get_driver(data.get("driver", DRIVER_NAME), name, storage_path)
    driver.load_dict(data)
    return driver


def _require_machine(ctx, name):
    driver = load_machine(ctx.obj["storage_path"], name)
    if driver is None:
        display.print_error(f"Machine '{name}' does not exist. Run 'create' first.")
        raise typer.Exit(code=1)
    return driver


def _fail(ex):
    display.print_error(str(ex) or ex.__class__.__name__)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    storage_path: str = typer.Option(
        DEFAULT_STORAGE_PATH, "--storage-path", "-s", envvar="MACHINE_STORAGE_PATH",
        help="Directory holding machine configuration and keys."),
    debug: bool = typer.Option(False, "--debug", "-D", help="Enable debug logging."),
):
    """Create and manage Atlantic.Net machines."""
    display.setup_logging(debug)
    ctx.obj = {"storage_path": os.path.expanduser(storage_path)}


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Machine name, also used as the server name."),
    api_key: str = typer.Option(
        "", "--atlantic-net-api-key", envvar="ATLANTIC_NET_API_KEY",
        help="Atlantic.Net API key"),
    api_secret: str = typer.Option(
        "", "--atlantic-net-api-secret", envvar="ATLANTIC_NET_API_SECRET",
        help="Atlantic.Net API secret"),
    ssh_key_id: str = typer.Option(
        "", "--atlantic-net-ssh-key-id", envvar="ATLANTIC_NET_SSH_KEY_ID",
        help="Atlantic.Net SSH key id"),
    ssh_key_path: str = typer.Option(
        DEFAULT_SSH_KEY_PATH, "--atlantic-net-ssh-key-path", envvar="ATLANTIC_NET_SSH_KEY_PATH",
        help="Atlantic.Net SSH key path"),
    image_id: str = typer.Option(
        DEFAULT_IMAGE_ID, "--atlantic-net-image-id", envvar="ATLANTIC_NET_IMAGE_ID",
        help="Atlantic.Net image id"),
    plan_name: str = typer.Option(
        DEFAULT_PLAN_NAME, "--atlantic-net-plan-name", envvar="ATLANTIC_NET_PLAN_NAME",
        help="Atlantic.Net plan name"),
    vm_location: str = typer.Option(
        DEFAULT_VM_LOCATION, "--atlantic-net-vm-location", envvar="ATLANTIC_NET_VM_LOCATION",
        help="Atlantic.Net vm location"),
    swarm_master: bool = typer.Option(
        False, "--swarm-master", help="Configure Machine to be a Swarm master"),
    swarm_host: str = typer.Option(
        "tcp://0.0.0.0:3376", "--swarm-host", help="ip/socket to listen on for Swarm master"),
    swarm_discovery: str = typer.Option(
        "", "--swarm-discovery", help="Discovery service to use with Swarm"),
):
    """Validates the options, creates the server and saves it to the store."""
    storage_path = ctx.obj["storage_path"]
    if load_machine(storage_path, name) is not None:
        display.print_error(f"Machine '{name}' already exists.")
        raise typer.Exit(code=1)

    driver = get_driver(DRIVER_NAME, name, storage_path)
    display.print_banner(driver.driver_name())

    options = DriverOptions({
        "atlantic-net-api-key": api_key,
        "atlantic-net-api-secret": api_secret,
        "atlantic-net-ssh-key-id": ssh_key_id,
        "atlantic-net-ssh-key-path": os.path.expanduser(ssh_key_path),
        "atlantic-net-image-id": image_id,
        "atlantic-net-plan-name": plan_name,
        "atlantic-net-vm-location": vm_location,
        "swarm-master": swarm_master,
        "swarm-host": swarm_host,
        "swarm-discovery": swarm_discovery,
    }, driver.get_create_flags())

    try:
        driver.set_config_from_flags(options)
        driver.pre_create_check()
        os.makedirs(machine_dir(storage_path, name), exist_ok=True)
        driver.create()
    except _ERRORS as ex:
        # Keep whatever was created so it can still be removed with 'rm'.
        if getattr(driver, "instance_id", ""):
            save_machine(driver)
        else:
            shutil.rmtree(machine_dir(storage_path, name), ignore_errors=True)
        _fail(ex)

    save_machine(driver)
    display.print_success(f"🎉 Machine '{name}' created at {driver.ip_address}")


@app.command()
def status(ctx: typer.Context, name: str = typer.Argument(...)):
    """Shows the machine's live state as reported by the provider."""
    driver = _require_machine(ctx, name)
    try:
        state = driver.get_state()
    except _ERRORS as ex:
        _fail(ex)
    docker_url = None
    if state == State.RUNNING and driver.ip_address:
        docker_url = f"tcp://{driver.ip_address}:{DOCKER_PORT}"
    display.print_status_panel(driver.to_dict(), state.value, docker_url)


@app.command()
def ip(ctx: typer.Context, name: str = typer.Argument(...)):
    """Prints the machine's public IP address."""
    driver = _require_machine(ctx, name)
    try:
        typer.echo(driver.get_ip())
    except _ERRORS as ex:
        _fail(ex)


@app.command()
def url(ctx: typer.Context, name: str = typer.Argument(...)):
    """Prints the Docker URL of a running machine."""
    driver = _require_machine(ctx, name)
    try:
        typer.echo(driver.get_url())
    except _ERRORS as ex:
        _fail(ex)


@app.command()
def restart(ctx: typer.Context, name: str = typer.Argument(...)):
    """Soft-reboots the machine."""
    driver = _require_machine(ctx, name)
    try:
        driver.restart()
    except _ERRORS as ex:
        _fail(ex)
    display.print_success(f"Machine '{name}' restarted.")


@app.command()
def start(ctx: typer.Context, name: str = typer.Argument(...)):
    """Starts the machine (if the driver supports it)."""
    driver = _require_machine(ctx, name)
    try:
        driver.start()
    except _ERRORS as ex:
        _fail(ex)


@app.command()
def stop(ctx: typer.Context, name: str = typer.Argument(...)):
    """Stops the machine (if the driver supports it)."""
    driver = _require_machine(ctx, name)
    try:
        driver.stop()
    except _ERRORS as ex:
        _fail(ex)


@app.command()
def kill(ctx: typer.Context, name: str = typer.Argument(...)):
    """Forcefully stops the machine (if the driver supports it)."""
    driver = _require_machine(ctx, name)
    try:
        driver.kill()
    except _ERRORS as ex:
        _fail(ex)


@app.command()
def rm(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    force: bool = typer.Option(False, "--force", "-f", help="Do not ask for confirmation."),
):
    """Terminates the server and deletes the machine from the store."""
    driver = _require_machine(ctx, name)
    if not force and not typer.confirm(
        f"🔥 This will terminate '{name}' ({driver.instance_id}). Are you sure?"
    ):
        raise typer.Abort()
    try:
        driver.remove()
    except _ERRORS as ex:
        _fail(ex)
    shutil.rmtree(machine_dir(driver.store_path, name), ignore_errors=True)
    display.print_success(f"Machine '{name}' removed.")


@app.command()
def flags():
    """Lists the create options the driver accepts."""
    driver = get_driver(DRIVER_NAME)
    display.print_flags_table(driver.get_create_flags(), driver.driver_name())


if __name__ == "__main__":
    app()
