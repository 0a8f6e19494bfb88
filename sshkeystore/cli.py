"""sshkeystore CLI - provision and serve SSH keys for configuration management."""

import logging
from pathlib import Path
from typing import Optional

import typer
import yaml

from . import config
from .errors import SSHKeyStoreError
from .request import HostFacts
from .service import KeyRequestService
from .store import KeyStore

app = typer.Typer(
    name="sshkeystore",
    help="Generate SSH keys on first use and serve keys and trust ledgers.",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log what is being done"),
):
    """Generate SSH keys on first use and serve keys and trust ledgers."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def get_settings(config_path: Optional[Path], base_path: Optional[Path]) -> config.Settings:
    """Load settings, applying a --base-path override."""
    try:
        settings = config.load_settings(config_path)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if base_path is not None:
        settings.base_path = base_path
    return settings


def _host_facts(
    hostname: Optional[str],
    fqdn: Optional[str],
    ip_address: Optional[str],
) -> HostFacts:
    """Detected host facts, with any explicitly given ones taking precedence."""
    if hostname is not None and fqdn is not None and ip_address is not None:
        return HostFacts(hostname=hostname, fqdn=fqdn, ip_address=ip_address)

    detected = HostFacts.detect()
    return HostFacts(
        hostname=hostname if hostname is not None else detected.hostname,
        fqdn=fqdn if fqdn is not None else detected.fqdn,
        ip_address=ip_address if ip_address is not None else detected.ip_address,
    )


# =============================================================================
# Request Commands
# =============================================================================

@app.command("request")
def request(
    name: Optional[str] = typer.Argument(None, help="Key name (optional for ledger requests)"),
    kind: str = typer.Option(..., "--request", "-r", help="public, private, known_hosts or authorized_keys"),
    key_type: Optional[str] = typer.Option(None, "--type", "-t", help="Key type (default from settings)"),
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory under the base path"),
    hostkey: bool = typer.Option(False, "--hostkey", help="Register the key in known_hosts"),
    authkey: bool = typer.Option(False, "--authkey", help="Register the key in authorized_keys"),
    comment: Optional[str] = typer.Option(None, "--comment", "-C", help="Key comment"),
    aliases: list[str] = typer.Option([], "--alias", "-a", help="Extra known_hosts name (repeatable)"),
    bits: Optional[int] = typer.Option(None, "--bits", help="Key size in bits"),
    hostname: Optional[str] = typer.Option(None, "--hostname", help="Override detected hostname"),
    fqdn: Optional[str] = typer.Option(None, "--fqdn", help="Override detected FQDN"),
    ip_address: Optional[str] = typer.Option(None, "--ip", help="Override detected IP address"),
    base_path: Optional[Path] = typer.Option(None, "--base-path", "-b", help="Root of the key tree"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
):
    """Ensure a key exists and print the requested artifact."""
    settings = get_settings(config_path, base_path)
    service = KeyRequestService(settings, host=_host_facts(hostname, fqdn, ip_address))

    data: dict = {
        "name": name,
        "request": kind,
        "hostkey": hostkey,
        "authkey": authkey,
        "comment": comment,
        "hostaliases": aliases,
        "bits": bits,
    }
    if key_type is not None:
        data["type"] = key_type
    if directory is not None:
        data["dir"] = directory

    try:
        result = service.fulfil(data)
    except SSHKeyStoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(result, nl=False)


@app.command("batch")
def batch(
    file: Path = typer.Argument(..., help="YAML file with a list of requests"),
    hostname: Optional[str] = typer.Option(None, "--hostname", help="Override detected hostname"),
    fqdn: Optional[str] = typer.Option(None, "--fqdn", help="Override detected FQDN"),
    ip_address: Optional[str] = typer.Option(None, "--ip", help="Override detected IP address"),
    base_path: Optional[Path] = typer.Option(None, "--base-path", "-b", help="Root of the key tree"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
):
    """Fulfil every request in a YAML file and print the results as YAML.

    Stops at the first failing request.
    """
    if not file.exists():
        typer.echo(f"Error: File not found: {file}", err=True)
        raise typer.Exit(1)

    try:
        requests = yaml.safe_load(file.read_text())
    except yaml.YAMLError as e:
        typer.echo(f"Error: Invalid YAML in {file}: {e}", err=True)
        raise typer.Exit(1)

    if not isinstance(requests, list):
        typer.echo(f"Error: {file} must contain a list of requests", err=True)
        raise typer.Exit(1)

    settings = get_settings(config_path, base_path)
    service = KeyRequestService(settings, host=_host_facts(hostname, fqdn, ip_address))

    results = []
    for i, data in enumerate(requests):
        try:
            key_request = service.build_request(data)
            result = service.fulfil(key_request)
        except SSHKeyStoreError as e:
            typer.echo(f"Error: request #{i + 1}: {e}", err=True)
            raise typer.Exit(1)

        results.append({
            "name": key_request.name,
            "request": key_request.request_kind.value,
            "result": result,
        })

    typer.echo(yaml.safe_dump(results, default_flow_style=False, sort_keys=False), nl=False)


# =============================================================================
# Utility Commands
# =============================================================================

@app.command("list")
def list_keys(
    directory: Optional[str] = typer.Option(None, "--dir", "-d", help="Key directory under the base path"),
    base_path: Optional[Path] = typer.Option(None, "--base-path", "-b", help="Root of the key tree"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
):
    """List the keys stored in a directory."""
    settings = get_settings(config_path, base_path)
    key_dir = settings.base_path / (directory or settings.default_dir)
    store = KeyStore(key_dir)

    names = store.list_keys()
    typer.echo(f"{key_dir}: {len(names)} keys")
    for name in names:
        typer.echo(f"  {name}")


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(config.DEFAULT_CONFIG_PATH, help="Where to write the settings"),
    base_path: Optional[Path] = typer.Option(None, "--base-path", "-b", help="Root of the key tree"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
):
    """Write a settings file with the default values."""
    if path.exists() and not force:
        typer.echo(f"{path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    settings = config.Settings()
    if base_path is not None:
        settings.base_path = base_path

    config.save_settings(settings, path)
    typer.secho(f"Wrote settings: {path}", fg=typer.colors.GREEN)
    typer.echo(f"  Base path: {settings.base_path}")


def main():
    app()


if __name__ == "__main__":
    main()
