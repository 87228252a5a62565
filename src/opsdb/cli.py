"""CLI for OpsDB."""

import logging
from dataclasses import dataclass, field

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .auth import Authenticator, Identity, SessionRegistry
from .client import OpsDBClient
from .config import OpsDBConfig, find_env_file, load_env_file
from .cookies import CookieStore
from .exceptions import OpsDBError
from .query import FieldCatalogCache
from .results import debug_dump, render, render_all

app = typer.Typer(help="OpsDB record-management CLI")
console = Console(stderr=True)
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Per-process objects shared by commands."""

    service: bool = False
    registry: SessionRegistry = field(default_factory=SessionRegistry)
    catalogs: FieldCatalogCache = field(default_factory=FieldCatalogCache)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def get_config() -> OpsDBConfig:
    env_file = find_env_file()
    if env_file is not None:
        applied = load_env_file(env_file)
        logger.debug("Loaded %s from %s", ", ".join(applied) or "nothing", env_file)
    config = OpsDBConfig.from_env()
    missing = config.validate()
    if missing:
        console.print(f"[red]Missing configuration:[/red] {', '.join(missing)}")
        console.print("[dim]Set OPSDB_URL (and optionally OPSDB_USER, OPSDB_PASSWORD) in environment or local.env[/dim]")
        raise typer.Exit(1)
    return config


def cookie_store(config: OpsDBConfig) -> CookieStore:
    return CookieStore(config.cookie_dir, service_login=config.service_login, new_server=config.new_server)


def get_identity(config: OpsDBConfig, service: bool) -> Identity:
    if service:
        return Identity.service_account(config.service_login, config.password)
    return Identity.interactive(config.username, config.password)


def get_client(ctx: typer.Context) -> OpsDBClient:
    """Create an OpsDB client with an authenticated session."""
    state: AppState = ctx.obj
    config = get_config()
    authenticator = Authenticator(
        cookie_store(config),
        registry=state.registry,
        verify=config.verify_ssl,
        timeout=config.timeout,
    )
    try:
        session = authenticator.establish(config.base_url, get_identity(config, state.service))
    except OpsDBError as e:
        console.print(f"[red]Authentication failed:[/red] {e}")
        raise typer.Exit(1)
    return OpsDBClient(session, state.catalogs)


def parse_assignments(values: list[str]) -> dict[str, str]:
    """Parse ``key=value`` options."""
    result = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {value!r}")
        result[key] = val
    return result


def build_conditions(
    names: list[str], get: list[str], exact: list[str], regex: list[str], exclude: list[str], and_: list[str]
) -> dict[str, list[str]]:
    conditions = {
        "": list(names) + list(get),
        "exact_": list(exact),
        "regex_": list(regex),
        "exclude_": list(exclude),
        "and_": list(and_),
    }
    return {k: v for k, v in conditions.items() if v}


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    service: bool = typer.Option(False, "--service", help="Authenticate as the service login"),
):
    """OpsDB record-management CLI."""
    setup_logging(verbose)
    ctx.obj = AppState(service=service)


@app.command()
def login(ctx: typer.Context):
    """Authenticate and save the session cookies."""
    client = get_client(ctx)
    console.print(f"Server: [cyan]{client.server}[/cyan]")
    console.print(f"User: [cyan]{client.session.identity.login}[/cyan]")
    console.print("[green]Login successful![/green]")


@app.command()
def logout(ctx: typer.Context):
    """Delete saved session cookies."""
    state: AppState = ctx.obj
    config = get_config()
    identity = get_identity(config, state.service)
    if cookie_store(config).clear(identity.login):
        console.print("[green]Session cleared[/green]")
    else:
        console.print("[yellow]No saved session found[/yellow]")


@app.command()
def get(
    ctx: typer.Context,
    record_type: str = typer.Argument(..., help="Record type, e.g. nodes"),
    names: list[str] = typer.Argument(None, help="Names to match"),
    get_: list[str] = typer.Option([], "--get", "-g", help="field=value[,field=value]"),
    exact: list[str] = typer.Option([], "--exact", "-e", help="Exact match field=value"),
    regex: list[str] = typer.Option([], "--regex", "-r", help="Regex match field=value"),
    exclude: list[str] = typer.Option([], "--exclude", "-x", help="Exclude field=value"),
    and_: list[str] = typer.Option([], "--and", help="All of field=value"),
    include: list[str] = typer.Option([], "--include", "-i", help="Association to include"),
    fields: list[str] = typer.Option([], "--field", "-f", help="Field to display (* for all)"),
    all_fields: bool = typer.Option(False, "--all-fields", "-a", help="Display every field"),
    debug: bool = typer.Option(False, "--debug", help="Typed dump of the result tree"),
):
    """Search records and print their names or selected fields.

    Examples:

        opsdb get nodes web1

        opsdb get nodes --get status=up -f name -f operating_system

        opsdb get nodes web1 -i node_groups -f "node_groups[name]"
    """
    conditions = build_conditions(names or [], get_, exact, regex, exclude, and_)
    client = get_client(ctx)
    try:
        if all_fields:
            result = client.get_all_fields(record_type, conditions)
        else:
            result = client.get_objects(record_type, conditions, {"include": include + fields})
    except OpsDBError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if debug:
        typer.echo(debug_dump(result), nl=False)
    elif all_fields:
        typer.echo(render_all(result), nl=False)
    else:
        typer.echo(render(result, fields), nl=False)


@app.command("set")
def set_(
    ctx: typer.Context,
    record_type: str = typer.Argument(..., help="Record type, e.g. nodes"),
    names: list[str] = typer.Argument(None, help="Names to match"),
    get_: list[str] = typer.Option([], "--get", "-g", help="field=value[,field=value]"),
    exact: list[str] = typer.Option([], "--exact", "-e", help="Exact match field=value"),
    assignments: list[str] = typer.Option([], "--set", "-s", help="field=value to set"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Update matching records, or create one if none match.

    Examples:

        opsdb set nodes web1 --set status=down

        opsdb set nodes --exact name=web9 --set "node[status]=setup"
    """
    values = parse_assignments(assignments)
    if not values:
        console.print("[red]Nothing to set.[/red] Use --set field=value")
        raise typer.Exit(1)

    conditions = build_conditions(names or [], get_, exact, [], [], [])
    client = get_client(ctx)
    if yes:
        client.confirm = lambda message: True
    try:
        message = client.set_objects(record_type, conditions, values)
    except OpsDBError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    typer.echo(message, nl=False)


@app.command()
def fields(
    ctx: typer.Context,
    record_type: str = typer.Argument(..., help="Record type, e.g. nodes"),
):
    """List the searchable fields of a record type."""
    client = get_client(ctx)
    try:
        catalog = client.field_names(record_type)
    except OpsDBError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(show_header=True, header_style="bold")
    # Field paths print whole; only the shortcut column wraps
    table.add_column("Field", no_wrap=True, min_width=max((len(e) for e in catalog.entries), default=5))
    table.add_column("Shortcut", overflow="fold")
    aliases: dict[str, list[str]] = {}
    for alias, path in catalog.shortcuts.items():
        aliases.setdefault(path, []).append(alias)
    for entry in catalog.entries:
        table.add_row(entry, ", ".join(a for a in aliases.get(entry, []) if a != entry))
    Console().print(table)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
