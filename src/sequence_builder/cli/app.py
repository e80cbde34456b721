"""CLI for Sequence Builder - designed for AI agents and automation."""

from __future__ import annotations

import json
import logging
import time
from typing import NoReturn, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from sequence_builder.api.client import BuilderClient
from sequence_builder.api.errors import ApiError
from sequence_builder.auth import AuthSession
from sequence_builder.config import CredentialStore, Environment, PASSPHRASE_ENV
from sequence_builder.errors import (
    ExitCode,
    InvalidKeyFormat,
    InvalidStoredKey,
    NoKeyAvailable,
    NotLoggedIn,
    ProjectNotFound,
    SequenceBuilderError,
    extract_error_message,
    looks_rate_limited_or_denied,
)
from sequence_builder.wallet import keys
from sequence_builder.wallet.resolver import CredentialResolver

app = typer.Typer(
    name="sequence-builder",
    help="CLI for Sequence Builder - designed for AI agents and automation.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Overridable HTTP transport (tests install an httpx.MockTransport here).
_transport: httpx.BaseTransport | None = None

_HINTS: dict[type, str] = {
    InvalidKeyFormat: "Private key should be a 64-character hex string (with or without 0x prefix)",
    NoKeyAvailable: f"Provide --private-key or set {PASSPHRASE_ENV} env var with a stored key",
    InvalidStoredKey: f"Check that {PASSPHRASE_ENV} is correct",
    NotLoggedIn: "Run: sequence-builder login -k <your-private-key>",
}


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"sequence-builder {version('sequence-builder')}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """CLI for Sequence Builder - designed for AI agents and automation."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


# ------------------------------------------------------------------
# Shared helpers
# ------------------------------------------------------------------


def _store() -> CredentialStore:
    return CredentialStore()


def _builder_client(store: CredentialStore, env: Optional[Environment], api_url: Optional[str]) -> BuilderClient:
    return BuilderClient(
        store,
        env=env.value if env else None,
        api_url=api_url,
        transport=_transport,
    )


def _emit_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _report_api_error(error: ApiError, json_output: bool) -> NoReturn:
    if json_output:
        _emit_json(error.to_dict())
        raise typer.Exit(error.code)

    if error.is_rate_limited:
        err_console.print("[red]✖ Rate limited by the API[/red]")
        if error.retry_after_seconds is not None:
            err_console.print(f"[yellow]  Retry after: {error.retry_after_seconds}s[/yellow]")
        err_console.print("[dim]  Too many requests in a short period. Please wait before trying again.[/dim]")
    elif error.is_permission_denied:
        err_console.print("[red]✖ Permission denied (403)[/red]")
        err_console.print("[dim]  This can happen when:[/dim]")
        err_console.print("[dim]    - Too many signing/login attempts in a short period[/dim]")
        err_console.print("[dim]    - The ETHAuth proof is malformed or expired[/dim]")
        err_console.print("[dim]    - Your wallet address is not authorized[/dim]")
        if error.retry_after_seconds is not None:
            err_console.print(f"[yellow]  Retry after: {error.retry_after_seconds}s[/yellow]")
    elif error.is_unauthorized:
        err_console.print("[red]✖ Unauthorized (401)[/red]")
        err_console.print(f"[dim]  {_HINTS[NotLoggedIn]}[/dim]")
    else:
        err_console.print(f"[red]✖ {escape(str(error))}[/red]")
        raise typer.Exit(error.code)

    if error.body_detail:
        err_console.print(f"[dim]  Server response: {escape(error.body_detail)}[/dim]")
    raise typer.Exit(error.code)


def _fail(
    error: BaseException,
    json_output: bool,
    action: str | None = None,
    default_code: int = ExitCode.GENERAL_ERROR,
) -> NoReturn:
    """Report *error* in the selected output mode and exit with its code."""
    if isinstance(error, ApiError):
        _report_api_error(error, json_output)

    if isinstance(error, SequenceBuilderError):
        payload = error.to_dict()
    else:
        message = extract_error_message(error)
        if looks_rate_limited_or_denied(message):
            payload = {
                "error": "Permission denied or rate limited",
                "detail": message,
                "code": ExitCode.API_ERROR,
            }
        else:
            payload = {"error": message, "code": default_code}

    if json_output:
        _emit_json(payload)
    else:
        prefix = f"{action}: " if action else ""
        err_console.print(f"[red]✖ {escape(prefix + payload['error'])}[/red]")
        if "detail" in payload:
            err_console.print(f"[dim]  Detail: {escape(payload['detail'])}[/dim]")
        hint = _HINTS.get(type(error))
        if hint:
            err_console.print(f"[dim]{escape(hint)}[/dim]")
    raise typer.Exit(payload["code"])


def _require_login(store: CredentialStore, json_output: bool) -> None:
    if store.current_valid_token() is None:
        _fail(NotLoggedIn(), json_output)


def _parse_project_id(raw: str, json_output: bool) -> int:
    try:
        return int(raw, 10)
    except ValueError:
        _fail(ProjectNotFound("Invalid project ID"), json_output)


_JSON_OPT = typer.Option(False, "--json", help="Output in JSON format")
_ENV_OPT = typer.Option(None, "--env", help="Environment to use (prod, dev)")
_API_URL_OPT = typer.Option(None, "--api-url", help="Custom API URL")
_KEY_OPT = typer.Option(None, "--private-key", "-k", help="Your wallet private key (or use stored encrypted key)")


# ------------------------------------------------------------------
# create-wallet / wallet-info
# ------------------------------------------------------------------


@app.command("create-wallet")
def create_wallet(json_output: bool = _JSON_OPT):
    """Generate a new EOA keypair for use with Sequence Builder."""
    try:
        pair = keys.generate()
        stored = CredentialResolver(_store()).store_if_requested(pair.private_key)
    except Exception as e:
        _fail(e, json_output, action="Error creating wallet")

    if json_output:
        _emit_json({"privateKey": pair.private_key, "address": pair.address, "keyStored": stored})
        return

    if stored:
        footer = "[green]Private key encrypted and stored.[/green] [dim]You won't need to pass -k for future commands.[/dim]"
    else:
        footer = (
            "[bold red]IMPORTANT:[/bold red] Store these credentials securely. They will not be shown again.\n"
            f"[dim]Tip: Set {PASSPHRASE_ENV} env var to auto-encrypt and store the key.[/dim]"
        )
    console.print(Panel(
        f"[bold green]Wallet created successfully![/bold green]\n\n"
        f"Private Key: [yellow]{pair.private_key}[/yellow]\n"
        f"Address:     [cyan]{pair.address}[/cyan]\n\n"
        f"{footer}\n\n"
        f"[dim]Next: sequence-builder login{'' if stored else ' -k <your-private-key>'}[/dim]",
        title="New Wallet",
    ))


@app.command("wallet-info")
def wallet_info(
    private_key: Optional[str] = _KEY_OPT,
    json_output: bool = _JSON_OPT,
):
    """Show the EOA address for an explicit or stored private key."""
    try:
        key = CredentialResolver(_store()).resolve(private_key)
        if not keys.is_valid(key):
            raise InvalidKeyFormat()
        address = keys.address_of(key)
    except Exception as e:
        _fail(e, json_output, action="Failed to get wallet info")

    if json_output:
        _emit_json({"eoaAddress": address})
        return
    console.print(Panel(f"[cyan]{address}[/cyan]", title="EOA Address"))


# ------------------------------------------------------------------
# login / status / logout
# ------------------------------------------------------------------


@app.command()
def login(
    private_key: Optional[str] = _KEY_OPT,
    email: Optional[str] = typer.Option(None, "--email", "-e", help="Email address to associate with your account"),
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """Authenticate with Sequence Builder using your private key."""
    store = _store()
    resolver = CredentialResolver(store)

    try:
        key = resolver.resolve(private_key)
        if not keys.is_valid(key):
            raise InvalidKeyFormat()
        address = keys.address_of(key)

        if not json_output:
            console.print(f"[dim]Authenticating wallet:[/dim] [cyan]{address}[/cyan]")

        with _builder_client(store, env, api_url) as client:
            auth = AuthSession(
                store, client, env=env.value if env else None, api_url=api_url
            )
            session = auth.authenticate(key, email)

        stored = resolver.store_if_requested(key)
    except Exception as e:
        _fail(e, json_output, action="Login failed", default_code=ExitCode.API_ERROR)

    if json_output:
        _emit_json({
            "success": True,
            "address": address,
            "expiresAt": session.expires_at.isoformat(),
            "keyStored": stored,
        })
        return

    lines = [
        "[bold green]Successfully authenticated![/bold green]",
        "",
        f"Address:  [cyan]{address}[/cyan]",
        f"Expires:  [dim]{session.expires_at.isoformat()}[/dim]",
    ]
    if stored:
        lines.append("Key:      [green]Encrypted and stored (no need to pass -k again)[/green]")
    console.print(Panel("\n".join(lines), title="Login"))


@app.command()
def status(json_output: bool = _JSON_OPT):
    """Check current authentication status."""
    store = _store()
    record = store.load()
    logged_in = store.current_valid_token() is not None
    expires_at = record.session.expires_at.isoformat() if record.session else None

    if json_output:
        _emit_json({
            "loggedIn": logged_in,
            "expiresAt": expires_at if logged_in else None,
            "environment": record.environment.value,
            "keyStored": record.encrypted_key is not None,
        })
        return

    if logged_in:
        console.print(f"[green]✓ You are logged in[/green] [dim](expires {expires_at})[/dim]")
    else:
        console.print("[yellow]✖ You are not logged in[/yellow]")
        console.print(f"[dim]{_HINTS[NotLoggedIn]}[/dim]")


@app.command()
def logout(json_output: bool = _JSON_OPT):
    """Forget the current session (a stored encrypted key is kept)."""
    _store().clear_session()
    if json_output:
        _emit_json({"success": True})
        return
    console.print("[bold]Logged out.[/bold]")


# ------------------------------------------------------------------
# projects sub-commands
# ------------------------------------------------------------------

projects_app = typer.Typer(
    name="projects",
    help="Manage Sequence Builder projects.",
    invoke_without_command=True,
)
app.add_typer(projects_app, name="projects")


def _list_projects(json_output: bool, env: Optional[Environment], api_url: Optional[str]) -> None:
    store = _store()
    _require_login(store, json_output)

    try:
        with _builder_client(store, env, api_url) as client:
            response = client.list_projects()
    except Exception as e:
        _fail(e, json_output, action="Failed to list projects", default_code=ExitCode.API_ERROR)

    projects = response.get("projects") or []
    if json_output:
        _emit_json({"projects": projects})
        return

    if not projects:
        console.print("[yellow]No projects found.[/yellow]")
        console.print('[dim]Create one with: sequence-builder projects create "My Project"[/dim]')
        return

    table = Table(title="Your Projects")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name")
    for project in projects:
        table.add_row(str(project.get("id", "")), escape(str(project.get("name", ""))))
    console.print(table)
    console.print("[dim]Run `sequence-builder apikeys list <project-id>` to view API keys[/dim]")


@projects_app.callback()
def projects_main(
    ctx: typer.Context,
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """Manage Sequence Builder projects (lists them when no sub-command is given)."""
    if ctx.invoked_subcommand is None:
        _list_projects(json_output, env, api_url)


@projects_app.command("list")
def projects_list(
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """List all projects."""
    _list_projects(json_output, env, api_url)


@projects_app.command("create")
def projects_create(
    name: Optional[str] = typer.Argument(None, help="Project name"),
    chain_ids: Optional[str] = typer.Option(None, "--chain-ids", help="Comma-separated list of chain IDs"),
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """Create a new project."""
    store = _store()
    _require_login(store, json_output)

    parsed_chain_ids: list[int] | None = None
    if chain_ids:
        try:
            parsed_chain_ids = [int(part.strip(), 10) for part in chain_ids.split(",") if part.strip()]
        except ValueError:
            _fail(SequenceBuilderError(f"Invalid chain IDs: {chain_ids}"), json_output)

    project_name = name or f"Project {int(time.time() * 1000)}"
    if not json_output:
        console.print(f'[dim]Creating project "{escape(project_name)}"...[/dim]')

    try:
        with _builder_client(store, env, api_url) as client:
            response = client.create_project(project_name, parsed_chain_ids)
            project = response.get("project")
            if not project:
                raise SequenceBuilderError("Failed to create project")

            access_key = None
            try:
                key_response = client.get_default_access_key(project["id"])
                access_key = (key_response.get("accessKey") or {}).get("accessKey")
            except SequenceBuilderError as e:
                # The project exists even when the key lookup fails
                logging.getLogger("sequence_builder.cli").warning(f"Default access key lookup failed: {e}")
    except Exception as e:
        _fail(e, json_output, action="Failed to create project", default_code=ExitCode.API_ERROR)

    if json_output:
        _emit_json({"project": project, "accessKey": access_key})
        return

    lines = [
        "[bold green]Project created successfully![/bold green]",
        "",
        f"Project ID:  [cyan]{project.get('id')}[/cyan]",
        f"Name:        {escape(str(project.get('name', '')))}",
    ]
    if access_key:
        lines.append(f"Access Key:  [yellow]{access_key}[/yellow]")
    console.print(Panel("\n".join(lines), title="New Project"))


@projects_app.command("get")
def projects_get(
    project_id: str = typer.Argument(help="Project ID"),
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """Get details for a specific project."""
    store = _store()
    _require_login(store, json_output)
    pid = _parse_project_id(project_id, json_output)

    try:
        with _builder_client(store, env, api_url) as client:
            project = client.get_project(pid).get("project")
        if not project:
            raise ProjectNotFound("Project not found")
    except Exception as e:
        _fail(e, json_output, action="Failed to get project", default_code=ExitCode.API_ERROR)

    if json_output:
        _emit_json({"project": project})
        return

    lines = [
        f"ID:         [cyan]{project.get('id')}[/cyan]",
        f"Name:       {escape(str(project.get('name', '')))}",
        f"Owner:      [dim]{project.get('ownerAddress', '')}[/dim]",
    ]
    if project.get("chainIds"):
        lines.append(f"Chain IDs:  [dim]{', '.join(str(c) for c in project['chainIds'])}[/dim]")
    console.print(Panel("\n".join(lines), title="Project Details"))


# ------------------------------------------------------------------
# apikeys sub-commands
# ------------------------------------------------------------------

apikeys_app = typer.Typer(
    name="apikeys",
    help="Manage API keys for a project.",
    no_args_is_help=True,
)
app.add_typer(apikeys_app, name="apikeys")


@apikeys_app.command("list")
def apikeys_list(
    project_id: str = typer.Argument(help="Project ID"),
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """List all API keys for a project."""
    store = _store()
    _require_login(store, json_output)
    pid = _parse_project_id(project_id, json_output)

    try:
        with _builder_client(store, env, api_url) as client:
            access_keys = client.list_access_keys(pid).get("accessKeys") or []
    except Exception as e:
        _fail(e, json_output, action="Failed to list API keys", default_code=ExitCode.API_ERROR)

    if json_output:
        _emit_json({"accessKeys": access_keys})
        return

    if not access_keys:
        console.print("[yellow]No API keys found for this project.[/yellow]")
        return

    table = Table(title=f"API Keys for Project {pid}")
    table.add_column("Key", style="yellow")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("Default", style="cyan")
    for item in access_keys:
        table.add_row(
            str(item.get("accessKey", "")),
            escape(str(item.get("displayName", ""))),
            "[green]●[/green]" if item.get("active") else "[red]○[/red]",
            "default" if item.get("default") else "",
        )
    console.print(table)


@apikeys_app.command("default")
def apikeys_default(
    project_id: str = typer.Argument(help="Project ID"),
    json_output: bool = _JSON_OPT,
    env: Optional[Environment] = _ENV_OPT,
    api_url: Optional[str] = _API_URL_OPT,
):
    """Get the default API key for a project."""
    store = _store()
    _require_login(store, json_output)
    pid = _parse_project_id(project_id, json_output)

    try:
        with _builder_client(store, env, api_url) as client:
            access_key = client.get_default_access_key(pid).get("accessKey")
    except Exception as e:
        _fail(e, json_output, action="Failed to get default API key", default_code=ExitCode.API_ERROR)

    if not access_key:
        _fail(ProjectNotFound("No default key found"), json_output)

    if json_output:
        _emit_json({"accessKey": access_key})
        return

    console.print(Panel(
        f"Key:     [yellow]{access_key.get('accessKey', '')}[/yellow]\n"
        f"Name:    [dim]{escape(str(access_key.get('displayName', '')))}[/dim]\n"
        f"Active:  {'[green]Yes[/green]' if access_key.get('active') else '[red]No[/red]'}",
        title="Default API Key",
    ))


# ------------------------------------------------------------------
# indexer sub-commands
# ------------------------------------------------------------------

indexer_app = typer.Typer(
    name="indexer",
    help="Query blockchain data using the Sequence Indexer.",
    no_args_is_help=True,
)
app.add_typer(indexer_app, name="indexer")

_ACCESS_KEY_OPT = typer.Option(..., "--access-key", "-a", help="Project access key")
_NETWORK_OPT = typer.Option("mainnet", "--network", "-n", help="Sequence network name (e.g. mainnet, polygon, base)")


def _run_indexer(network: str, access_key: str, json_output: bool, action: str, query) -> None:
    from sequence_builder.indexer import IndexerClient

    try:
        client = IndexerClient(network, access_key, transport=_transport)
        try:
            response = query(client)
        finally:
            client.close()
    except Exception as e:
        _fail(e, json_output, action=action)

    if json_output:
        _emit_json(response)
    else:
        console.print_json(data=response)


def _check_address(address: str, json_output: bool, label: str = "address") -> None:
    from web3 import Web3

    if not Web3.is_address(address):
        _fail(SequenceBuilderError(f"Invalid {label}"), json_output)


@indexer_app.command("balances")
def indexer_balances(
    address: str = typer.Argument(help="Account address"),
    access_key: str = _ACCESS_KEY_OPT,
    network: str = _NETWORK_OPT,
    include_metadata: bool = typer.Option(False, "--include-metadata", help="Include token metadata"),
    json_output: bool = _JSON_OPT,
):
    """Get token balances for an address."""
    _check_address(address, json_output)
    _run_indexer(
        network, access_key, json_output, "Failed to fetch balances",
        lambda c: c.get_token_balances(address, include_metadata),
    )


@indexer_app.command("native-balance")
def indexer_native_balance(
    address: str = typer.Argument(help="Account address"),
    access_key: str = _ACCESS_KEY_OPT,
    network: str = _NETWORK_OPT,
    json_output: bool = _JSON_OPT,
):
    """Get the native token balance for an address."""
    _check_address(address, json_output)
    _run_indexer(
        network, access_key, json_output, "Failed to fetch balance",
        lambda c: c.get_native_token_balance(address),
    )


@indexer_app.command("history")
def indexer_history(
    address: str = typer.Argument(help="Account address"),
    access_key: str = _ACCESS_KEY_OPT,
    network: str = _NETWORK_OPT,
    limit: int = typer.Option(10, "--limit", help="Number of transactions to fetch", min=1),
    json_output: bool = _JSON_OPT,
):
    """Get transaction history for an address."""
    _check_address(address, json_output)
    _run_indexer(
        network, access_key, json_output, "Failed to fetch history",
        lambda c: c.get_transaction_history(address, limit),
    )


@indexer_app.command("token-info")
def indexer_token_info(
    contract_address: str = typer.Argument(help="Token contract address"),
    access_key: str = _ACCESS_KEY_OPT,
    network: str = _NETWORK_OPT,
    json_output: bool = _JSON_OPT,
):
    """Get token contract information and supplies."""
    _check_address(contract_address, json_output, label="contract address")
    _run_indexer(
        network, access_key, json_output, "Failed to fetch token info",
        lambda c: c.get_token_supplies(contract_address),
    )


# ------------------------------------------------------------------
# transfer
# ------------------------------------------------------------------


@app.command()
def transfer(
    access_key: str = _ACCESS_KEY_OPT,
    token: str = typer.Option(..., "--token", "-t", help="ERC20 token contract address"),
    recipient: str = typer.Option(..., "--recipient", "-r", help="Recipient address"),
    amount: str = typer.Option(..., "--amount", "-m", help='Amount to send (in token units, e.g. "1.5")'),
    network: str = typer.Option(..., "--network", "-n", help="Sequence network name (e.g. polygon)"),
    private_key: Optional[str] = _KEY_OPT,
    json_output: bool = _JSON_OPT,
):
    """Send an ERC20 token transfer."""
    from sequence_builder.transfer import TokenTransfer

    try:
        key = CredentialResolver(_store()).resolve(private_key)
        if not json_output:
            console.print(f"[dim]Sending {escape(amount)} of {token} to {recipient} on {escape(network)}...[/dim]")
        receipt = TokenTransfer(network, access_key).send(key, token, recipient, amount)
    except Exception as e:
        _fail(e, json_output, action="Transfer failed")

    if json_output:
        _emit_json(receipt.to_dict())
        return

    console.print(Panel(
        f"[bold green]Transfer successful![/bold green]\n\n"
        f"Tx:      [cyan]{receipt.transaction_hash}[/cyan]\n"
        f"From:    [dim]{receipt.from_address}[/dim]\n"
        f"To:      [dim]{receipt.to}[/dim]\n"
        f"Amount:  {escape(receipt.amount)} {escape(receipt.symbol)}",
        title="Transfer",
    ))


if __name__ == "__main__":
    app()
