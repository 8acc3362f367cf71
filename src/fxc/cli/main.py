"""
CLI for the currency converter cache engine.

Commands:
    fxc rate FROM TO - Convert using the active provider (cache fallback offline)
    fxc currencies - List currencies and the reconciled selection
    fxc credential set|clear|show - Manage the provider API key
    fxc provider [NAME] - Show or switch the active provider
    fxc assets install|activate|keys - Drive the asset cache agent
    fxc refresh - Clear cached data, keeping API keys
    fxc config - Show current configuration
    fxc build-version - Print a fresh build stamp
    fxc version - Print version
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, Optional, TypeVar

import httpx
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fxc import __version__
from fxc.assets.agent import AssetCacheAgent
from fxc.assets.messages import ListKeys, UpdateChannel
from fxc.config import Settings, clear_settings_cache, get_settings, make_build_version
from fxc.exceptions import (
    ConfigurationError,
    CredentialRequiredError,
    FXCError,
    InvalidCredentialError,
    NetworkError,
)
from fxc.logging import setup_logging
from fxc.providers.registry import available_providers, get_provider
from fxc.session import Session
from fxc.types import DataSource

T = TypeVar("T")

app = typer.Typer(
    name="fxc",
    help="Offline-first currency converter",
    no_args_is_help=True,
)
credential_app = typer.Typer(help="Manage the API key of the active provider")
assets_app = typer.Typer(help="Asset cache agent lifecycle")
app.add_typer(credential_app, name="credential")
app.add_typer(assets_app, name="assets")

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except ValidationError:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'fxc config' to see what's wrong."
        )
        raise typer.Exit(1)
    return settings


def _run_session(settings: Settings, action: Callable[[Session], Awaitable[T]]) -> T:
    """Run ``action`` inside a session, turning domain errors into exit code 1."""

    async def runner() -> T:
        async with await Session.open(settings) as session:
            return await action(session)

    try:
        return asyncio.run(runner())
    except CredentialRequiredError as e:
        error_console.print(f"[yellow]{e.message}.[/yellow]")
        error_console.print("Set one with: [bold]fxc credential set KEY[/bold]")
    except InvalidCredentialError as e:
        error_console.print(f"[red]{e.message}.[/red]")
        error_console.print("Check the key and run: [bold]fxc credential set KEY[/bold]")
    except NetworkError as e:
        error_console.print(f"[red]Connection problem:[/red] {e.message}")
        error_console.print("No cached data is available yet. Try again when online.")
    except FXCError as e:
        error_console.print(f"[red]Error:[/red] {e}")
    raise typer.Exit(1)


@app.callback()
def main_callback() -> None:
    """Offline-first currency converter."""
    settings = _get_settings_safe()
    if settings is not None:
        setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)


@app.command()
def rate(
    from_code: Annotated[str, typer.Argument(help="Source currency (e.g., USD)")],
    to_code: Annotated[str, typer.Argument(help="Target currency (e.g., EUR)")],
    amount: Annotated[
        float,
        typer.Option("--amount", "-a", help="Amount to convert"),
    ] = 1.0,
) -> None:
    """Convert an amount using the active provider."""
    settings = _require_settings()

    async def action(session: Session):
        result = await session.load_rate(from_code, to_code)
        await session.select_currencies(from_code, to_code)
        return result, session.provider

    result, provider = _run_session(settings, action)

    source_style = {
        DataSource.NETWORK: "green",
        DataSource.CACHE: "yellow",
        DataSource.SYNTHETIC: "cyan",
    }[result.source]
    lines = [
        f"[bold]{amount:,.2f} {from_code.upper()}[/bold] = "
        f"[bold]{result.convert(amount):,.4f} {to_code.upper()}[/bold]",
        f"[bold]Rate:[/bold] {result.rate:.6f}",
        f"[bold]Provider:[/bold] {provider.name}",
        f"[bold]Source:[/bold] [{source_style}]{result.source.value}[/{source_style}]",
        f"[bold]Rate date:[/bold] {result.api_date}",
    ]
    if result.source == DataSource.CACHE and result.is_stale(settings.rate_stale_after):
        lines.append("[yellow]Cached rate is older than "
                     f"{settings.RATE_STALE_HOURS:g}h and may be outdated.[/yellow]")

    console.print()
    console.print(Panel("\n".join(lines), title="[bold cyan]Conversion[/bold cyan]",
                        border_style="cyan"))
    if provider.attribution_url:
        console.print(f"[dim]Rates by {provider.name}: {provider.attribution_url}[/dim]")


@app.command()
def currencies() -> None:
    """List currencies offered by the active provider."""
    settings = _require_settings()

    async def action(session: Session):
        return await session.load_currencies(), session.provider

    result, provider = _run_session(settings, action)

    table = Table(
        title=f"{provider.name} currencies ({result.source.value})", show_header=True
    )
    table.add_column("Code", style="cyan")
    table.add_column("Name", style="green")
    for code in result.record.codes:
        table.add_row(code, result.currencies[code])
    console.print(table)

    if result.selection is not None:
        console.print(
            f"[bold]Selection:[/bold] {result.selection.from_code} -> "
            f"{result.selection.to_code}"
        )
    if result.source == DataSource.CACHE and result.is_stale(settings.currencies_stale_after):
        console.print("[yellow]Currency list is from an old cache.[/yellow]")


@credential_app.command("set")
def credential_set(
    key: Annotated[str, typer.Argument(help="API key for the active provider")],
) -> None:
    """Store an API key for the active provider."""
    settings = _require_settings()

    async def action(session: Session):
        return await session.set_credential(key), session.provider

    saved, provider = _run_session(settings, action)
    if not saved:
        error_console.print("[red]Error:[/red] The API key cannot be blank.")
        raise typer.Exit(1)
    console.print(f"[green]API key saved for {provider.name}.[/green]")


@credential_app.command("clear")
def credential_clear() -> None:
    """Forget the stored API key for the active provider."""
    settings = _require_settings()

    async def action(session: Session):
        await session.clear_credential()
        return session.provider

    provider = _run_session(settings, action)
    console.print(f"API key cleared for {provider.name}.")


@credential_app.command("show")
def credential_show() -> None:
    """Show whether the active provider has an API key."""
    settings = _require_settings()

    async def action(session: Session):
        return session.selector.credential, session.provider

    credential, provider = _run_session(settings, action)
    if not provider.requires_credential:
        console.print(f"{provider.name} does not need an API key.")
    elif credential:
        console.print(f"{provider.name}: [green]key set[/green] ({credential[:4]}...)")
    else:
        console.print(f"{provider.name}: [yellow]no key set[/yellow]")


@app.command()
def provider(
    name: Annotated[
        Optional[str],
        typer.Argument(help=f"Provider to activate ({', '.join(available_providers())})"),
    ] = None,
) -> None:
    """Show the active provider, or switch to NAME."""
    settings = _require_settings()

    if name is not None:
        try:
            get_provider(name.lower())
        except ConfigurationError as e:
            error_console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(1)

    async def action(session: Session):
        if name is not None:
            await session.select_provider(name.lower())
        return session.provider, session.selector.missing_credential

    config, missing = _run_session(settings, action)

    table = Table(show_header=True)
    table.add_column("Provider", style="cyan")
    table.add_column("Active")
    table.add_column("API key")
    table.add_column("Description", style="dim")
    for provider_id in available_providers():
        other = get_provider(provider_id)
        table.add_row(
            other.name,
            "[green]*[/green]" if provider_id == config.id else "",
            "required" if other.requires_credential else "-",
            other.description,
        )
    console.print(table)
    if missing:
        console.print(
            f"[yellow]{config.name} needs an API key:[/yellow] fxc credential set KEY"
        )


def _run_agent(
    settings: Settings,
    action: Callable[[AssetCacheAgent], Awaitable[T]],
    fresh_build: bool = False,
) -> T:
    async def runner() -> T:
        settings.ensure_directories()
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
            follow_redirects=True,
        ) as client:
            agent = AssetCacheAgent.from_settings(
                settings, client, UpdateChannel(), fresh_build=fresh_build
            )
            try:
                return await action(agent)
            finally:
                await agent.close()

    try:
        return asyncio.run(runner())
    except FXCError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@assets_app.command("install")
def assets_install() -> None:
    """Populate the current asset generation from the manifest."""
    settings = _require_settings()

    async def action(agent: AssetCacheAgent):
        report = await agent.install()
        return report, agent.skip_waiting_requested

    report, promote = _run_agent(settings, action, fresh_build=True)
    console.print(
        Panel(
            f"[bold]Generation:[/bold] {report.generation}\n"
            f"[bold]Cached:[/bold] {len(report.cached)}\n"
            f"[bold]Skipped:[/bold] {len(report.skipped)}\n"
            f"[bold]Immediate promotion:[/bold] {promote}",
            title="[bold cyan]Asset Install[/bold cyan]",
            border_style="cyan",
        )
    )
    for url in report.skipped:
        console.print(f"[yellow]skipped[/yellow] {url}")


@assets_app.command("activate")
def assets_activate() -> None:
    """Activate the current generation and evict older ones."""
    settings = _require_settings()
    evicted = _run_agent(settings, lambda agent: agent.activate())
    if evicted:
        for name in evicted:
            console.print(f"[dim]evicted[/dim] {name}")
    else:
        console.print("No stale generations.")


@assets_app.command("keys")
def assets_keys() -> None:
    """List request identities held in the current generation."""
    settings = _require_settings()
    keys = _run_agent(settings, lambda agent: agent.handle_message(ListKeys()))
    for key in keys or []:
        console.print(key)


@app.command()
def refresh() -> None:
    """Clear cached rates, currency lists and assets. API keys are kept."""
    settings = _require_settings()
    removed = _run_session(settings, lambda session: session.force_refresh())
    console.print(f"[green]Cleared {removed} cached entries.[/green]")


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with the API key redacted.
    """
    console.print()
    console.print("[bold]Currency Converter Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print(f"  - PROVIDER must be one of: {', '.join(available_providers())}")
        error_console.print("  - DEFAULT_CURRENCY / DEFAULT_TARGET_CURRENCY must be 3 letters")
        error_console.print()
        error_console.print("Fix the environment variables or the .env file.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()


@app.command("build-version")
def build_version() -> None:
    """Print a build stamp for the current time."""
    console.print(make_build_version())


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"fx-converter version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
