"""CLI interface for sitekit."""

import contextlib
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from sitekit.config import SiteConfig, load_config, merge_cli_overrides
from sitekit.content.services import ContentReader, new_content
from sitekit.errors import SitekitError
from sitekit.infra.models import Change, ChangeAction, InfraState, Plan
from sitekit.infra.services import (
    apply,
    desired_resources,
    load_infra_state,
    plan,
    save_infra_state,
)
from sitekit.integrations.cloudflare import CloudflareAPIClient
from sitekit.site.builder import SiteBuilder
from sitekit.site.server import DEFAULT_BIND, DEFAULT_PORT, DevServer

app = typer.Typer(
    name="sitekit",
    help="Build a Markdown blog into a static site and manage its Cloudflare hosting.",
    no_args_is_help=True,
)
new_app = typer.Typer(help="Create new content from an archetype.")
app.add_typer(new_app, name="new")

console = Console()
err_console = Console(stderr=True)


class CliState:
    """Options from the top-level callback, shared with every command."""

    def __init__(self, site_root: Path, config_path: Path | None, verbose: bool) -> None:
        self.site_root = site_root
        self.config_path = config_path
        self.verbose = verbose

    def load(self, **overrides: object) -> SiteConfig:
        config = load_config(self.site_root, self.config_path)
        return merge_cli_overrides(config, **overrides)


class ListKind(StrEnum):
    DRAFTS = "drafts"
    FUTURE = "future"
    ALL = "all"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from sitekit import __version__

        console.print(f"sitekit {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=verbose)],
        force=True,
    )


@contextlib.contextmanager
def _handle_errors(state: CliState) -> Iterator[None]:
    """Turn sitekit errors into a red message and exit code 1."""
    try:
        yield
    except SitekitError as exc:
        if state.verbose:
            err_console.print_exception()
        err_console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(1) from exc


@app.callback()
def main(
    ctx: typer.Context,
    source: Annotated[
        Path,
        typer.Option(
            "--source",
            "-s",
            help="Site root directory.",
            file_okay=False,
            dir_okay=True,
        ),
    ] = Path("."),
    config: Annotated[
        Optional[Path],
        typer.Option("--config", help="Config file (default: sitekit.toml or config.toml)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging and full tracebacks."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """sitekit - static blog builder and Cloudflare deployer."""
    _configure_logging(verbose)
    ctx.obj = CliState(site_root=source, config_path=config, verbose=verbose)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


@new_app.command("content")
def new_content_cmd(
    ctx: typer.Context,
    path: Annotated[str, typer.Argument(help="Path under the content dir, e.g. posts/hello.md")],
    kind: Annotated[
        Optional[str],
        typer.Option("--kind", "-k", help="Archetype to use (default: first path component)."),
    ] = None,
) -> None:
    """Create a content file from an archetype."""
    state: CliState = ctx.obj
    with _handle_errors(state):
        config = state.load()
        created = new_content(state.site_root, config, path, kind=kind)
    console.print(f"Content [green]{escape(str(created))}[/green] created")


@app.command("list")
def list_cmd(
    ctx: typer.Context,
    which: Annotated[ListKind, typer.Argument(help="Which content to list.")] = ListKind.ALL,
) -> None:
    """List content with its publication status."""
    state: CliState = ctx.obj
    now = datetime.now(tz=UTC)
    with _handle_errors(state):
        config = state.load()
        content = ContentReader(state.site_root, config).read_all()

    table = Table(title=f"{which.value.capitalize()} content")
    table.add_column("Status")
    table.add_column("Date")
    table.add_column("Title")
    table.add_column("Path")
    for page in content.all_pages:
        if page.draft:
            status = "[yellow]draft[/yellow]"
        elif page.is_future(now):
            status = "[cyan]future[/cyan]"
        else:
            status = "[green]published[/green]"
        if which is ListKind.DRAFTS and not page.draft:
            continue
        if which is ListKind.FUTURE and not page.is_future(now):
            continue
        date = page.date.strftime("%Y-%m-%d") if page.date else ""
        table.add_row(status, date, escape(page.title), escape(page.rel_path))
    console.print(table)


# ---------------------------------------------------------------------------
# Build and serve
# ---------------------------------------------------------------------------


@app.command()
def build(
    ctx: typer.Context,
    build_drafts: Annotated[
        Optional[bool],
        typer.Option("--build-drafts", "-D", help="Include content marked as draft."),
    ] = None,
    build_future: Annotated[
        Optional[bool],
        typer.Option("--build-future", "-F", help="Include content dated in the future."),
    ] = None,
    destination: Annotated[
        Optional[str],
        typer.Option("--destination", "-d", help="Output directory (default: public)."),
    ] = None,
    base_url: Annotated[
        Optional[str],
        typer.Option("--base-url", "-b", help="Override base_url from the config."),
    ] = None,
) -> None:
    """Build the site into the output directory."""
    state: CliState = ctx.obj
    with _handle_errors(state):
        config = state.load(
            output_dir=destination,
            base_url=base_url,
            build_drafts=build_drafts,
            build_future=build_future,
        )
        result = SiteBuilder(state.site_root, config).build()

    table = Table(show_header=False, box=None)
    table.add_row("Posts", str(result.posts))
    table.add_row("Pages", str(result.pages))
    table.add_row("Taxonomy terms", str(result.terms))
    table.add_row("Static files", str(result.static_files))
    table.add_row("Files written", str(len(result.files)))
    console.print(table)
    console.print(
        f"Built into [bold]{escape(str(result.output_dir))}[/bold] "
        f"in {result.elapsed_seconds * 1000:.0f} ms"
    )


@app.command()
def server(
    ctx: typer.Context,
    build_drafts: Annotated[
        bool,
        typer.Option("--build-drafts", "-D", help="Include content marked as draft."),
    ] = False,
    build_future: Annotated[
        bool,
        typer.Option("--build-future", "-F", help="Include content dated in the future."),
    ] = False,
    bind: Annotated[str, typer.Option("--bind", help="Interface to listen on.")] = DEFAULT_BIND,
    port: Annotated[int, typer.Option("--port", "-p", help="Port to listen on.")] = DEFAULT_PORT,
    poll: Annotated[
        float,
        typer.Option("--poll", help="Seconds between checks for changed files."),
    ] = 1.0,
) -> None:
    """Build the site and serve it locally, rebuilding on changes."""
    state: CliState = ctx.obj
    with _handle_errors(state):
        dev = DevServer(
            state.site_root,
            state.load,
            bind=bind,
            port=port,
            include_drafts=build_drafts,
            include_future=build_future,
            poll_interval=poll,
        )
        console.print(f"Web server available at [bold]{dev.url}[/bold]")
        dev.serve_forever()


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


def _format_value(value: Any) -> str:
    return "(none)" if value is None else repr(value)


def _print_change(change: Change) -> None:
    colors = {
        ChangeAction.CREATE: "green",
        ChangeAction.UPDATE: "yellow",
        ChangeAction.DELETE: "red",
    }
    color = colors[change.action]
    console.print(f"  [{color}]{change.symbol} {escape(change.address)}[/{color}]")
    for field, (before, after) in change.diff().items():
        line = f"{field}: {_format_value(before)} -> {_format_value(after)}"
        console.print(f"      {escape(line)}")


def _print_plan(result: Plan) -> None:
    changed = [c for c in result.changes if c.action is not ChangeAction.NOOP]
    if not changed:
        console.print("[green]No changes.[/green] Infrastructure matches the configuration.")
        return
    console.print("Planned changes:")
    for change in changed:
        _print_change(change)
    console.print(f"\n[bold]Plan:[/bold] {result.summary()}.")


def _make_plan(state: CliState) -> tuple[CloudflareAPIClient, InfraState, Plan]:
    config = state.load()
    client = CloudflareAPIClient(config.to_cloudflare_config())
    desired = desired_resources(config)
    infra_state = load_infra_state(state.site_root)
    return client, infra_state, plan(desired, client, infra_state)


@app.command("plan")
def plan_cmd(
    ctx: typer.Context,
    detailed_exitcode: Annotated[
        bool,
        typer.Option("--detailed-exitcode", help="Exit 2 when there are changes."),
    ] = False,
) -> None:
    """Show what apply would change on Cloudflare."""
    state: CliState = ctx.obj
    with _handle_errors(state):
        _, _, result = _make_plan(state)
    _print_plan(result)
    if detailed_exitcode and result.has_changes:
        raise typer.Exit(2)


@app.command("apply")
def apply_cmd(
    ctx: typer.Context,
    auto_approve: Annotated[
        bool,
        typer.Option("--auto-approve", help="Skip the confirmation prompt."),
    ] = False,
) -> None:
    """Create or update the DNS records and Pages project."""
    state: CliState = ctx.obj
    with _handle_errors(state):
        client, infra_state, result = _make_plan(state)
        _print_plan(result)
        if result.has_changes and not auto_approve:
            if not typer.confirm("Apply these changes?"):
                console.print("Apply cancelled.")
                raise typer.Exit(1)

        applied = apply(
            result,
            client,
            infra_state,
            save=lambda s: save_infra_state(s, state.site_root),
        )
    console.print(f"[green]Apply complete![/green] {applied.summary()}.")


if __name__ == "__main__":
    app()
