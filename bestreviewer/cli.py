"""CLI entrypoint for bestreviewer."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from bestreviewer.config import Config, load_config
from bestreviewer.errors import OnlyAuthorFound, ResolutionError
from bestreviewer.schemas import ResolutionResult
from bestreviewer.source import DataSourceError

if TYPE_CHECKING:
    from bestreviewer.engine import ReviewerEngine

app = typer.Typer(
    name="bestreviewer",
    help="Pick a primary and a secondary reviewer for GitHub PRs.",
    add_completion=False,
)
console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def _parse_repo(repo: str) -> tuple[str, str]:
    """Split ``owner/name``."""
    owner, sep, name = repo.strip().strip("/").partition("/")
    if not sep or not owner or not name or "/" in name:
        raise typer.BadParameter(f"expected owner/name, got {repo!r}", param_hint="--repo")
    return owner, name


def _engine(cfg: Config) -> ReviewerEngine:
    from bestreviewer.engine import ReviewerEngine
    from bestreviewer.github_client import GitHubClient

    try:
        gh = GitHubClient(cfg.github_token.get_secret_value(), cfg.api_url, cfg.request_timeout)
    except DataSourceError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    return ReviewerEngine(gh, cfg)


def _result_table(result: ResolutionResult) -> Table:
    table = Table(title=f"Reviewers for {result.owner}/{result.repo}#{result.number}")
    table.add_column("Role", style="cyan")
    table.add_column("Login", style="bold")
    table.add_column("Method")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Access")
    table.add_column("Sources", style="dim")
    for role, c in zip(("primary", "secondary"), result.reviewers):
        table.add_row(
            role,
            c.login,
            c.method.value,
            f"{c.combined_score:.2f}",
            c.association or "-",
            ", ".join(c.sources),
        )
    return table


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------

@app.command()
def resolve(
    repo: str = typer.Option(..., "--repo", help="GitHub repo (owner/name)"),
    pr: int = typer.Option(..., "--pr", help="Pull request number"),
    assign: bool = typer.Option(False, "--assign", help="Request the chosen reviewers on the PR"),
    config_file: str = typer.Option(None, "--config", help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Resolve reviewers for one pull request."""
    _setup_logging(verbose)
    owner, name = _parse_repo(repo)
    cfg = load_config(config_path=config_file)
    engine = _engine(cfg)

    try:
        with console.status(f"Resolving reviewers for {repo}#{pr}..."):
            result = engine.resolve_pr(owner, name, pr)
    except OnlyAuthorFound as e:
        console.print(f"[yellow]{escape(str(e))}[/yellow]")
        raise typer.Exit(1)
    except (ResolutionError, DataSourceError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(_result_table(result))
    console.print(f"Levels: {', '.join(result.levels)}")

    if assign:
        if result.draft:
            console.print(f"[yellow]Draft PR: would have assigned {escape(', '.join(result.logins))}[/yellow]")
        elif engine.assign(result):
            console.print(f"[green]Requested review from {', '.join(result.logins)}[/green]")
        else:
            console.print(f"[yellow]Not requesting reviewers: {escape(result.hold_reason or '')}[/yellow]")


# ---------------------------------------------------------------------------
# batch
# ---------------------------------------------------------------------------

@app.command()
def batch(
    repo: str = typer.Option(..., "--repo", help="GitHub repo (owner/name)"),
    prs: list[int] = typer.Argument(..., help="Pull request numbers"),
    config_file: str = typer.Option(None, "--config", help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Resolve reviewers for several pull requests."""
    _setup_logging(verbose)
    owner, name = _parse_repo(repo)
    cfg = load_config(config_path=config_file)
    engine = _engine(cfg)

    changes = []
    for number in prs:
        try:
            changes.append(engine.source.change_request(owner, name, number))
        except DataSourceError as e:
            console.print(f"[red]#{number}: {escape(str(e))}[/red]")

    table = Table(title=f"Reviewers for {repo}")
    table.add_column("PR", style="cyan", justify="right")
    table.add_column("Primary")
    table.add_column("Secondary")
    table.add_column("Note", style="dim")
    failed = False
    for item in engine.resolve_batch(changes):
        number = str(item.change.number)
        if item.result is None:
            failed = True
            table.add_row(number, "-", "-", f"[red]{escape(str(item.error))}[/red]")
            continue
        primary = item.result.primary
        secondary = item.result.secondary
        table.add_row(
            number,
            primary.login if primary else "-",
            secondary.login if secondary else "-",
            "draft" if item.result.draft else "",
        )
    console.print(table)
    if failed:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# check-user
# ---------------------------------------------------------------------------

@app.command("check-user")
def check_user(
    login: str = typer.Argument(..., help="GitHub login to check"),
    repo: str = typer.Option(..., "--repo", help="GitHub repo (owner/name)"),
    config_file: str = typer.Option(None, "--config", help="Path to config YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Check whether a login could be picked as a reviewer for the repo."""
    _setup_logging(verbose)
    owner, name = _parse_repo(repo)
    cfg = load_config(config_path=config_file)
    engine = _engine(cfg)

    from bestreviewer.schemas import ChangeRequest

    # No PR in play, so there is no author to exclude.
    placeholder = ChangeRequest(owner=owner, repo=name, number=0, author="")
    verdict = engine.validator_for(placeholder).validate(login)
    if verdict.is_valid:
        console.print(f"[green]{escape(login)} is eligible ({verdict.association})[/green]")
    else:
        console.print(f"[red]{escape(login)} is not eligible: {escape(verdict.reason)}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
