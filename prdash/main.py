"""prdash CLI: all commands."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import tomlkit
import typer
from pydantic import BaseModel, ConfigDict
from rich import print as rprint
from rich.table import Table
from rich.text import Text

from prdash.aggregator import fetch_active_pull_requests
from prdash.client import AzureDevOpsClient
from prdash.colors import RepositoryColors
from prdash.errors import ApiError, ErrorNotifier, LoadError
from prdash.filters import FilterState, authors_of, project_summary, prune, refresh_view, repositories_of
from prdash.links import branch_name, my_pull_requests_url, pull_request_url, teams_channel_urls, teams_message
from prdash.logs import configure_logging
from prdash.models import EnrichedPullRequest, PipelineRun, ProjectSelector, PullRequestSuggestion
from prdash.pipelines import PipelineService, status_text
from prdash.related import related_pull_requests
from prdash.settings import (
    CONFIG_PATH,
    DEFAULT_PROFILE,
    PrdashSettings,
    add_project,
    get_settings,
    pin_author,
    remove_project,
    save_pat,
    toggle_pin,
    unpin_author,
)
from prdash.status import (
    build_summary,
    clean_description,
    comment_details,
    comment_status_info,
    format_age,
    merge_details,
    merge_status_info,
    review_status_info,
)
from prdash.suggestions import create_pull_request_url, fetch_suggestions, suggestions_for_repository

app = typer.Typer(help="prdash: active Azure DevOps pull requests across projects", no_args_is_help=True)
projects_app = typer.Typer(help="Manage the projects and repositories to watch", no_args_is_help=True)
app.add_typer(projects_app, name="projects")

ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-P", help="Profile name from ~/.config/prdash/config.toml"),
]

PAT_URL_HINT = "Create one under User settings > Personal access tokens (scopes: Code read, Build read)."

T = TypeVar("T")


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log API calls and fallbacks to stderr")] = False,
) -> None:
    configure_logging(verbose)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class Dashboard(BaseModel):
    model_config = ConfigDict(frozen=True)

    pull_requests: list[EnrichedPullRequest] = []
    suggestions: list[PullRequestSuggestion] = []


def _prompt_for_pat(settings: PrdashSettings) -> str:
    rprint(f"[bold]A Personal Access Token is needed for {settings.organization}.[/bold]")
    rprint(PAT_URL_HINT)
    pat = typer.prompt("Personal Access Token", hide_input=True).strip()
    if not pat:
        typer.echo("error: no Personal Access Token given", err=True)
        raise typer.Exit(1)
    save_pat(settings.profile, pat)
    rprint(f"[green]✓[/green] Saved PAT to profile '{settings.profile}' in {CONFIG_PATH}")
    return pat


def _report_errors(errors: list[ApiError]) -> None:
    for message in dict.fromkeys(e.message for e in errors):
        typer.echo(f"warning: {message}", err=True)


async def _with_client(
    settings: PrdashSettings,
    fetch: Callable[[AzureDevOpsClient], Awaitable[T]],
    interactive: bool = True,
) -> T:
    """Run ``fetch`` against a fresh client, re-prompting for a PAT once on auth failure."""
    errors: list[ApiError] = []
    notifier = ErrorNotifier()
    unsubscribe = notifier.subscribe(errors.append)
    try:
        async with AzureDevOpsClient.from_settings(settings, notifier) as client:
            if not client.has_credential and interactive:
                client.update_credential(_prompt_for_pat(settings))

            result = await fetch(client)

            if interactive and any(e.is_auth_error for e in errors):
                _report_errors(errors)
                errors.clear()
                client.update_credential(_prompt_for_pat(settings))
                result = await fetch(client)
    finally:
        unsubscribe()

    _report_errors(errors)
    return result


def _run(what: str, coro: Awaitable[T]) -> T:
    try:
        return asyncio.run(coro)
    except LoadError as exc:
        typer.echo(f"Failed to load {what}: {exc}", err=True)
        raise typer.Exit(1) from exc


def load_dashboard(settings: PrdashSettings, interactive: bool = True, suggestions: bool = True) -> Dashboard:
    """Aggregate active pull requests (and suggestions) for every configured project."""

    async def fetch(client: AzureDevOpsClient) -> Dashboard:
        if not suggestions:
            result = await fetch_active_pull_requests(client, settings.projects)
            return Dashboard(pull_requests=result.items)
        result, found = await asyncio.gather(
            fetch_active_pull_requests(client, settings.projects),
            fetch_suggestions(client, settings.projects),
        )
        return Dashboard(pull_requests=result.items, suggestions=found)

    return _run("pull requests", _with_client(settings, fetch, interactive))


def load_pipeline_runs(
    settings: PrdashSettings,
    project: str,
    definition_id: int,
    count: int = 20,
    branch: str | None = None,
    with_stages: bool = False,
    interactive: bool = True,
) -> list[PipelineRun]:
    async def fetch(client: AzureDevOpsClient) -> list[PipelineRun]:
        return await PipelineService(client).list_runs(project, definition_id, count, branch, with_stages)

    return _run("pipeline runs", _with_client(settings, fetch, interactive))


def _require_projects(settings: PrdashSettings) -> None:
    if not settings.projects:
        rprint("[yellow]No projects configured.[/yellow] Add one with: prdash projects add PROJECT --repo REPO")
        raise typer.Exit(1)


def _find_pull_request(prs: list[EnrichedPullRequest], repository: str, pull_request_id: int) -> EnrichedPullRequest:
    pr = next((p for p in prs if p.key == (repository, pull_request_id)), None)
    if pr is None:
        typer.echo(f"error: no active pull request {repository}#{pull_request_id}", err=True)
        raise typer.Exit(1)
    return pr


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _status_text(info) -> Text:
    return Text(info.label, style=info.style)


def _pull_request_table(
    prs: list[EnrichedPullRequest],
    all_prs: list[EnrichedPullRequest],
    pinned: set[str],
    show_related: bool = False,
) -> Table:
    colors = RepositoryColors()
    table = Table(title=f"Active Pull Requests ({len(prs)} of {len(all_prs)})")
    table.add_column("Repository")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Branch", style="dim")
    table.add_column("Merge")
    table.add_column("Comments")
    table.add_column("Reviews")
    table.add_column("Builds")
    table.add_column("Age", style="dim")
    if show_related:
        table.add_column("Related", style="dim")

    for pr in sorted(prs, key=lambda p: p.creation_date or "", reverse=True):
        title = Text(pr.title)
        if pr.is_draft:
            title.append(" (draft)", style="dim")
        author = Text(pr.author)
        if pr.author in pinned:
            author.append(" ★", style="yellow")

        row = [
            Text(pr.repository.name, style=colors.color(pr.repository.name)),
            str(pr.pull_request_id),
            title,
            author,
            Text(f"{branch_name(pr.source_ref_name)} → {branch_name(pr.target_ref_name)}"),
            _status_text(merge_status_info(pr)),
            _status_text(comment_status_info(pr)),
            _status_text(review_status_info(pr)),
            Text(build_summary(pr) or "—"),
            format_age(pr.creation_date),
        ]
        if show_related:
            related = related_pull_requests(pr, all_prs)
            row.append(", ".join(f"{r.repository.name}#{r.pull_request_id}" for r in related) or "—")
        table.add_row(*row)

    return table


# ---------------------------------------------------------------------------
# Pull requests
# ---------------------------------------------------------------------------


@app.command("prs")
def prs_cmd(
    profile: ProfileOpt = None,
    repo: Annotated[list[str] | None, typer.Option("--repo", "-r", help="Only these repositories")] = None,
    author: Annotated[list[str] | None, typer.Option("--author", "-a", help="Only these authors")] = None,
    drafts: Annotated[bool, typer.Option("--drafts", "-d", help="Include draft pull requests")] = False,
    related: Annotated[bool, typer.Option("--related", help="Show a related pull request per row")] = False,
    no_prompt: Annotated[bool, typer.Option("--no-prompt", help="Never prompt for a PAT")] = False,
) -> None:
    """List active pull requests across every configured project."""
    settings = get_settings(profile)
    _require_projects(settings)
    dashboard = load_dashboard(settings, interactive=not no_prompt)
    prs = dashboard.pull_requests

    state = FilterState(
        selected_repositories=set(repo or []),
        selected_authors=set(author or []),
        show_drafts=drafts or settings.show_drafts,
    )
    for unknown in sorted(state.selected_repositories - repositories_of(prs)):
        rprint(f"[yellow]Warning:[/yellow] no active pull requests in repository '{unknown}'")
    for unknown in sorted(state.selected_authors - authors_of(prs)):
        rprint(f"[yellow]Warning:[/yellow] no active pull requests by '{unknown}'")
    prune(state, prs)

    pinned = set(settings.pinned_authors)
    visible = refresh_view(prs, state, pinned)
    rprint(_pull_request_table(visible, prs, pinned, show_related=related))

    summary = project_summary(prs, settings.projects)
    if summary:
        rprint("[dim]" + ", ".join(f"{name}: {count}" for name, count in sorted(summary.items())) + "[/dim]")
    if dashboard.suggestions:
        names = sorted({s.properties.source_repository.name for s in dashboard.suggestions})
        per_repository = ", ".join(
            f"{name}: {len(suggestions_for_repository(dashboard.suggestions, name))}" for name in names
        )
        rprint(
            f"[cyan]{len(dashboard.suggestions)} recently pushed branch(es) have no pull request yet[/cyan] "
            f"({per_repository}). Run: prdash suggestions"
        )


@app.command("suggestions")
def suggestions_cmd(
    profile: ProfileOpt = None,
    no_prompt: Annotated[bool, typer.Option("--no-prompt", help="Never prompt for a PAT")] = False,
) -> None:
    """List recently pushed branches that could become pull requests."""
    settings = get_settings(profile)
    _require_projects(settings)
    dashboard = load_dashboard(settings, interactive=not no_prompt)

    if not dashboard.suggestions:
        rprint("[dim]No pull request suggestions.[/dim]")
        return

    table = Table(title="Create a Pull Request")
    table.add_column("Repository", style="cyan")
    table.add_column("Branch")
    table.add_column("URL", style="dim")
    for suggestion in dashboard.suggestions:
        props = suggestion.properties
        table.add_row(
            Text(props.source_repository.name),
            Text(f"{branch_name(props.source_branch)} → {branch_name(props.target_branch)}"),
            create_pull_request_url(suggestion),
        )
    rprint(table)


@app.command("open")
def open_cmd(
    repository: Annotated[str, typer.Argument(help="Repository name")],
    pull_request_id: Annotated[int, typer.Argument(help="Pull request ID")],
    profile: ProfileOpt = None,
    launch: Annotated[bool, typer.Option("--launch", "-l", help="Open in the browser")] = False,
    details: Annotated[
        bool, typer.Option("--details", "-d", help="Also show the description, merge and comment status")
    ] = False,
) -> None:
    """Print the web URL of an active pull request."""
    settings = get_settings(profile)
    _require_projects(settings)
    dashboard = load_dashboard(settings, suggestions=False)
    pr = _find_pull_request(dashboard.pull_requests, repository, pull_request_id)

    url = pull_request_url(settings, pr.project_name, pr)
    typer.echo(url)
    if details:
        rprint(Text(pr.title, style="bold"))
        description = clean_description(pr.description)
        if description:
            typer.echo(description)
        typer.echo(merge_details(pr))
        typer.echo(comment_details(pr))
    if launch:
        typer.launch(url)


@app.command("mine")
def mine_cmd(
    repository: Annotated[str, typer.Argument(help="Repository name")],
    profile: ProfileOpt = None,
    launch: Annotated[bool, typer.Option("--launch", "-l", help="Open in the browser")] = False,
) -> None:
    """Print the URL of my pull requests in a repository."""
    settings = get_settings(profile)
    url = my_pull_requests_url(settings, repository, settings.projects, [])
    if url is None and settings.projects:
        # Whole-project selectors: find the project through a fetched pull request
        dashboard = load_dashboard(settings, suggestions=False)
        url = my_pull_requests_url(settings, repository, settings.projects, dashboard.pull_requests)
    if url is None:
        typer.echo(f"error: cannot tell which project repository '{repository}' belongs to", err=True)
        raise typer.Exit(1)

    typer.echo(url)
    if launch:
        typer.launch(url)


@app.command("teams")
def teams_cmd(
    repository: Annotated[str, typer.Argument(help="Repository name")],
    pull_request_id: Annotated[int, typer.Argument(help="Pull request ID")],
    profile: ProfileOpt = None,
) -> None:
    """Print a review request message to share in the Teams channel."""
    settings = get_settings(profile)
    _require_projects(settings)
    dashboard = load_dashboard(settings, suggestions=False)
    pr = _find_pull_request(dashboard.pull_requests, repository, pull_request_id)

    typer.echo(teams_message(settings, pr.project_name, pr))
    urls = teams_channel_urls(settings)
    if urls is None:
        rprint("[dim]Set teams_channel_id, teams_group_id and teams_tenant_id to get channel links.[/dim]")
        return
    app_url, web_url = urls
    rprint("")
    rprint(f"Teams app: {app_url}")
    rprint(f"Teams web: {web_url}")


@app.command("pipelines")
def pipelines_cmd(
    project: Annotated[str, typer.Argument(help="Project name")],
    definition_id: Annotated[int, typer.Argument(help="Pipeline definition ID")],
    profile: ProfileOpt = None,
    count: Annotated[int, typer.Option("--count", "-n", min=1, help="Number of runs")] = 20,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Only runs of this branch")] = None,
    stages: Annotated[bool, typer.Option("--stages", "-s", help="Fetch stage results for each run")] = False,
) -> None:
    """List recent runs of a pipeline."""
    settings = get_settings(profile)
    runs = load_pipeline_runs(settings, project, definition_id, count, branch, stages)

    if not runs:
        rprint("[dim]No runs found.[/dim]")
        return

    table = Table(title=runs[0].definition.name or f"Pipeline {definition_id}")
    table.add_column("Build", style="cyan")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Commit", style="dim")
    table.add_column("Requested by")
    table.add_column("Duration", justify="right")
    if stages:
        table.add_column("Stages")
    table.add_column("URL", style="dim")

    for run in runs:
        label = status_text(run)
        style = {"Succeeded": "green", "Failed": "red", "In Progress": "yellow"}.get(label, "dim")
        row = [
            Text(run.build_number),
            Text(label, style=style),
            Text(branch_name(run.source_branch)),
            run.short_source_version,
            Text(run.requested_for or "—"),
            run.duration,
        ]
        if stages:
            row.append(Text(", ".join(f"{s.name}: {s.result or s.status or '?'}" for s in run.stages) or "—"))
        row.append(run.url)
        table.add_row(*row)

    rprint(table)


# ---------------------------------------------------------------------------
# Projects and pins
# ---------------------------------------------------------------------------


@projects_app.command("list")
def projects_list(profile: ProfileOpt = None) -> None:
    """Show the configured projects."""
    settings = get_settings(profile)
    table = Table(title=f"Projects ({settings.profile})")
    table.add_column("Project", style="cyan")
    table.add_column("Repository")
    for selector in settings.projects:
        table.add_row(selector.name, selector.repository or "[dim](all)[/dim]")
    rprint(table)


@projects_app.command("add")
def projects_add(
    name: Annotated[str, typer.Argument(help="Project name")],
    profile: ProfileOpt = None,
    repo: Annotated[str | None, typer.Option("--repo", "-r", help="Repository (default: all)")] = None,
) -> None:
    """Watch a project, or a single repository within it."""
    settings = get_settings(profile)
    selector = ProjectSelector(name=name, repository=repo)
    add_project(settings.profile, selector)
    rprint(f"[green]✓[/green] Watching {selector.label()}")


@projects_app.command("remove")
def projects_remove(
    name: Annotated[str, typer.Argument(help="Project name")],
    profile: ProfileOpt = None,
    repo: Annotated[str | None, typer.Option("--repo", "-r", help="Only this repository")] = None,
) -> None:
    """Stop watching a project (or one of its repositories)."""
    settings = get_settings(profile)
    remaining = remove_project(settings.profile, name, repo)
    rprint(f"[green]✓[/green] Removed {ProjectSelector(name=name, repository=repo).label()}")
    rprint(f"  {len(remaining)} project selector(s) left")


@app.command("pin")
def pin_cmd(
    author: Annotated[str, typer.Argument(help="Author display name")],
    profile: ProfileOpt = None,
    toggle: Annotated[bool, typer.Option("--toggle", "-t", help="Unpin the author if already pinned")] = False,
) -> None:
    """Pin an author: their pull requests are selected by default."""
    settings = get_settings(profile)
    if toggle:
        pinned = toggle_pin(settings.profile, author)
    else:
        pin_author(settings.profile, author)
        pinned = True
    rprint(f"[green]✓[/green] {'Pinned' if pinned else 'Unpinned'} {author}")


@app.command("unpin")
def unpin_cmd(
    author: Annotated[str, typer.Argument(help="Author display name")],
    profile: ProfileOpt = None,
) -> None:
    """Unpin an author."""
    settings = get_settings(profile)
    unpin_author(settings.profile, author)
    rprint(f"[green]✓[/green] Unpinned {author}")


@app.command("pins")
def pins_cmd(profile: ProfileOpt = None) -> None:
    """List pinned authors."""
    settings = get_settings(profile)
    if not settings.pinned_authors:
        rprint("[dim]No pinned authors.[/dim]")
        return
    for author in settings.pinned_authors:
        typer.echo(author)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


@app.command("config-show")
def config_show(profile: ProfileOpt = None) -> None:
    """Show resolved configuration (masks credentials)."""
    settings = get_settings(profile)

    def mask(val: str | None) -> str:
        if not val:
            return "[dim](not set)[/dim]"
        if len(val) <= 5:
            return "***"
        return f"...{val[-4:]}"

    def show(val: object) -> str:
        return str(val) if val not in (None, "", []) else "[dim](not set)[/dim]"

    table = Table(title="prdash Configuration")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("profile", settings.profile)
    table.add_row("organization", show(settings.organization))
    table.add_row("base_url", settings.base_url)
    table.add_row("pat", mask(settings.pat_value))
    table.add_row("timeout", str(settings.timeout))
    table.add_row("projects", show(", ".join(p.label() for p in settings.projects)))
    table.add_row("pinned_authors", show(", ".join(settings.pinned_authors)))
    table.add_row("show_drafts", str(settings.show_drafts))
    table.add_row("teams_channel_id", show(settings.teams_channel_id))
    table.add_row("teams_channel_name", settings.teams_channel_name)

    rprint(table)


async def _check_access(settings: PrdashSettings, project: str) -> str:
    async with AzureDevOpsClient.from_settings(settings) as client:
        repositories = await client.list_repositories(project)
    if not repositories.ok:
        return f"[yellow]Warning:[/yellow] {repositories.error.message}"
    return f"[green]✓[/green] Connected. Found {len(repositories.value)} repositories in {project}."


@app.command("init")
def init_cmd() -> None:
    """Interactive first-time setup wizard."""
    rprint("[bold]prdash Setup Wizard[/bold]")
    rprint("")

    organization = typer.prompt("Azure DevOps organization (dev.azure.com/<organization>)").strip()
    if not organization:
        rprint("[red]Organization cannot be empty.[/red]")
        raise typer.Exit(1)
    base_url = typer.prompt("Base URL", default="https://dev.azure.com").strip()

    profile_name = typer.prompt("Profile name", default=DEFAULT_PROFILE).strip()
    if not profile_name:
        rprint("[red]Profile name cannot be empty.[/red]")
        raise typer.Exit(1)

    rprint(PAT_URL_HINT)
    pat = typer.prompt("Paste PAT", hide_input=True).strip()

    profile_config: dict = {"organization": organization, "base_url": base_url, "pat": pat}

    project = typer.prompt("First project to watch (or leave blank)", default="").strip()
    if project:
        repository = typer.prompt("Repository in that project (blank for all)", default="").strip()
        selector = {"name": project}
        if repository:
            selector["repository"] = repository
        profile_config["projects"] = [selector]

        if pat and typer.confirm("List repositories to confirm the PAT works?", default=True):
            settings = PrdashSettings(**profile_config, profile=profile_name)
            try:
                rprint(asyncio.run(_check_access(settings, project)))
            except LoadError as exc:
                rprint(f"[yellow]Warning:[/yellow] {exc}")

    set_as_default = typer.confirm(f"Set '{profile_name}' as default profile?", default=True)

    # Round-trip preserves any existing comments
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    doc = tomlkit.load(CONFIG_PATH.open()) if CONFIG_PATH.exists() else tomlkit.document()
    doc[profile_name] = profile_config
    if set_as_default:
        doc["default_profile"] = profile_name
    CONFIG_PATH.write_text(tomlkit.dumps(doc))
    rprint(f"[green]✓[/green] Profile '{profile_name}' written to {CONFIG_PATH}")
    rprint("Next: prdash prs")
