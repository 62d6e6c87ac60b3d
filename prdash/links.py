"""Web URLs and share text for pull requests."""

from urllib.parse import quote

from prdash.models import ProjectSelector, RawPullRequest
from prdash.settings import PrdashSettings

HEADS_PREFIX = "refs/heads/"


def branch_name(ref: str) -> str:
    return ref.removeprefix(HEADS_PREFIX)


def _org_url(settings: PrdashSettings) -> str:
    return f"{settings.base_url.rstrip('/')}/{settings.organization}"


def pull_request_url(settings: PrdashSettings, project: str, pr: RawPullRequest) -> str:
    return f"{_org_url(settings)}/{project}/_git/{pr.repository.name}/pullrequest/{pr.pull_request_id}"


def my_pull_requests_url(
    settings: PrdashSettings,
    repository: str,
    selectors: list[ProjectSelector],
    prs: list,
) -> str | None:
    """URL of the "mine" pull request list for ``repository``.

    The project comes from the selector configured for that repository, then
    from any fetched pull request in it. None when neither knows it.
    """
    project = next((s.name for s in selectors if s.repository == repository), None)
    if project is None:
        project = next(
            (pr.project_name for pr in prs if pr.repository.name == repository and pr.project_name),
            None,
        )
    if project is None:
        return None
    return f"{_org_url(settings)}/{project}/_git/{repository}/pullrequests?_a=mine"


def teams_message(settings: PrdashSettings, project: str, pr: RawPullRequest) -> str:
    """Review request text to paste into the Teams channel."""
    return "\n".join(
        [
            f"🆕 {pr.title}",
            f"📁 {pr.repository.name}",
            f"🔀 {branch_name(pr.source_ref_name)} → {branch_name(pr.target_ref_name)}",
            "",
            f"🔗 {pull_request_url(settings, project, pr)}",
            "",
            "Please review! 🙏",
        ]
    )


def teams_channel_urls(settings: PrdashSettings) -> tuple[str, str] | None:
    """Return (desktop app URL, web URL) for the review channel, if configured."""
    if not (settings.teams_channel_id and settings.teams_group_id and settings.teams_tenant_id):
        return None
    path = (
        f"teams.microsoft.com/l/channel/{quote(settings.teams_channel_id, safe='')}"
        f"/{quote(settings.teams_channel_name, safe='')}"
        f"?groupId={settings.teams_group_id}&tenantId={settings.teams_tenant_id}"
    )
    return f"msteams://{path}", f"https://{path}"
