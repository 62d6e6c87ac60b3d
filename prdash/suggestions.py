"""Resolution of "create pull request" suggestions for configured repositories."""

import asyncio
from urllib.parse import quote

import structlog

from prdash.client import AzureDevOpsClient
from prdash.errors import LoadError
from prdash.links import branch_name
from prdash.models import ProjectSelector, PullRequestSuggestion

logger = structlog.get_logger(__name__)


class SuggestionResolver:
    def __init__(self, client: AzureDevOpsClient) -> None:
        self.client = client

    async def resolve_repository_id(self, project: str, repository: str) -> str | None:
        repositories = await self.client.list_repositories(project)
        return next((r.id for r in repositories.value if r.name == repository), None)

    async def _for_selector(self, selector: ProjectSelector) -> list[PullRequestSuggestion]:
        # Whole-project selectors have no repository to ask about
        if not selector.name or not selector.repository:
            return []
        try:
            repository_id = await self.resolve_repository_id(selector.name, selector.repository)
            if repository_id is None:
                logger.info("repository_not_found", project=selector.name, repository=selector.repository)
                return []
            suggestions = await self.client.list_suggestions(repository_id)
        except LoadError as exc:
            logger.warning("suggestions_skipped", project=selector.label(), error=str(exc))
            return []
        return suggestions.value

    async def fetch_suggestions(
        self, selectors: list[ProjectSelector], credential: str | None = None
    ) -> list[PullRequestSuggestion]:
        if credential:
            self.client.update_credential(credential)
        if not selectors:
            logger.warning("no_selectors_configured")
            return []

        batches = await asyncio.gather(*(self._for_selector(s) for s in selectors))
        return [suggestion for batch in batches for suggestion in batch]


async def fetch_suggestions(
    client: AzureDevOpsClient, selectors: list[ProjectSelector], credential: str | None = None
) -> list[PullRequestSuggestion]:
    return await SuggestionResolver(client).fetch_suggestions(selectors, credential)


def suggestions_for_repository(
    suggestions: list[PullRequestSuggestion], repository: str
) -> list[PullRequestSuggestion]:
    return [s for s in suggestions if s.properties.source_repository.name == repository]


def create_pull_request_url(suggestion: PullRequestSuggestion) -> str:
    props = suggestion.properties
    repository_id = props.source_repository.id
    return (
        f"{props.source_repository.web_url}/pullrequestcreate"
        f"?sourceRef={quote(branch_name(props.source_branch), safe='')}"
        f"&targetRef={quote(branch_name(props.target_branch), safe='')}"
        f"&sourceRepositoryId={repository_id}&targetRepositoryId={repository_id}"
    )
