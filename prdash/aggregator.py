"""Fan-out/fan-in of active pull requests across all configured selectors."""

import asyncio

import structlog

from prdash.client import AzureDevOpsClient
from prdash.enricher import PullRequestEnricher
from prdash.errors import LoadError
from prdash.models import AggregateResult, EnrichedPullRequest, ProjectSelector

logger = structlog.get_logger(__name__)


class PullRequestAggregator:
    def __init__(self, client: AzureDevOpsClient, enricher: PullRequestEnricher | None = None) -> None:
        self.client = client
        self.enricher = enricher or PullRequestEnricher(client)

    async def fetch_active_pull_requests(
        self, selectors: list[ProjectSelector], credential: str | None = None
    ) -> AggregateResult:
        """Fetch and enrich the active pull requests of every selector.

        A selector whose listing fails, is malformed or comes back empty
        contributes nothing; the others are still returned. Each item carries
        the name of the selector it was fetched for as ``project_name``. Order
        is unspecified.
        """
        if credential:
            self.client.update_credential(credential)

        if not selectors:
            logger.warning("no_selectors_configured")
            return AggregateResult(items=[], count=0)

        batches = await asyncio.gather(*(self._fetch_selector(s) for s in selectors), return_exceptions=True)

        items: list[EnrichedPullRequest] = []
        for batch in batches:
            if isinstance(batch, BaseException):
                raise batch
            items.extend(batch)
        return AggregateResult(items=items, count=len(items))

    async def _fetch_selector(self, selector: ProjectSelector) -> list[EnrichedPullRequest]:
        if not selector.name:
            logger.warning("invalid_selector", selector=selector.model_dump())
            return []

        try:
            page = await self.client.list_active_pull_requests(selector.name, selector.repository)
        except LoadError as exc:
            logger.warning("selector_malformed", project=selector.label(), detail=exc.detail[:200])
            return []
        if not page.ok:
            logger.warning("selector_skipped", project=selector.label(), reason=page.error.kind.value)
            return []
        if not page.value.value:
            logger.debug("selector_empty", project=selector.label())
            return []

        enriched = await asyncio.gather(
            *(
                # project-wide listings address each repository by name
                self.enricher.enrich(selector.name, selector.repository or pr.repository.name, pr)
                for pr in page.value.value
            )
        )
        return [pr.model_copy(update={"project_name": selector.name}) for pr in enriched]


async def fetch_active_pull_requests(
    client: AzureDevOpsClient, selectors: list[ProjectSelector], credential: str | None = None
) -> AggregateResult:
    return await PullRequestAggregator(client).fetch_active_pull_requests(selectors, credential)
