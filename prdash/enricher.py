import asyncio

import structlog
from pydantic import ValidationError

from prdash.client import ApiResult, AzureDevOpsClient, builds_from_statuses
from prdash.errors import LoadError
from prdash.links import branch_name
from prdash.models import BuildResult, EnrichedPullRequest, PullRequestDetail, RawPullRequest, Thread

logger = structlog.get_logger(__name__)


def default_enrichment(pr: RawPullRequest) -> EnrichedPullRequest:
    """The degraded record used when a pull request cannot be enriched at all."""
    return EnrichedPullRequest(
        **pr.model_dump(exclude={"is_draft"}),
        threads=[],
        builds=[],
        comment_count=0,
        unresolved_comment_count=0,
        merge_status="unknown",
        is_draft=False,
        has_conflicts=False,
        can_merge=False,
    )


def merge_enrichment(
    pr: RawPullRequest,
    threads: ApiResult[list[Thread]],
    builds: ApiResult[list[BuildResult]],
    detail: ApiResult[PullRequestDetail],
) -> EnrichedPullRequest:
    """Join the three sub-results, defaulting only the fields whose call failed."""
    thread_list = threads.value if threads.ok else []
    if detail.ok:
        merge_status = detail.value.merge_status or "unknown"
        is_draft = detail.value.is_draft
    else:
        merge_status = "unknown"
        is_draft = pr.is_draft

    return EnrichedPullRequest(
        **pr.model_dump(exclude={"is_draft"}),
        threads=thread_list,
        builds=builds.value if builds.ok else [],
        comment_count=sum(1 for thread in thread_list for comment in thread.comments if comment.counts),
        unresolved_comment_count=sum(1 for thread in thread_list if thread.is_unresolved),
        merge_status=merge_status,
        is_draft=is_draft,
        has_conflicts=merge_status == "conflicts",
        can_merge=merge_status == "succeeded",
    )


class PullRequestEnricher:
    """Fetches threads, builds and merge status for one pull request.

    Never fails outward: a failed sub-call defaults its own fields, and a
    sub-result that cannot be merged at all yields ``default_enrichment``.
    With ``all_or_nothing=True`` any failed sub-call yields the full default
    record instead.
    """

    def __init__(self, client: AzureDevOpsClient, *, all_or_nothing: bool = False) -> None:
        self.client = client
        self.all_or_nothing = all_or_nothing

    async def discover_builds(
        self, project: str, repository_id: str, pr: RawPullRequest
    ) -> ApiResult[list[BuildResult]]:
        statuses = await self.client.list_statuses(project, repository_id, pr.pull_request_id)
        if statuses.ok:
            return ApiResult(builds_from_statuses(statuses.value))

        logger.info(
            "build_discovery_fallback",
            project=project,
            repository=repository_id,
            pull_request=pr.pull_request_id,
        )
        return await self.client.list_builds(project, branch_name(pr.source_ref_name))

    async def enrich(self, project: str, repository_id: str, pr: RawPullRequest) -> EnrichedPullRequest:
        results = await asyncio.gather(
            self.client.list_threads(project, repository_id, pr.pull_request_id),
            self.discover_builds(project, repository_id, pr),
            self.client.get_pull_request_detail(project, repository_id, pr.pull_request_id),
            return_exceptions=True,
        )
        try:
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            threads, builds, detail = results
            if self.all_or_nothing and not (threads.ok and builds.ok and detail.ok):
                logger.warning(
                    "enrichment_degraded",
                    project=project,
                    repository=repository_id,
                    pull_request=pr.pull_request_id,
                )
                return default_enrichment(pr)
            return merge_enrichment(pr, threads, builds, detail)
        except (LoadError, ValidationError) as exc:
            logger.error(
                "enrichment_failed",
                project=project,
                repository=repository_id,
                pull_request=pr.pull_request_id,
                error=str(exc),
            )
            return default_enrichment(pr)
