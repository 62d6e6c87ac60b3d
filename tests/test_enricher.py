from unittest.mock import AsyncMock

import pytest

from prdash.client import ApiResult
from prdash.enricher import PullRequestEnricher, default_enrichment, merge_enrichment
from prdash.errors import LoadError, classify
from prdash.models import (
    BuildDefinition,
    BuildResult,
    Comment,
    PullRequestDetail,
    StatusContext,
    StatusEvent,
    Thread,
)


def _threads() -> list[Thread]:
    return [
        Thread(
            id=1,
            status="active",
            comments=[
                Comment(id=1, content="please rename"),
                Comment(id=2, content="done?", comment_type="text"),
                Comment(id=3, content="Alice voted", comment_type="system"),
            ],
        ),
        Thread(id=2, status="fixed", comments=[Comment(id=4, content="ok"), Comment(id=5, is_deleted=True)]),
        Thread(id=3, status="active", is_deleted=True, comments=[Comment(id=6, content="old")]),
    ]


def _ci_status() -> StatusEvent:
    return StatusEvent(id=42, state="succeeded", context=StatusContext(name="web-ci", genre="continuous-integration"))


def _failure(operation: str, status: int = 500) -> ApiResult:
    return ApiResult([], classify(operation, status))


@pytest.fixture
def mock_client():
    client = AsyncMock()
    client.list_threads.return_value = ApiResult(_threads())
    client.list_statuses.return_value = ApiResult([_ci_status()])
    client.get_pull_request_detail.return_value = ApiResult(PullRequestDetail(merge_status="succeeded"))
    client.list_builds.return_value = ApiResult([])
    return client


@pytest.fixture
def enricher(mock_client):
    return PullRequestEnricher(mock_client)


class TestMergeEnrichment:
    def test_counts(self, make_pr) -> None:
        enriched = merge_enrichment(
            make_pr(),
            ApiResult(_threads()),
            ApiResult([]),
            ApiResult(PullRequestDetail(merge_status="succeeded")),
        )
        # system comments and deleted comments are not counted; deleted threads never unresolved
        assert enriched.comment_count == 4
        assert enriched.unresolved_comment_count == 1
        assert enriched.can_merge is True
        assert enriched.has_conflicts is False

    def test_conflicts(self, make_pr) -> None:
        enriched = merge_enrichment(
            make_pr(), ApiResult([]), ApiResult([]), ApiResult(PullRequestDetail(merge_status="conflicts"))
        )
        assert enriched.merge_status == "conflicts"
        assert enriched.has_conflicts is True
        assert enriched.can_merge is False

    def test_missing_merge_status_is_unknown(self, make_pr) -> None:
        enriched = merge_enrichment(make_pr(), ApiResult([]), ApiResult([]), ApiResult(PullRequestDetail()))
        assert enriched.merge_status == "unknown"
        assert enriched.can_merge is False

    def test_failed_detail_keeps_raw_draft_flag(self, make_pr) -> None:
        detail = ApiResult(PullRequestDetail(), classify("get_pull_request_detail", 500))
        enriched = merge_enrichment(make_pr(is_draft=True), ApiResult(_threads()), ApiResult([]), detail)
        assert enriched.is_draft is True
        assert enriched.merge_status == "unknown"
        assert enriched.comment_count == 4

    def test_keeps_raw_fields(self, make_pr) -> None:
        pr = make_pr(pr_id=9, title="Fix cart totals")
        enriched = merge_enrichment(pr, ApiResult([]), ApiResult([]), ApiResult(PullRequestDetail()))
        assert enriched.pull_request_id == 9
        assert enriched.title == "Fix cart totals"
        assert enriched.author == "Alice"


class TestDefaultEnrichment:
    def test_all_defaults(self, make_pr) -> None:
        enriched = default_enrichment(make_pr(is_draft=True))
        assert enriched.threads == []
        assert enriched.builds == []
        assert enriched.comment_count == 0
        assert enriched.unresolved_comment_count == 0
        assert enriched.merge_status == "unknown"
        assert enriched.is_draft is False
        assert enriched.has_conflicts is False
        assert enriched.can_merge is False


class TestEnrich:
    @pytest.mark.asyncio
    async def test_success(self, enricher, mock_client, make_pr) -> None:
        enriched = await enricher.enrich("Shop", "web", make_pr(pr_id=7))

        assert enriched.comment_count == 4
        assert enriched.merge_status == "succeeded"
        assert [b.definition.name for b in enriched.builds] == ["web-ci"]
        mock_client.list_threads.assert_awaited_once_with("Shop", "web", 7)
        mock_client.get_pull_request_detail.assert_awaited_once_with("Shop", "web", 7)
        mock_client.list_builds.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_threads_only_default_comment_fields(self, enricher, mock_client, make_pr) -> None:
        mock_client.list_threads.return_value = _failure("list_threads")

        enriched = await enricher.enrich("Shop", "web", make_pr(pr_id=1))

        assert enriched.comment_count == 0
        assert enriched.unresolved_comment_count == 0
        assert enriched.threads == []
        assert enriched.merge_status == "succeeded"
        assert len(enriched.builds) == 1

    @pytest.mark.asyncio
    async def test_status_failure_falls_back_to_branch_builds(self, enricher, mock_client, make_pr) -> None:
        mock_client.list_statuses.return_value = _failure("list_statuses", 404)
        mock_client.list_builds.return_value = ApiResult(
            [BuildResult(id=5, status="inProgress", definition=BuildDefinition(id=1, name="nightly"))]
        )

        enriched = await enricher.enrich("Shop", "web", make_pr(source="refs/heads/feature/login"))

        mock_client.list_builds.assert_awaited_once_with("Shop", "feature/login")
        assert [b.definition.name for b in enriched.builds] == ["nightly"]

    @pytest.mark.asyncio
    async def test_fallback_failure_defaults_builds(self, enricher, mock_client, make_pr) -> None:
        mock_client.list_statuses.return_value = _failure("list_statuses")
        mock_client.list_builds.return_value = _failure("list_builds")

        enriched = await enricher.enrich("Shop", "web", make_pr())

        assert enriched.builds == []
        assert enriched.comment_count == 4

    @pytest.mark.asyncio
    async def test_unparseable_sub_result_yields_default_record(self, enricher, mock_client, make_pr) -> None:
        mock_client.list_threads.side_effect = LoadError("list_threads", "expected an object with a 'value' list")

        enriched = await enricher.enrich("Shop", "web", make_pr(is_draft=True))

        assert enriched == default_enrichment(make_pr(is_draft=True))

    @pytest.mark.asyncio
    async def test_all_or_nothing(self, mock_client, make_pr) -> None:
        mock_client.get_pull_request_detail.return_value = ApiResult(
            PullRequestDetail(), classify("get_pull_request_detail", 401)
        )
        enricher = PullRequestEnricher(mock_client, all_or_nothing=True)

        enriched = await enricher.enrich("Shop", "web", make_pr())

        assert enriched.comment_count == 0
        assert enriched.builds == []
        assert enriched.merge_status == "unknown"
