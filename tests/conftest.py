"""Shared test fixtures."""

import pytest
import structlog

from prdash.enricher import default_enrichment
from prdash.models import EnrichedPullRequest, ProjectSelector, RawPullRequest
from prdash.settings import PrdashSettings

_ENRICHED_FIELDS = (
    "comment_count",
    "unresolved_comment_count",
    "merge_status",
    "builds",
    "project_name",
    "is_draft",
    "reviewers",
)


@pytest.fixture(autouse=True)
def reset_structlog():
    structlog.reset_defaults()
    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("PRDASH_PROFILE", "PRDASH_ORGANIZATION", "PRDASH_PAT", "PRDASH_BASE_URL"):
        monkeypatch.delenv(var, raising=False)


def _pr_payload(
    pr_id: int = 1,
    repository: str = "web",
    author: str = "Alice",
    title: str = "Add login page",
    unique_name: str | None = None,
    source: str = "refs/heads/feature/login",
    created: str = "2024-05-01T10:00:00.1234567Z",
    is_draft: bool = False,
) -> dict:
    """A pull request as Azure DevOps returns it from the list endpoint."""
    return {
        "pullRequestId": pr_id,
        "title": title,
        "description": "",
        "status": "active",
        "createdBy": {
            "displayName": author,
            "uniqueName": unique_name or f"{author.lower()}@contoso.com",
            "_links": {"avatar": {"href": f"https://avatars.example/{author.lower()}"}},
        },
        "creationDate": created,
        "sourceRefName": source,
        "targetRefName": "refs/heads/main",
        "repository": {"id": f"{repository}-id", "name": repository, "project": {"name": "Shop"}},
        "reviewers": [],
        "isDraft": is_draft,
    }


@pytest.fixture
def pr_payload():
    return _pr_payload


@pytest.fixture
def make_pr():
    def _make(**kwargs) -> RawPullRequest:
        return RawPullRequest.model_validate(_pr_payload(**kwargs))

    return _make


@pytest.fixture
def make_enriched(make_pr):
    def _make(**kwargs) -> EnrichedPullRequest:
        update = {k: kwargs.pop(k) for k in _ENRICHED_FIELDS if k in kwargs}
        return default_enrichment(make_pr(**kwargs)).model_copy(update=update)

    return _make


@pytest.fixture
def settings() -> PrdashSettings:
    return PrdashSettings(  # type: ignore[call-arg]
        organization="contoso",
        pat="secret-pat",
        projects=[ProjectSelector(name="Shop", repository="web"), ProjectSelector(name="Shop", repository="api")],
    )
