"""Tests for AzureDevOpsClient using pytest-httpx."""

import base64

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock

from prdash.client import SUGGESTIONS_ACCEPT, AzureDevOpsClient, builds_from_statuses
from prdash.errors import ApiError, ApiErrorKind, ErrorNotifier, LoadError
from prdash.models import StatusEvent
from prdash.settings import PrdashSettings

ORG_URL = "https://dev.azure.com/contoso"
REPO_URL = f"{ORG_URL}/Shop/_apis/git/repositories/web"
THREADS_URL = f"{REPO_URL}/pullRequests/7/threads?api-version=7.0"
STATUSES_URL = f"{REPO_URL}/pullRequests/7/statuses?api-version=7.0"
DETAIL_URL = f"{REPO_URL}/pullRequests/7?api-version=7.0"


@pytest.fixture
def notifier() -> ErrorNotifier:
    return ErrorNotifier()


@pytest.fixture
def published(notifier: ErrorNotifier) -> list[ApiError]:
    errors: list[ApiError] = []
    notifier.subscribe(errors.append)
    return errors


@pytest_asyncio.fixture
async def client(notifier: ErrorNotifier):
    async with AzureDevOpsClient("https://dev.azure.com", "contoso", "secret-pat", notifier=notifier) as c:
        yield c


class TestConstruction:
    def test_from_settings(self) -> None:
        settings = PrdashSettings(organization="contoso", pat="abc", base_url="https://ado.example/")  # type: ignore[call-arg]
        client = AzureDevOpsClient.from_settings(settings)
        assert client.org_url == "https://ado.example/contoso"
        assert client.has_credential

    def test_no_credential(self) -> None:
        client = AzureDevOpsClient("https://dev.azure.com", "contoso")
        assert not client.has_credential


class TestHeaders:
    @pytest.mark.asyncio
    async def test_basic_auth_with_empty_user(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=THREADS_URL, json={"value": []})

        await client.list_threads("Shop", "web", 7)

        request = httpx_mock.get_request()
        expected = base64.b64encode(b":secret-pat").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_update_credential_applies_to_next_call(
        self, client: AzureDevOpsClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=THREADS_URL, json={"value": []})

        client.update_credential("new-pat")
        await client.list_threads("Shop", "web", 7)

        expected = base64.b64encode(b":new-pat").decode()
        assert httpx_mock.get_request().headers["Authorization"] == f"Basic {expected}"


class TestListActivePullRequests:
    @pytest.mark.asyncio
    async def test_by_repository(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock, pr_payload) -> None:
        httpx_mock.add_response(
            url=f"{REPO_URL}/pullrequests?searchCriteria.status=active&api-version=7.0",
            json={"value": [pr_payload(pr_id=7)], "count": 1},
        )

        result = await client.list_active_pull_requests("Shop", "web")

        assert result.ok
        assert result.value.count == 1
        pr = result.value.value[0]
        assert pr.pull_request_id == 7
        assert pr.author == "Alice"
        assert pr.created_by.avatar_url == "https://avatars.example/alice"
        assert pr.source_ref_name == "refs/heads/feature/login"

    @pytest.mark.asyncio
    async def test_whole_project(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock, pr_payload) -> None:
        httpx_mock.add_response(
            url=f"{ORG_URL}/Shop/_apis/git/pullrequests?searchCriteria.status=active&api-version=7.0",
            json={"value": [pr_payload(repository="web"), pr_payload(repository="api")], "count": 2},
        )

        result = await client.list_active_pull_requests("Shop")

        assert [pr.repository.name for pr in result.value.value] == ["web", "api"]

    @pytest.mark.asyncio
    async def test_page_without_value_is_empty(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{REPO_URL}/pullrequests?searchCriteria.status=active&api-version=7.0",
            json={"count": 0},
        )

        result = await client.list_active_pull_requests("Shop", "web")

        assert result.ok
        assert result.value.value == []

    @pytest.mark.asyncio
    async def test_null_value_is_empty(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{REPO_URL}/pullrequests?searchCriteria.status=active&api-version=7.0",
            json={"value": None},
        )

        result = await client.list_active_pull_requests("Shop", "web")

        assert result.ok
        assert result.value.value == []


class TestErrorClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (401, ApiErrorKind.AUTH_INVALID),
            (403, ApiErrorKind.AUTH_FORBIDDEN),
            (500, ApiErrorKind.UPSTREAM_ERROR),
            (404, ApiErrorKind.UPSTREAM_ERROR),
        ],
    )
    async def test_http_status(
        self,
        client: AzureDevOpsClient,
        httpx_mock: HTTPXMock,
        published: list[ApiError],
        status: int,
        kind: ApiErrorKind,
    ) -> None:
        httpx_mock.add_response(url=THREADS_URL, status_code=status, text="nope")

        result = await client.list_threads("Shop", "web", 7)

        assert not result.ok
        assert result.value == []
        assert result.error is not None
        assert result.error.kind is kind
        assert result.error.status == status
        assert published == [result.error]

    @pytest.mark.asyncio
    async def test_network_failure(
        self, client: AzureDevOpsClient, httpx_mock: HTTPXMock, published: list[ApiError]
    ) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=THREADS_URL)

        result = await client.list_threads("Shop", "web", 7)

        assert result.error is not None
        assert result.error.kind is ApiErrorKind.NETWORK_UNAVAILABLE
        assert result.error.status is None
        assert "connection refused" in result.error.detail
        assert len(published) == 1

    @pytest.mark.asyncio
    async def test_undecodable_body_is_network_failure(
        self, client: AzureDevOpsClient, httpx_mock: HTTPXMock, published: list[ApiError]
    ) -> None:
        httpx_mock.add_response(url=THREADS_URL, content=b"not-gzip", headers={"Content-Encoding": "gzip"})

        result = await client.list_threads("Shop", "web", 7)

        assert result.value == []
        assert result.error is not None
        assert result.error.kind is ApiErrorKind.NETWORK_UNAVAILABLE
        assert published == [result.error]

    @pytest.mark.asyncio
    async def test_redirect_loop_is_network_failure(
        self, client: AzureDevOpsClient, httpx_mock: HTTPXMock, published: list[ApiError]
    ) -> None:
        httpx_mock.add_exception(httpx.TooManyRedirects("Exceeded maximum allowed redirects."), url=DETAIL_URL)

        result = await client.get_pull_request_detail("Shop", "web", 7)

        assert result.value.merge_status is None
        assert result.error is not None
        assert result.error.kind is ApiErrorKind.NETWORK_UNAVAILABLE
        assert len(published) == 1

    @pytest.mark.asyncio
    async def test_detail_defaults_on_error(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=DETAIL_URL, status_code=500)

        result = await client.get_pull_request_detail("Shop", "web", 7)

        assert result.value.merge_status is None
        assert result.value.is_draft is False

    @pytest.mark.asyncio
    async def test_non_json_success_is_upstream_error(
        self, client: AzureDevOpsClient, httpx_mock: HTTPXMock
    ) -> None:
        httpx_mock.add_response(url=DETAIL_URL, text="<html>sign in</html>")

        result = await client.get_pull_request_detail("Shop", "web", 7)

        assert result.error is not None
        assert result.error.kind is ApiErrorKind.UPSTREAM_ERROR
        assert result.error.status == 200


class TestMalformedResponses:
    @pytest.mark.asyncio
    async def test_missing_value_list_raises(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=THREADS_URL, json={"threads": []})

        with pytest.raises(LoadError, match="list_threads"):
            await client.list_threads("Shop", "web", 7)

    @pytest.mark.asyncio
    async def test_invalid_item_raises(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=THREADS_URL, json={"value": [{"id": "not-a-number"}]})

        with pytest.raises(LoadError):
            await client.list_threads("Shop", "web", 7)

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_list(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=THREADS_URL, content=b"")

        result = await client.list_threads("Shop", "web", 7)

        assert result.ok
        assert result.value == []


class TestThreadsAndDetail:
    @pytest.mark.asyncio
    async def test_threads_parsed(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=THREADS_URL,
            json={
                "value": [
                    {
                        "id": 1,
                        "status": "active",
                        "comments": [
                            {"id": 1, "content": "typo", "commentType": "text"},
                            {"id": 2, "content": "voted", "commentType": "system"},
                        ],
                    }
                ],
                "count": 1,
            },
        )

        result = await client.list_threads("Shop", "web", 7)

        thread = result.value[0]
        assert thread.is_unresolved
        assert [c.counts for c in thread.comments] == [True, False]

    @pytest.mark.asyncio
    async def test_detail(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=DETAIL_URL, json={"mergeStatus": "conflicts", "isDraft": True})

        result = await client.get_pull_request_detail("Shop", "web", 7)

        assert result.value.merge_status == "conflicts"
        assert result.value.is_draft is True


class TestBuilds:
    @pytest.mark.asyncio
    async def test_list_builds_by_branch(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{ORG_URL}/Shop/_apis/build/builds?branchName=feature/login&$top=10&api-version=7.0",
            json={
                "value": [
                    {
                        "id": 99,
                        "buildNumber": "20240501.1",
                        "status": "completed",
                        "result": "succeeded",
                        "definition": {"id": 3, "name": "web-ci"},
                        "sourceBranch": "refs/heads/feature/login",
                    }
                ]
            },
        )

        result = await client.list_builds("Shop", "feature/login")

        build = result.value[0]
        assert build.definition.name == "web-ci"
        assert build.result == "succeeded"

    @pytest.mark.asyncio
    async def test_pipeline_builds_with_branch(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{ORG_URL}/Shop/_apis/build/builds?definitions=3&$top=5&branchName=refs/heads/main&api-version=7.0",
            json={"value": []},
        )

        result = await client.list_pipeline_builds("Shop", 3, count=5, branch_name="refs/heads/main")

        assert result.ok
        assert result.value == []

    @pytest.mark.asyncio
    async def test_timeline(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{ORG_URL}/Shop/_apis/build/builds/99/timeline?api-version=7.0",
            json={"id": "t", "records": [{"id": "s1", "type": "Stage", "name": "Build", "order": 1}]},
        )

        result = await client.get_build_timeline("Shop", 99)

        assert result.value.records[0].name == "Build"


class TestBuildsFromStatuses:
    def test_only_ci_events_become_builds(self) -> None:
        events = [
            StatusEvent.model_validate(
                {
                    "id": 12,
                    "state": "succeeded",
                    "context": {"name": "web-ci", "genre": "continuous-integration"},
                    "creationDate": "2024-05-01T10:00:00Z",
                    "updatedDate": "2024-05-01T10:05:00Z",
                }
            ),
            StatusEvent.model_validate({"id": 13, "state": "pending", "context": {"name": "sonar", "genre": "qa"}}),
        ]

        builds = builds_from_statuses(events)

        assert len(builds) == 1
        assert builds[0].id == 12
        assert builds[0].definition.name == "web-ci"
        assert builds[0].status == "completed"
        assert builds[0].result == "succeeded"
        assert builds[0].start_time == "2024-05-01T10:00:00Z"

    @pytest.mark.parametrize(
        ("state", "status", "result"),
        [
            ("failed", "completed", "failed"),
            ("error", "completed", "failed"),
            ("pending", "inProgress", None),
            ("notSet", "notStarted", None),
            (None, "notStarted", None),
        ],
    )
    def test_state_mapping(self, state: str | None, status: str, result: str | None) -> None:
        event = StatusEvent.model_validate({"state": state, "context": {"genre": "continuous-integration"}})

        (build,) = builds_from_statuses([event])

        assert build.status == status
        assert build.result == result
        assert build.id == 0
        assert build.build_number == "Unknown"
        assert build.definition.name == "Unknown Build"


class TestSuggestions:
    SUGGESTION = {
        "type": "pullRequest",
        "properties": {
            "sourceRepository": {"id": "web-id", "name": "web", "webUrl": "https://dev.azure.com/contoso/Shop/_git/web"},
            "sourceBranch": "refs/heads/feature/cart",
            "targetBranch": "refs/heads/main",
        },
    }
    URL = f"{ORG_URL}/_apis/git/repositories/web-id/suggestions?api-version=5.0-preview.1"

    @pytest.mark.asyncio
    async def test_bare_list(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=self.URL, json=[self.SUGGESTION])

        result = await client.list_suggestions("web-id")

        assert result.value[0].properties.source_branch == "refs/heads/feature/cart"
        assert httpx_mock.get_request().headers["Accept"] == SUGGESTIONS_ACCEPT

    @pytest.mark.asyncio
    async def test_wrapped_list(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=self.URL, json={"value": [self.SUGGESTION]})

        result = await client.list_suggestions("web-id")

        assert len(result.value) == 1

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_empty(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(url=self.URL, json={"something": "else"})

        result = await client.list_suggestions("web-id")

        assert result.ok
        assert result.value == []


class TestRepositories:
    @pytest.mark.asyncio
    async def test_list(self, client: AzureDevOpsClient, httpx_mock: HTTPXMock) -> None:
        httpx_mock.add_response(
            url=f"{ORG_URL}/Shop/_apis/git/repositories?api-version=7.0",
            json={"value": [{"id": "web-id", "name": "web"}, {"id": "api-id", "name": "api"}], "count": 2},
        )

        result = await client.list_repositories("Shop")

        assert [r.name for r in result.value] == ["web", "api"]
