"""Azure DevOps REST client.

Every call classifies its own failures, publishes them on the notifier and
resolves with an empty value of the expected shape, so callers never have to
catch upstream errors. Only a response that cannot be parsed at all raises
(``LoadError``).
"""

import base64
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from prdash.errors import ApiError, ErrorNotifier, LoadError, classify
from prdash.models import (
    BuildDefinition,
    BuildResult,
    PullRequestDetail,
    PullRequestPage,
    PullRequestSuggestion,
    Repository,
    StatusEvent,
    Thread,
    Timeline,
)
from prdash.settings import PrdashSettings

logger = structlog.get_logger(__name__)

API_VERSION = "7.0"
SUGGESTIONS_API_VERSION = "5.0-preview.1"
SUGGESTIONS_ACCEPT = (
    "application/json;api-version=5.0-preview.1;excludeUrls=true;"
    "enumsAsNumbers=true;msDateFormat=true;noArrayWrap=true"
)

T = TypeVar("T")


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Outcome of one call: ``value`` is already the default when ``error`` is set."""

    value: T
    error: ApiError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _state_to_build_status(state: str | None) -> str:
    match (state or "").lower():
        case "succeeded" | "failed" | "error":
            return "completed"
        case "pending":
            return "inProgress"
        case _:
            return "notStarted"


def _state_to_build_result(state: str | None) -> str | None:
    match (state or "").lower():
        case "succeeded":
            return "succeeded"
        case "failed" | "error":
            return "failed"
        case _:
            return None


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def builds_from_statuses(events: list[StatusEvent]) -> list[BuildResult]:
    """Derive build records from pull request status events (CI genre only)."""
    builds = []
    for event in events:
        if not event.context or event.context.genre != "continuous-integration":
            continue
        build_id = _int_or_zero(event.id)
        builds.append(
            BuildResult(
                id=build_id,
                build_number=event.context.name or "Unknown",
                status=_state_to_build_status(event.state),
                result=_state_to_build_result(event.state),
                definition=BuildDefinition(id=build_id, name=event.context.name or "Unknown Build"),
                start_time=event.creation_date,
                finish_time=event.updated_date,
                source_branch="",
            )
        )
    return builds


_THREADS = TypeAdapter(list[Thread])
_STATUSES = TypeAdapter(list[StatusEvent])
_BUILDS = TypeAdapter(list[BuildResult])
_REPOSITORIES = TypeAdapter(list[Repository])
_SUGGESTIONS = TypeAdapter(list[PullRequestSuggestion])


class AzureDevOpsClient:
    def __init__(
        self,
        base_url: str,
        organization: str,
        credential: str | None = None,
        *,
        notifier: ErrorNotifier | None = None,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._org_url = f"{base_url.rstrip('/')}/{organization}"
        self._credential = credential or ""
        self.notifier = notifier or ErrorNotifier()
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: PrdashSettings, notifier: ErrorNotifier | None = None) -> "AzureDevOpsClient":
        return cls(
            settings.base_url,
            settings.organization or "",
            settings.pat_value,
            notifier=notifier,
            timeout=settings.timeout,
        )

    async def __aenter__(self) -> "AzureDevOpsClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def org_url(self) -> str:
        return self._org_url

    @property
    def has_credential(self) -> bool:
        return bool(self._credential)

    def update_credential(self, credential: str) -> None:
        # Read when each request is built, so queued calls pick it up too
        self._credential = credential
        logger.info("credential_updated")

    def _headers(self, accept: str = "application/json") -> dict[str, str]:
        token = base64.b64encode(f":{self._credential}".encode()).decode()
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Accept": accept,
        }

    def _report(self, error: ApiError) -> ApiError:
        logger.error(
            "api_call_failed",
            operation=error.operation,
            kind=error.kind.value,
            status=error.status,
            detail=error.detail[:200],
        )
        self.notifier.publish(error)
        return error

    async def _get(
        self,
        operation: str,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        accept: str = "application/json",
        api_version: str = API_VERSION,
    ) -> tuple[Any, ApiError | None]:
        url = f"{self._org_url}/{path}"
        query = {**(params or {}), "api-version": api_version}
        try:
            response = await self._http.get(url, params=query, headers=self._headers(accept))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            # a request that never produced a readable response has no status
            return None, self._report(classify(operation, None, str(exc)))

        if not response.is_success:
            return None, self._report(classify(operation, response.status_code, response.text))
        if not response.content:
            return None, None
        try:
            return response.json(), None
        except ValueError:
            return None, self._report(classify(operation, response.status_code, "response body is not JSON"))

    @staticmethod
    def _parse(operation: str, model: type[BaseModel] | TypeAdapter, data: Any) -> Any:
        try:
            if isinstance(model, TypeAdapter):
                return model.validate_python(data)
            return model.model_validate(data)
        except ValidationError as exc:
            raise LoadError(operation, str(exc)) from exc

    @classmethod
    def _values(cls, operation: str, adapter: TypeAdapter, data: Any) -> list:
        # Collection endpoints wrap their items as {"count": n, "value": [...]}
        if data is None:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("value"), list):
            raise LoadError(operation, "expected an object with a 'value' list")
        return cls._parse(operation, adapter, data["value"])

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def list_active_pull_requests(
        self, project: str, repository_id: str | None = None
    ) -> ApiResult[PullRequestPage]:
        if repository_id:
            operation = "list_active_pull_requests_by_repository"
            path = f"{project}/_apis/git/repositories/{repository_id}/pullrequests"
        else:
            operation = "list_active_pull_requests"
            path = f"{project}/_apis/git/pullrequests"
        data, error = await self._get(operation, path, {"searchCriteria.status": "active"})
        if error or data is None:
            return ApiResult(PullRequestPage(), error)
        return ApiResult(self._parse(operation, PullRequestPage, data))

    async def list_threads(self, project: str, repository_id: str, pull_request_id: int) -> ApiResult[list[Thread]]:
        operation = "list_threads"
        path = f"{project}/_apis/git/repositories/{repository_id}/pullRequests/{pull_request_id}/threads"
        data, error = await self._get(operation, path)
        if error:
            return ApiResult([], error)
        return ApiResult(self._values(operation, _THREADS, data))

    async def list_statuses(
        self, project: str, repository_id: str, pull_request_id: int
    ) -> ApiResult[list[StatusEvent]]:
        operation = "list_statuses"
        path = f"{project}/_apis/git/repositories/{repository_id}/pullRequests/{pull_request_id}/statuses"
        data, error = await self._get(operation, path)
        if error:
            return ApiResult([], error)
        return ApiResult(self._values(operation, _STATUSES, data))

    async def get_pull_request_detail(
        self, project: str, repository_id: str, pull_request_id: int
    ) -> ApiResult[PullRequestDetail]:
        operation = "get_pull_request_detail"
        path = f"{project}/_apis/git/repositories/{repository_id}/pullRequests/{pull_request_id}"
        data, error = await self._get(operation, path)
        if error or data is None:
            return ApiResult(PullRequestDetail(), error)
        return ApiResult(self._parse(operation, PullRequestDetail, data))

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    async def list_builds(self, project: str, source_branch: str, top: int = 10) -> ApiResult[list[BuildResult]]:
        operation = "list_builds"
        data, error = await self._get(
            operation, f"{project}/_apis/build/builds", {"branchName": source_branch, "$top": top}
        )
        if error:
            return ApiResult([], error)
        return ApiResult(self._values(operation, _BUILDS, data))

    async def list_pipeline_builds(
        self, project: str, definition_id: int, count: int = 20, branch_name: str | None = None
    ) -> ApiResult[list[BuildResult]]:
        operation = "list_pipeline_builds"
        params: dict[str, Any] = {"definitions": definition_id, "$top": count}
        if branch_name:
            params["branchName"] = branch_name
        data, error = await self._get(operation, f"{project}/_apis/build/builds", params)
        if error:
            return ApiResult([], error)
        return ApiResult(self._values(operation, _BUILDS, data))

    async def get_build_timeline(self, project: str, build_id: int) -> ApiResult[Timeline]:
        operation = "get_build_timeline"
        data, error = await self._get(operation, f"{project}/_apis/build/builds/{build_id}/timeline")
        if error or data is None:
            return ApiResult(Timeline(), error)
        return ApiResult(self._parse(operation, Timeline, data))

    # ------------------------------------------------------------------
    # Repositories and suggestions
    # ------------------------------------------------------------------

    async def list_repositories(self, project: str) -> ApiResult[list[Repository]]:
        operation = "list_repositories"
        data, error = await self._get(operation, f"{project}/_apis/git/repositories")
        if error:
            return ApiResult([], error)
        return ApiResult(self._values(operation, _REPOSITORIES, data))

    async def list_suggestions(self, repository_id: str) -> ApiResult[list[PullRequestSuggestion]]:
        operation = "list_suggestions"
        data, error = await self._get(
            operation,
            f"_apis/git/repositories/{repository_id}/suggestions",
            accept=SUGGESTIONS_ACCEPT,
            api_version=SUGGESTIONS_API_VERSION,
        )
        if error:
            return ApiResult([], error)
        # noArrayWrap=true returns a bare list; tolerate the wrapped form too
        if isinstance(data, dict):
            data = data.get("value")
        if not isinstance(data, list):
            return ApiResult([])
        return ApiResult(self._parse(operation, _SUGGESTIONS, data))
