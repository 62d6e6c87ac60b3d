"""Shared pydantic models: Azure DevOps wire shapes and the enriched view model."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for vendor payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProjectSelector(BaseModel):
    """One configured (project, optional repository) pair."""

    model_config = ConfigDict(frozen=True)

    name: str
    repository: str | None = None  # None = every repository in the project

    def label(self) -> str:
        return f"{self.name}/{self.repository}" if self.repository else self.name


class IdentityRef(WireModel):
    display_name: str = ""
    unique_name: str = ""
    avatar_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _avatar_from_links(cls, data: Any) -> Any:
        # Pull request authors carry the avatar under _links.avatar.href
        if isinstance(data, dict) and "avatarUrl" not in data:
            href = ((data.get("_links") or {}).get("avatar") or {}).get("href")
            if href:
                return {**data, "avatarUrl": href}
        return data


class ProjectRef(WireModel):
    id: str | None = None
    name: str = ""


class RepositoryRef(WireModel):
    id: str | None = None
    name: str
    web_url: str | None = None
    project: ProjectRef | None = None


class Reviewer(IdentityRef):
    # 10 approved, 5 approved with suggestions, 0 no vote, -5 waiting, -10 rejected
    vote: int = 0


class RawPullRequest(WireModel):
    pull_request_id: int
    title: str
    description: str = ""
    status: str = "active"
    created_by: IdentityRef = Field(default_factory=IdentityRef)
    creation_date: str | None = None
    source_ref_name: str = ""
    target_ref_name: str = ""
    repository: RepositoryRef
    reviewers: list[Reviewer] = []
    is_draft: bool = False

    @property
    def key(self) -> tuple[str, int]:
        # ids are only unique within a repository
        return self.repository.name, self.pull_request_id

    @property
    def author(self) -> str:
        return self.created_by.display_name


class Comment(WireModel):
    id: int
    content: str = ""
    comment_type: str = "text"  # text | codeChange | system
    author: IdentityRef | None = None
    published_date: str | None = None
    is_deleted: bool = False

    @property
    def counts(self) -> bool:
        return not self.is_deleted and self.comment_type != "system"


class Thread(WireModel):
    id: int
    status: str | None = None  # active | fixed | wontFix | closed | byDesign | pending
    comments: list[Comment] = []
    is_deleted: bool = False

    @property
    def is_unresolved(self) -> bool:
        return not self.is_deleted and self.status == "active"


class BuildDefinition(WireModel):
    id: int = 0
    name: str = ""


class BuildResult(WireModel):
    id: int
    build_number: str = ""
    status: str = "notStarted"  # notStarted | inProgress | completed | skipped
    result: str | None = None  # only meaningful once completed
    definition: BuildDefinition = Field(default_factory=BuildDefinition)
    start_time: str | None = None
    finish_time: str | None = None
    queue_time: str | None = None
    source_branch: str = ""
    source_version: str | None = None
    requested_for: IdentityRef | None = None


class StatusContext(WireModel):
    name: str | None = None
    genre: str | None = None


class StatusEvent(WireModel):
    id: int | str | None = None
    state: str | None = None
    description: str | None = None
    context: StatusContext | None = None
    creation_date: str | None = None
    updated_date: str | None = None
    target_url: str | None = None


class PullRequestDetail(WireModel):
    # succeeded | conflicts | queued | rejectedByPolicy | failure | notSet
    merge_status: str | None = None
    is_draft: bool = False


class Repository(WireModel):
    id: str
    name: str
    web_url: str | None = None
    project: ProjectRef | None = None


class SuggestionRepository(WireModel):
    id: str
    name: str
    web_url: str = ""
    project: ProjectRef = Field(default_factory=ProjectRef)


class SuggestionProperties(WireModel):
    source_repository: SuggestionRepository
    source_branch: str
    target_branch: str
    target_repository_id: str | None = None
    push_date: str | None = None


class PullRequestSuggestion(WireModel):
    type: str = ""
    properties: SuggestionProperties


class TimelineRecord(WireModel):
    id: str
    parent_id: str | None = None
    type: str = ""  # Stage | Phase | Job | Task | Checkpoint
    name: str = ""
    state: str | None = None
    result: str | None = None
    start_time: str | None = None
    finish_time: str | None = None
    order: int | None = None


class Timeline(WireModel):
    id: str | None = None
    records: list[TimelineRecord] = []


class PullRequestPage(WireModel):
    value: list[RawPullRequest] = []
    count: int = 0

    @field_validator("value", mode="before")
    @classmethod
    def _null_value_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class EnrichedPullRequest(RawPullRequest):
    """A pull request joined with its threads, builds and merge status.

    Built once per refresh; only ``project_name`` is attached afterwards, via
    ``model_copy``.
    """

    threads: list[Thread] = []
    comment_count: int = 0
    unresolved_comment_count: int = 0
    merge_status: str = "unknown"
    has_conflicts: bool = False
    can_merge: bool = False
    builds: list[BuildResult] = []
    project_name: str = ""


class AggregateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[EnrichedPullRequest] = []
    count: int = 0


class PipelineStage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: str | None = None
    result: str | None = None
    start_time: str | None = None
    finish_time: str | None = None
    duration: str = ""


class PipelineRun(BaseModel):
    """One build of a pipeline definition, shaped for the pipelines view."""

    model_config = ConfigDict(frozen=True)

    id: int
    build_number: str
    status: str
    result: str | None = None
    source_branch: str = ""
    source_version: str = ""
    short_source_version: str = ""
    start_time: str | None = None
    finish_time: str | None = None
    queue_time: str | None = None
    definition: BuildDefinition
    requested_for: str | None = None
    url: str
    duration: str = ""
    commit_message: str = ""
    stages: list[PipelineStage] = []
