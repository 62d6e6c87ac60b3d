"""Recent runs of one pipeline definition, optionally with their stages."""

import asyncio

import structlog

from prdash.client import AzureDevOpsClient
from prdash.errors import LoadError
from prdash.models import BuildResult, PipelineRun, PipelineStage, Timeline
from prdash.status import parse_timestamp

logger = structlog.get_logger(__name__)


def duration(start: str | None, finish: str | None) -> str:
    started, finished = parse_timestamp(start), parse_timestamp(finish)
    if started is None or finished is None:
        return ""
    return f"{round((finished - started).total_seconds() / 60)}m"


def stages_from_timeline(timeline: Timeline) -> list[PipelineStage]:
    records = sorted(
        (r for r in timeline.records if r.type == "Stage"),
        key=lambda r: r.order if r.order is not None else 0,
    )
    return [
        PipelineStage(
            id=r.id,
            name=r.name,
            status=r.state,
            result=r.result,
            start_time=r.start_time,
            finish_time=r.finish_time,
            duration=duration(r.start_time, r.finish_time),
        )
        for r in records
    ]


def status_text(run: PipelineRun) -> str:
    if run.status == "completed":
        return "Succeeded" if run.result == "succeeded" else "Failed"
    if run.status == "inProgress":
        return "In Progress"
    return "Not Started"


class PipelineService:
    def __init__(self, client: AzureDevOpsClient) -> None:
        self.client = client

    def results_url(self, project: str, build_id: int) -> str:
        return f"{self.client.org_url}/{project}/_build/results?buildId={build_id}"

    def to_run(self, project: str, build: BuildResult, stages: list[PipelineStage] | None = None) -> PipelineRun:
        short_version = (build.source_version or "")[:8]
        return PipelineRun(
            id=build.id,
            build_number=build.build_number,
            status=build.status,
            result=build.result,
            source_branch=build.source_branch,
            source_version=build.source_version or "",
            short_source_version=short_version,
            start_time=build.start_time,
            finish_time=build.finish_time,
            queue_time=build.queue_time,
            definition=build.definition,
            requested_for=build.requested_for.display_name if build.requested_for else None,
            url=self.results_url(project, build.id),
            duration=duration(build.start_time, build.finish_time),
            commit_message=f"Commit {short_version}" if short_version else "",
            stages=stages or [],
        )

    async def _stages(self, project: str, build_id: int) -> list[PipelineStage]:
        try:
            timeline = await self.client.get_build_timeline(project, build_id)
        except LoadError as exc:
            logger.warning("timeline_skipped", project=project, build=build_id, error=str(exc))
            return []
        return stages_from_timeline(timeline.value)

    async def list_runs(
        self,
        project: str,
        definition_id: int,
        count: int = 20,
        branch_name: str | None = None,
        with_stages: bool = False,
    ) -> list[PipelineRun]:
        builds = await self.client.list_pipeline_builds(project, definition_id, count, branch_name)
        if not builds.value:
            return []

        if not with_stages:
            return [self.to_run(project, build) for build in builds.value]

        stages = await asyncio.gather(*(self._stages(project, build.id) for build in builds.value))
        return [self.to_run(project, build, build_stages) for build, build_stages in zip(builds.value, stages)]
