"""Display labels for pull request state: merge, comments, reviews, builds, age."""

import math
import re
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict

from prdash.models import EnrichedPullRequest, RawPullRequest


class StatusInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    style: str  # rich style


_MERGE_STATUS = {
    "succeeded": StatusInfo(label="Ready", style="green"),
    "conflicts": StatusInfo(label="Conflicts", style="red"),
    "queued": StatusInfo(label="Queued", style="yellow"),
    "rejectedbypolicy": StatusInfo(label="Blocked", style="red"),
    "failure": StatusInfo(label="Failed", style="red"),
}
_UNKNOWN = StatusInfo(label="Unknown", style="dim")


def merge_status_info(pr: EnrichedPullRequest) -> StatusInfo:
    return _MERGE_STATUS.get((pr.merge_status or "").lower(), _UNKNOWN)


def comment_status_info(pr: EnrichedPullRequest) -> StatusInfo:
    if pr.comment_count == 0:
        return StatusInfo(label="None", style="dim")
    if pr.unresolved_comment_count == 0:
        return StatusInfo(label=f"{pr.comment_count} Resolved", style="green")
    return StatusInfo(label=f"{pr.unresolved_comment_count} Unresolved", style="yellow")


def comment_details(pr: EnrichedPullRequest) -> str:
    if pr.comment_count == 0:
        return "No comments"
    resolved = pr.comment_count - pr.unresolved_comment_count
    return f"Total: {pr.comment_count} comments\nResolved: {resolved}\nUnresolved: {pr.unresolved_comment_count}"


def review_status_info(pr: RawPullRequest) -> StatusInfo:
    reviewers = pr.reviewers
    if not reviewers:
        return StatusInfo(label="No Reviewers", style="dim")

    approved = sum(1 for r in reviewers if r.vote == 10)
    rejected = sum(1 for r in reviewers if r.vote in (-10, -5))
    waiting = sum(1 for r in reviewers if r.vote == 0)

    if rejected:
        return StatusInfo(label=f"{rejected} Rejected", style="red")
    if approved == len(reviewers):
        return StatusInfo(label=f"{approved} Approved", style="green")
    if approved:
        return StatusInfo(label=f"{approved}/{len(reviewers)} Approved", style="yellow")
    return StatusInfo(label=f"{waiting} Waiting", style="dim")


def build_summary(pr: EnrichedPullRequest) -> str:
    return ", ".join(f"{b.definition.name}: {b.result or b.status}" for b in pr.builds)


def merge_details(pr: EnrichedPullRequest) -> str:
    details = f"Merge Status: {merge_status_info(pr).label}"
    if pr.builds:
        details += f"\nBuilds: {build_summary(pr)}"
    return details


_MD_IMAGE = re.compile(r"!\[.*?\]\([^)]*\)", re.DOTALL)
_HTML_TAG = re.compile(r"<[^>]*>")
_MD_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


def clean_description(description: str | None, limit: int = 200) -> str:
    """Flatten a markdown/HTML description into one short line."""
    if not description:
        return ""
    cleaned = _MD_IMAGE.sub("", description)
    cleaned = _HTML_TAG.sub("", cleaned)
    cleaned = _MD_LINK.sub(r"\1", cleaned)
    cleaned = " ".join(cleaned.split())
    if len(cleaned) > limit:
        cleaned = cleaned[:limit] + "..."
    return cleaned


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    # Azure DevOps sends 7 fractional digits
    value = _EXTRA_FRACTION.sub(r"\1", value)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def format_age(created: str | None, now: datetime | None = None) -> str:
    timestamp = parse_timestamp(created)
    if timestamp is None:
        return ""
    now = now or datetime.now(UTC)
    days = math.ceil(abs((now - timestamp).total_seconds()) / 86400)
    if days == 1:
        return "1 day ago"
    if days < 7:
        return f"{days} days ago"
    return timestamp.date().isoformat()
