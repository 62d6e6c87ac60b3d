"""Client-side view filtering over an aggregated pull request collection."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from prdash.models import EnrichedPullRequest, ProjectSelector


@dataclass
class FilterState:
    selected_repositories: set[str] = field(default_factory=set)
    selected_authors: set[str] = field(default_factory=set)
    show_drafts: bool = False


def authors_of(prs: Iterable[EnrichedPullRequest]) -> set[str]:
    return {pr.author for pr in prs}


def repositories_of(prs: Iterable[EnrichedPullRequest]) -> set[str]:
    return {pr.repository.name for pr in prs}


def apply_filters(prs: list[EnrichedPullRequest], state: FilterState) -> list[EnrichedPullRequest]:
    """Drafts, then repositories, then authors. An empty selection keeps everything."""
    visible = [pr for pr in prs if state.show_drafts or not pr.is_draft]
    if state.selected_repositories:
        visible = [pr for pr in visible if pr.repository.name in state.selected_repositories]
    if state.selected_authors:
        visible = [pr for pr in visible if pr.author in state.selected_authors]
    return visible


def seed_pinned_authors(prs: list[EnrichedPullRequest], state: FilterState, pinned: Iterable[str]) -> set[str]:
    """Select the pinned authors that have pull requests, unless authors are already selected.

    Returns the pinned authors present in ``prs``; ``state`` is only changed
    when its author selection was empty.
    """
    active_pinned = authors_of(prs) & set(pinned)
    if active_pinned and not state.selected_authors:
        state.selected_authors = set(active_pinned)
    return active_pinned


def prune(state: FilterState, prs: list[EnrichedPullRequest]) -> None:
    # Selections must stay within the values currently present
    state.selected_repositories &= repositories_of(prs)
    state.selected_authors &= authors_of(prs)


def refresh_view(
    prs: list[EnrichedPullRequest], state: FilterState, pinned: Iterable[str] = ()
) -> list[EnrichedPullRequest]:
    """Run once per refresh: seed pinned authors, then filter."""
    seed_pinned_authors(prs, state, pinned)
    return apply_filters(prs, state)


def project_summary(prs: list[EnrichedPullRequest], selectors: list[ProjectSelector]) -> dict[str, int]:
    """Active pull request count per repository, including configured repositories with none."""
    summary = {s.repository: 0 for s in selectors if s.repository}
    for pr in prs:
        if pr.repository.name:
            summary[pr.repository.name] = summary.get(pr.repository.name, 0) + 1
    return summary
