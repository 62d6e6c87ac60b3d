"""Stable per-repository colors for the terminal views."""

PALETTE = [
    "#d13438",
    "#107c10",
    "#0078d4",
    "#ca5010",
    "#8764b8",
    "#00bcf2",
    "#498205",
    "#e74856",
    "#ff8c00",
    "#038387",
    "#744da9",
    "#486991",
    "#c239b3",
    "#567c73",
    "#f59e0b",
    "#10b981",
    "#3b82f6",
    "#ef4444",
    "#8b5cf6",
    "#06b6d4",
]


class RepositoryColors:
    """Hands out palette colors in first-seen order, wrapping around."""

    def __init__(self, palette: list[str] | None = None) -> None:
        self._palette = palette or PALETTE
        self._assigned: dict[str, str] = {}

    def color(self, repository: str) -> str:
        if repository not in self._assigned:
            self._assigned[repository] = self._palette[len(self._assigned) % len(self._palette)]
        return self._assigned[repository]
