"""Plain-text rendering of repository and project listings.

This module provides utilities for:
- Truncating and padding cell values to fixed column widths.
- Rendering the repository listing (slug, project, description).
- Rendering the project listing with a few sample repositories each.

Both listings also have a ``grepable`` form: one ``|``-separated line per row.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from .models import Repository

_SAMPLE_SIZE = 3


def fit(value: Optional[str], width: int) -> str:
    """Return ``value`` padded or truncated to exactly ``width`` characters.

    Args:
        value: Cell text; ``None`` renders as an empty cell.
        width: Column width in characters.

    Returns:
        Text of length ``width``. Truncated values end with ``...``.
    """
    text = " ".join((value or "").split())
    if len(text) > width:
        text = text[: max(0, width - 3)] + "..."
    return text.ljust(width)


def render_table(headers: Sequence[str], widths: Sequence[int], rows: Sequence[Sequence[Optional[str]]]) -> str:
    """Render rows as fixed-width columns under a header and a dashed rule."""
    lines = [" ".join(fit(header, width) for header, width in zip(headers, widths)).rstrip()]
    for row in rows:
        lines.append(" ".join(fit(cell, width) for cell, width in zip(row, widths)).rstrip())
    lines.append("-" * (sum(widths) + len(widths) - 1))
    return "\n".join(lines)


def format_repositories(repositories: Sequence[Repository], grepable: bool = False) -> str:
    """Render the repository listing.

    Args:
        repositories: Repositories to show, already filtered and sorted.
        grepable: Emit ``slug|project|description`` lines instead of a table.

    Returns:
        Multi-line text.
    """
    if grepable:
        return "\n".join(
            f"{repository.slug}|{repository.project_key or ''}|{repository.description or ''}"
            for repository in repositories
        )

    return render_table(
        ["Repository Slug", "Project", "Description"],
        [35, 20, 60],
        [[repository.slug, repository.project_key, repository.description] for repository in repositories],
    )


def format_projects(repositories: Sequence[Repository], grepable: bool = False) -> str:
    """Render one line per project with up to three sample repository slugs."""
    samples: Dict[str, List[str]] = {}
    for repository in repositories:
        slugs = samples.setdefault(repository.project_key or "", [])
        if repository.slug not in slugs:
            slugs.append(repository.slug)

    rows = [[key, ", ".join(slugs[:_SAMPLE_SIZE])] for key, slugs in samples.items()]

    if grepable:
        return "\n".join(f"{key}|{sample}" for key, sample in rows)

    return render_table(["Project", "Repo Samples"], [35, 80], rows)
