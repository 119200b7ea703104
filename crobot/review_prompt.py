"""Pull request context and the review prompt built from it."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ChangedFile:
    """A file touched by the pull request."""

    path: str
    status: str = ""
    old_path: str = ""


@dataclass
class DiffHunk:
    """One hunk of a unified diff."""

    path: str
    old_start: int = 0
    old_lines: int = 0
    new_start: int = 0
    new_lines: int = 0
    body: str = ""


@dataclass
class PRContext:
    """Everything known about the pull request under review."""

    id: int = 0
    title: str = ""
    description: str = ""
    author: str = ""
    source_branch: str = ""
    target_branch: str = ""
    state: str = ""
    head_commit: str = ""
    base_commit: str = ""
    files: list[ChangedFile] = field(default_factory=list)
    diff_hunks: list[DiffHunk] = field(default_factory=list)


@dataclass
class PRRequest:
    """Which pull request is reviewed; ``pr_number`` 0 means a local review."""

    workspace: str = ""
    repo: str = ""
    pr_number: int = 0


def build_review_prompt(
    pr_ctx: PRContext, ref: Optional[PRRequest] = None, diff_dir: str = ""
) -> str:
    """Format the pull request into a review prompt.

    With ``diff_dir`` the agent is pointed at per-file diffs on disk;
    otherwise the hunks are included inline.
    """
    parts = ["# Pull Request Review\n\n"]

    if ref is not None and ref.pr_number == 0:
        parts.append("## Local Review Metadata\n\n")
        parts.append(f"- **Repository**: {ref.repo}\n")
        parts.append("- **Mode**: Local (pre-push review)\n")
    else:
        parts.append("## PR Metadata\n\n")
        if ref is not None:
            parts.append(f"- **Workspace**: {ref.workspace}\n")
            parts.append(f"- **Repository**: {ref.repo}\n")
            parts.append(f"- **PR Number**: {ref.pr_number}\n")
    parts.append(f"- **Title**: {pr_ctx.title}\n")
    parts.append(f"- **Author**: {pr_ctx.author}\n")
    parts.append(f"- **Source Branch**: {pr_ctx.source_branch}\n")
    parts.append(f"- **Target Branch**: {pr_ctx.target_branch}\n")
    parts.append(f"- **State**: {pr_ctx.state}\n")
    if pr_ctx.description:
        parts.append(f"\n### Description\n\n{pr_ctx.description}\n")

    parts.append("\n## Changed Files\n\n")
    if not pr_ctx.files:
        parts.append("No files changed.\n")
    for changed in pr_ctx.files:
        line = f"- `{changed.path}` ({changed.status})"
        if changed.old_path and changed.old_path != changed.path:
            line += f" (renamed from `{changed.old_path}`)"
        parts.append(line + "\n")

    if diff_dir:
        parts.append("\n## Diff Access\n\n")
        parts.append("Per-file diffs are available on disk. Start by reading the index:\n")
        parts.append(f"  {diff_dir}/.crobot-index.md\n\n")
        parts.append(f"Then read individual file diffs at `{diff_dir}/<file-path>`.\n")
        parts.append("Focus on source code files. Lock files, generated code, and vendor\n")
        parts.append("dependencies are flagged in the index -- review only if relevant.\n\n")
        parts.append("Only comment on lines that appear within the diff hunks.\n")
    else:
        parts.append("\n## Diff\n\n")
        if not pr_ctx.diff_hunks:
            parts.append("No diff hunks available.\n")
        for path, hunks in _group_hunks_by_file(pr_ctx.diff_hunks).items():
            parts.append(f"### {path}\n\n")
            for hunk in hunks:
                parts.append(
                    f"```diff\n@@ -{hunk.old_start},{hunk.old_lines} "
                    f"+{hunk.new_start},{hunk.new_lines} @@\n"
                )
                parts.append(hunk.body)
                if not hunk.body.endswith("\n"):
                    parts.append("\n")
                parts.append("```\n\n")

    parts.append("## Instructions\n\n")
    parts.append(
        "Review the diff and output your findings as a JSON array of ReviewFinding objects.\n"
    )
    parts.append("Only comment on lines that appear within the diff hunks.\n")
    parts.append("Leave the `fingerprint` field empty.\n")
    parts.append("If no issues are found, output: []\n")
    return "".join(parts)


def _group_hunks_by_file(hunks: list[DiffHunk]) -> dict[str, list[DiffHunk]]:
    """Group hunks by path, keeping paths in order of first appearance."""
    grouped: dict[str, list[DiffHunk]] = {}
    for hunk in hunks:
        grouped.setdefault(hunk.path, []).append(hunk)
    return grouped