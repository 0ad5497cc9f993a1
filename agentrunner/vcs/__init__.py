"""Git automation: diffs, commits, pushes, hard checkouts and clones."""

from agentrunner.vcs.diff import (
    compare_diffs,
    merge_duplicate_files,
    parse_diff,
    parse_diff_summary,
    total_additions,
    total_deletions,
    truncate_diff,
)
from agentrunner.vcs.models import (
    CommitInfo,
    DiffComparison,
    DiffFile,
    GitBranchInfo,
    GitDiffSummary,
    GitOperationResult,
)
from agentrunner.vcs.remotes import build_clone_url, extract_repository_slug
from agentrunner.vcs.service import VersionControlService

__all__ = [
    "CommitInfo",
    "DiffComparison",
    "DiffFile",
    "GitBranchInfo",
    "GitDiffSummary",
    "GitOperationResult",
    "VersionControlService",
    "build_clone_url",
    "compare_diffs",
    "extract_repository_slug",
    "merge_duplicate_files",
    "parse_diff",
    "parse_diff_summary",
    "total_additions",
    "total_deletions",
    "truncate_diff",
]
