"""Parsing, truncating and comparing unified diffs."""

import re

from agentrunner.vcs.models import DiffComparison, DiffFile, GitDiffSummary

MAX_DIFF_BYTES = 1024 * 1024
TRUNCATION_MARKER = "... [diff truncated - exceeded 1MB limit] ..."

_SHORTSTAT_PART = re.compile(r"(\d+)\s+(file|insertion|deletion)")


def truncate_diff(diff: str, max_bytes: int = MAX_DIFF_BYTES) -> str:
    """Cut `diff` to at most `max_bytes` UTF-8 bytes on a line boundary.

    Whole lines are kept until the next one would cross the cap; the marker
    is then appended on its own line. Diffs within the cap are returned
    unchanged.
    """
    if len(diff.encode("utf-8")) <= max_bytes:
        return diff

    kept: list[str] = []
    used = 0
    for line in diff.split("\n"):
        size = len(line.encode("utf-8")) + 1
        if used + size > max_bytes:
            break
        kept.append(line)
        used += size
    return "\n".join(kept) + "\n" + TRUNCATION_MARKER


def _file_name(header: str) -> str:
    # "diff --git a/path/to/file b/path/to/file"
    parts = header.split(" ")
    if len(parts) < 4:
        return "unknown"
    target = parts[3]
    return target[2:] if target.startswith("b/") else target


def parse_diff(diff: str | None) -> list[DiffFile]:
    """Split a unified diff into per-file records with +/- line counts."""
    files: list[DiffFile] = []
    if not diff:
        return files

    current: DiffFile | None = None
    content: list[str] = []

    def close() -> None:
        if current is not None:
            current.diff_content = "\n".join(content) + "\n"
            files.append(current)

    for line in diff.split("\n"):
        if line.startswith("diff --git"):
            close()
            current = DiffFile(file_name=_file_name(line))
            content = [line]
            continue
        if current is None:
            # --stat block before the first file header
            continue
        content.append(line)
        if line.startswith("new file"):
            current.is_new = True
        elif line.startswith("deleted file"):
            current.is_deleted = True
        elif line.startswith("+") and not line.startswith("+++"):
            current.additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            current.deletions += 1
    close()
    return files


def merge_duplicate_files(files: list[DiffFile]) -> list[DiffFile]:
    """Combine repeated file names (e.g. from concatenated diffs), summing counts."""
    merged: dict[str, DiffFile] = {}
    for f in files:
        existing = merged.get(f.file_name)
        if existing is None:
            merged[f.file_name] = f.model_copy()
            continue
        existing.additions += f.additions
        existing.deletions += f.deletions
        existing.diff_content += f.diff_content
        existing.is_new = existing.is_new or f.is_new
        existing.is_deleted = f.is_deleted
    return list(merged.values())


def compare_diffs(reference: list[DiffFile], target: list[DiffFile]) -> DiffComparison:
    """Which files of `reference` are missing, extra or changed in `target`.

    Files count as modified when their addition or deletion counts differ;
    textual content is not compared, so the same change made against a
    different base still matches.
    """
    ref = {f.file_name: f for f in merge_duplicate_files(reference)}
    tgt = {f.file_name: f for f in merge_duplicate_files(target)}

    comparison = DiffComparison()
    for name, f in ref.items():
        other = tgt.get(name)
        if other is None:
            comparison.missing.append(name)
        elif (f.additions, f.deletions) != (other.additions, other.deletions):
            comparison.modified.append(name)
    comparison.extra = [name for name in tgt if name not in ref]
    return comparison


def total_additions(files: list[DiffFile]) -> int:
    return sum(f.additions for f in files)


def total_deletions(files: list[DiffFile]) -> int:
    return sum(f.deletions for f in files)


def parse_diff_summary(output: str) -> GitDiffSummary:
    """Parse `--shortstat` ("3 files changed, 10 insertions(+), 2 deletions(-)")."""
    summary = GitDiffSummary()
    for line in output.splitlines():
        if not any(word in line for word in ("changed", "insertion", "deletion")):
            continue
        for count, kind in _SHORTSTAT_PART.findall(line):
            if kind == "file":
                summary.files_changed = int(count)
            elif kind == "insertion":
                summary.insertions = int(count)
            else:
                summary.deletions = int(count)
    return summary
