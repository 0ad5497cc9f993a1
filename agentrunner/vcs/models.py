"""Result envelopes and structured views of git output."""

from pydantic import BaseModel, Field


class GitOperationResult(BaseModel):
    """Uniform outcome of every git action."""

    success: bool
    output: str | None = None
    error: str | None = None
    commit_hash: str | None = None
    branch_name: str | None = None
    remote_name: str | None = None

    @classmethod
    def succeeded(
        cls,
        output: str | None = None,
        commit_hash: str | None = None,
        branch_name: str | None = None,
        remote_name: str | None = None,
    ) -> "GitOperationResult":
        return cls(
            success=True,
            output=output,
            commit_hash=commit_hash,
            branch_name=branch_name,
            remote_name=remote_name,
        )

    @classmethod
    def failed(cls, error: str, commit_hash: str | None = None) -> "GitOperationResult":
        return cls(success=False, error=error, commit_hash=commit_hash)


class DiffFile(BaseModel):
    """One file section of a unified diff."""

    file_name: str
    diff_content: str = ""
    additions: int = 0
    deletions: int = 0
    is_new: bool = False
    is_deleted: bool = False


class GitDiffSummary(BaseModel):
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0

    def __str__(self) -> str:
        return (
            f"{self.files_changed} file(s) changed, "
            f"{self.insertions} insertion(s)(+), {self.deletions} deletion(s)(-)"
        )


class GitBranchInfo(BaseModel):
    name: str
    short_name: str
    is_remote: bool = False
    is_current: bool = False
    remote_name: str | None = None
    commit_hash: str | None = None

    def __str__(self) -> str:
        return f"* {self.name}" if self.is_current else self.name


class DiffComparison(BaseModel):
    """File-level differences between a reference diff and a target diff."""

    missing: list[str] = Field(default_factory=list)
    extra: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)

    @property
    def is_identical(self) -> bool:
        return not (self.missing or self.extra or self.modified)


class CommitInfo(BaseModel):
    """One entry of `git log`."""

    commit_hash: str
    author: str = ""
    subject: str = ""
    timestamp: int | None = None
