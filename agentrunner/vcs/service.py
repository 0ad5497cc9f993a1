"""Git automation around agent runs: diffs, commits, pushes, hard checkouts, clones.

Every git call goes through one GitCommandExecutor. Remote failures are
classified into readable GitOperationResult errors rather than raised;
timeouts of individual commands are reported the same way. Only the strict
helper `ensure_repository()` raises.

Git operations on the same working directory are not serialised here.
Callers that share a checkout must coordinate themselves.
"""

import logging
import shutil
import threading
from collections.abc import Callable
from pathlib import Path

from agentrunner.core.config import EngineConfig
from agentrunner.core.errors import GitNotAvailableError, GitTimeoutError, NotAGitRepositoryError
from agentrunner.process.executor import GitCommandExecutor, GitCommandResult
from agentrunner.process.supervisor import ProcessStartOptions, ProcessSupervisor, get_default_supervisor
from agentrunner.vcs.diff import parse_diff_summary, truncate_diff
from agentrunner.vcs.models import CommitInfo, GitBranchInfo, GitDiffSummary, GitOperationResult

logger = logging.getLogger(__name__)

QUICK_TIMEOUT = 5.0
DIFF_TIMEOUT = 60.0
CLONE_TIMEOUT = 600.0

# Output of executed commands is stripped, so the separator must not be whitespace
_FIELD_SEP = "|"


class VersionControlService:
    """Git operations on working directories."""

    def __init__(
        self,
        executor: GitCommandExecutor | None = None,
        config: EngineConfig | None = None,
        supervisor: ProcessSupervisor | None = None,
    ):
        self.config = config or EngineConfig()
        self.executor = executor or GitCommandExecutor(default_timeout=self.config.git_timeout)
        self._supervisor = supervisor

    @property
    def supervisor(self) -> ProcessSupervisor:
        if self._supervisor is None:
            self._supervisor = get_default_supervisor(self.config)
        return self._supervisor

    def _run(self, args: list[str], working_directory: str | Path | None, timeout: float | None = None) -> GitCommandResult:
        """Run git, folding a timeout into a failed result."""
        cwd = str(working_directory) if working_directory is not None else None
        try:
            return self.executor.execute(args, cwd, timeout)
        except GitTimeoutError as e:
            logger.warning(str(e))
            return GitCommandResult(exit_code=-1, error=str(e))

    # --- Queries ---

    def is_git_available(self) -> bool:
        result = self._run(["--version"], None, QUICK_TIMEOUT)
        return result.success and "git version" in result.output

    def is_git_repository(self, working_directory: str | Path) -> bool:
        if not Path(working_directory).is_dir():
            return False
        result = self._run(["rev-parse", "--is-inside-work-tree"], working_directory, QUICK_TIMEOUT)
        return result.success and result.output.strip().lower() == "true"

    def ensure_repository(self, working_directory: str | Path) -> None:
        """Raise unless git is installed and `working_directory` is a work tree.

        Raises:
            GitNotAvailableError: If git cannot be run.
            NotAGitRepositoryError: If the directory is not inside a work tree.
        """
        if not self.is_git_available():
            raise GitNotAvailableError()
        if not self.is_git_repository(working_directory):
            raise NotAGitRepositoryError(str(working_directory))

    def _single_line(self, args: list[str], working_directory: str | Path, timeout: float | None = None) -> str | None:
        result = self._run(args, working_directory, timeout)
        if result.success and result.output.strip():
            return result.output.strip()
        return None

    def get_current_commit_hash(self, working_directory: str | Path) -> str | None:
        return self._single_line(["rev-parse", "HEAD"], working_directory)

    def get_current_branch(self, working_directory: str | Path) -> str | None:
        return self._single_line(["rev-parse", "--abbrev-ref", "HEAD"], working_directory, 10)

    def get_remote_url(self, working_directory: str | Path, remote: str = "origin") -> str | None:
        return self._single_line(["remote", "get-url", remote], working_directory, 10)

    def has_uncommitted_changes(self, working_directory: str | Path) -> bool:
        result = self._run(["status", "--porcelain"], working_directory, 10)
        return result.success and bool(result.output.strip())

    def get_changed_files(self, working_directory: str | Path, base: str | None = None) -> list[str]:
        result = self._run(["diff", base or "HEAD", "--name-only"], working_directory)
        if not result.success:
            return []
        return [line.strip() for line in result.output.splitlines() if line.strip()]

    def _branch_exists(self, working_directory: str | Path, ref: str) -> bool:
        return self._run(["rev-parse", "--verify", "--quiet", ref], working_directory).success

    def get_branches(self, working_directory: str | Path, include_remote: bool = False) -> list[GitBranchInfo]:
        """Local branches, plus remote-tracking ones when `include_remote`."""
        fmt = _FIELD_SEP.join(["%(refname)", "%(HEAD)", "%(refname:short)", "%(objectname)"])
        args = ["branch", f"--format={fmt}"]
        if include_remote:
            args.append("--all")
        result = self._run(args, working_directory)
        if not result.success:
            return []

        branches = []
        for line in result.output.splitlines():
            fields = line.split(_FIELD_SEP, 3)
            if len(fields) != 4:
                continue
            refname, head, short, commit = fields
            if refname.startswith("refs/remotes/"):
                remote_name, _, branch = refname[len("refs/remotes/"):].partition("/")
                if branch == "HEAD" or not branch:
                    continue
                branches.append(
                    GitBranchInfo(
                        name=short,
                        short_name=branch,
                        is_remote=True,
                        remote_name=remote_name,
                        commit_hash=commit or None,
                    )
                )
            elif refname.startswith("refs/heads/"):
                branches.append(
                    GitBranchInfo(
                        name=short,
                        short_name=short,
                        is_current=head.strip() == "*",
                        commit_hash=commit or None,
                    )
                )
        return branches

    def get_commit_log(
        self,
        working_directory: str | Path,
        from_ref: str | None = None,
        to_ref: str = "HEAD",
        max_count: int = 50,
    ) -> list[CommitInfo]:
        """Commits reachable from `to_ref` but not `from_ref`, newest first."""
        fmt = _FIELD_SEP.join(["%H", "%an", "%at", "%s"])
        revision = f"{from_ref}..{to_ref}" if from_ref else to_ref
        result = self._run(["log", f"--format={fmt}", "-n", str(max_count), revision], working_directory)
        if not result.success:
            return []

        commits = []
        for line in result.output.splitlines():
            fields = line.split(_FIELD_SEP, 3)
            if len(fields) != 4:
                continue
            commit_hash, author, timestamp, subject = fields
            commits.append(
                CommitInfo(
                    commit_hash=commit_hash,
                    author=author,
                    subject=subject,
                    timestamp=int(timestamp) if timestamp.isdigit() else None,
                )
            )
        return commits

    # --- Diffs ---

    def get_working_directory_diff(self, working_directory: str | Path, base: str | None = None) -> str | None:
        """Patch of the working tree against HEAD (or `base`), None when empty.

        A repository without commits falls back to the staged diff.
        """
        if not self.is_git_repository(working_directory):
            return None

        result = self._run(
            ["diff", base or "HEAD", "--stat", "--patch", "--find-renames", "--find-copies"],
            working_directory,
            DIFF_TIMEOUT,
        )
        if result.success:
            diff = truncate_diff(result.output, self.config.max_diff_bytes)
            return diff if diff.strip() else None

        # No commits yet: HEAD does not resolve
        staged = self._run(["diff", "--cached", "--stat", "--patch"], working_directory, DIFF_TIMEOUT)
        if staged.success and staged.output.strip():
            return truncate_diff(staged.output, self.config.max_diff_bytes)
        return None

    def get_commit_range_diff(self, working_directory: str | Path, from_ref: str, to_ref: str | None = None) -> str | None:
        result = self._run(
            ["diff", f"{from_ref}..{to_ref or 'HEAD'}", "--stat", "--patch", "--find-renames", "--find-copies"],
            working_directory,
            DIFF_TIMEOUT,
        )
        if not result.success:
            return None
        diff = truncate_diff(result.output, self.config.max_diff_bytes)
        return diff if diff.strip() else None

    def get_diff_summary(self, working_directory: str | Path, base: str | None = None) -> GitDiffSummary | None:
        result = self._run(["diff", base or "HEAD", "--shortstat"], working_directory)
        if result.success and result.output.strip():
            return parse_diff_summary(result.output)
        return None

    # --- Commit / push ---

    def commit_all_changes(self, working_directory: str | Path, message: str) -> GitOperationResult:
        """Stage everything and commit. Returns the new HEAD hash."""
        added = self._run(["add", "-A"], working_directory)
        if not added.success:
            return GitOperationResult.failed(f"Failed to stage changes: {added.error}")

        committed = self._run(["commit", "-m", message], working_directory)
        if not committed.success:
            if "nothing to commit" in committed.output or "nothing to commit" in committed.error:
                return GitOperationResult.failed("Nothing to commit - no changes detected")
            return GitOperationResult.failed(f"Failed to commit: {committed.error or committed.output}")

        commit_hash = self.get_current_commit_hash(working_directory)
        logger.info(f"Committed {commit_hash} in {working_directory}")
        return GitOperationResult.succeeded(output=committed.output, commit_hash=commit_hash)

    @staticmethod
    def _classify_push_error(error: str, remote: str) -> str:
        lowered = error.lower()
        if "rejected" in lowered:
            return "Push was rejected. You may need to pull remote changes first."
        if "permission denied" in lowered or "authentication" in lowered:
            return "Authentication failed. Please check your credentials."
        if ("remote" in lowered and "not found" in lowered) or "does not appear to be a git repository" in lowered:
            return f"Remote '{remote}' not found."
        return f"Push failed: {error}"

    def push(self, working_directory: str | Path, remote: str = "origin", branch: str | None = None) -> GitOperationResult:
        branch = branch or self.get_current_branch(working_directory)
        if not branch:
            return GitOperationResult.failed("Could not determine current branch")

        try:
            pushed = self.executor.execute(
                ["push", remote, branch], str(working_directory), self.config.push_timeout
            )
        except GitTimeoutError:
            return GitOperationResult.failed("Push operation timed out or was cancelled")

        if not pushed.success:
            message = self._classify_push_error(pushed.error, remote)
            logger.warning(f"Push to {remote}/{branch} failed: {message}")
            return GitOperationResult.failed(message)

        # git reports push progress on stderr
        return GitOperationResult.succeeded(
            output=pushed.output or pushed.error,
            branch_name=branch,
            remote_name=remote,
        )

    def commit_and_push(
        self,
        working_directory: str | Path,
        message: str,
        remote: str = "origin",
        progress: Callable[[str], None] | None = None,
    ) -> GitOperationResult:
        """Commit everything, then push. A failed push keeps the commit hash."""

        def report(text: str) -> None:
            if progress is not None:
                progress(text)

        report("Checking for changes...")
        if not self.has_uncommitted_changes(working_directory):
            return GitOperationResult.failed("No changes to commit")

        report("Staging and committing changes...")
        committed = self.commit_all_changes(working_directory, message)
        if not committed.success:
            return committed

        report("Pushing to remote repository...")
        pushed = self.push(working_directory, remote)
        if not pushed.success:
            short = committed.commit_hash[:7] if committed.commit_hash else "unknown"
            return GitOperationResult.failed(
                f"Commit succeeded (hash: {short}) but push failed: {pushed.error}",
                commit_hash=committed.commit_hash,
            )

        return GitOperationResult.succeeded(
            output=f"Successfully committed and pushed to {pushed.remote_name}/{pushed.branch_name}",
            commit_hash=committed.commit_hash,
            branch_name=pushed.branch_name,
            remote_name=pushed.remote_name,
        )

    # --- Branch state ---

    def fetch(self, working_directory: str | Path, remote: str = "origin", prune: bool = True) -> GitOperationResult:
        args = ["fetch", remote]
        if prune:
            args.append("--prune")
        fetched = self._run(args, working_directory, self.config.push_timeout)
        if not fetched.success:
            return GitOperationResult.failed(f"Failed to fetch from '{remote}': {fetched.error}")
        return GitOperationResult.succeeded(output=fetched.output or fetched.error, remote_name=remote)

    def hard_checkout_branch(
        self,
        working_directory: str | Path,
        branch: str,
        remote: str = "origin",
    ) -> GitOperationResult:
        """Make `branch` match `remote/branch` exactly, discarding local changes."""
        fetched = self.fetch(working_directory, remote)
        if not fetched.success:
            return fetched

        for args in (["clean", "-fd"], ["reset", "--hard"]):
            step = self._run(args, working_directory)
            if not step.success:
                return GitOperationResult.failed(f"git {' '.join(args)} failed: {step.error}")

        remote_ref = f"{remote}/{branch}"
        has_local = self._branch_exists(working_directory, f"refs/heads/{branch}")
        has_remote = self._branch_exists(working_directory, f"refs/remotes/{remote_ref}")
        if has_local:
            checkout_args = ["checkout", branch]
        elif has_remote:
            checkout_args = ["checkout", "-b", branch, "--track", remote_ref]
        else:
            return GitOperationResult.failed(f"Branch '{branch}' does not exist locally or on '{remote}'")

        checked_out = self._run(checkout_args, working_directory)
        if not checked_out.success:
            return GitOperationResult.failed(f"Failed to checkout '{branch}': {checked_out.error}")

        if has_remote:
            reset = self._run(["reset", "--hard", remote_ref], working_directory)
            if not reset.success:
                return GitOperationResult.failed(f"Failed to reset '{branch}' to {remote_ref}: {reset.error}")

        commit_hash = self.get_current_commit_hash(working_directory)
        logger.info(f"Hard checkout of {branch} at {commit_hash} in {working_directory}")
        return GitOperationResult.succeeded(
            output=f"Checked out {branch}" + (f" at {remote_ref}" if has_remote else ""),
            commit_hash=commit_hash,
            branch_name=branch,
            remote_name=remote,
        )

    def sync_with_origin(self, working_directory: str | Path, remote: str = "origin") -> GitOperationResult:
        """Hard checkout of the current branch."""
        branch = self.get_current_branch(working_directory)
        if not branch or branch == "HEAD":
            return GitOperationResult.failed("Could not determine current branch")
        return self.hard_checkout_branch(working_directory, branch, remote)

    def create_branch(self, working_directory: str | Path, name: str, switch: bool = True) -> GitOperationResult:
        args = ["checkout", "-b", name] if switch else ["branch", name]
        created = self._run(args, working_directory)
        if not created.success:
            return GitOperationResult.failed(f"Failed to create branch '{name}': {created.error}")
        return GitOperationResult.succeeded(
            output=created.output or created.error,
            commit_hash=self.get_current_commit_hash(working_directory),
            branch_name=name,
        )

    def discard_all_changes(self, working_directory: str | Path, include_untracked: bool = True) -> GitOperationResult:
        reset = self._run(["reset", "--hard", "HEAD"], working_directory)
        if not reset.success:
            return GitOperationResult.failed(f"Failed to discard changes: {reset.error}")
        if include_untracked:
            cleaned = self._run(["clean", "-fd"], working_directory)
            if not cleaned.success:
                return GitOperationResult.failed(f"Failed to remove untracked files: {cleaned.error}")
        return GitOperationResult.succeeded(output=reset.output)

    # --- Clone ---

    def clone_repository(
        self,
        url: str,
        target: str | Path,
        branch: str | None = None,
        timeout: float = CLONE_TIMEOUT,
        cancel_event: threading.Event | None = None,
    ) -> GitOperationResult:
        """Clone into `target`, which must be absent or empty.

        A failed, timed out or cancelled clone leaves nothing behind: a target
        the clone created is deleted, a pre-existing empty one is emptied.
        """
        target = Path(target)
        existed = target.exists()
        if existed and (not target.is_dir() or any(target.iterdir())):
            return GitOperationResult.failed(f"Target directory '{target}' already exists and is not empty")
        target.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone"]
        if branch:
            args += ["--branch", branch]
        args += [url, str(target)]

        handle, reason = self.supervisor.try_start(
            ProcessStartOptions(
                executable=self.executor.git_executable,
                args=args,
                working_directory=str(target.parent),
                # Never block on a credential prompt
                environment={"GIT_TERMINAL_PROMPT": "0"},
                label="git clone",
            )
        )
        if handle is None:
            return GitOperationResult.failed(f"Failed to start git: {reason}")
        try:
            completion = self.supervisor.wait_for_exit(handle.process_id, timeout=timeout, cancel_event=cancel_event)
        finally:
            self.supervisor.remove(handle.process_id)

        if completion is not None and completion.success:
            logger.info(f"Cloned {url} into {target}")
            return GitOperationResult.succeeded(
                output=completion.error.strip() or f"Cloned {url}",
                commit_hash=self.get_current_commit_hash(target),
                branch_name=self.get_current_branch(target),
                remote_name="origin",
            )

        self._remove_partial_clone(target, keep_root=existed)
        if completion is None or completion.cancelled:
            return GitOperationResult.failed("Clone was cancelled")
        if completion.timed_out:
            return GitOperationResult.failed(f"Clone timed out after {timeout:.0f} seconds")
        return GitOperationResult.failed(f"Clone failed: {completion.error.strip() or completion.output.strip()}")

    @staticmethod
    def _remove_partial_clone(target: Path, keep_root: bool) -> None:
        if not target.exists():
            return
        if not keep_root:
            shutil.rmtree(target, ignore_errors=True)
            return
        for entry in target.iterdir():
            # Unlink symlinks rather than following them
            if entry.is_symlink() or not entry.is_dir():
                entry.unlink(missing_ok=True)
            else:
                shutil.rmtree(entry, ignore_errors=True)
