"""Git transport for peer and outgoing review repositories.

The sync engine depends only on the ``RemoteReader`` and
``OutgoingRepository`` protocols; ``GitRemote`` and ``GitOutgoing``
implement them by shelling out to the ``git`` CLI.

Peers are kept as bare mirrors under ``repos/peers/``.  Their head
commit is the sync watermark.  The outgoing repository is an ordinary
clone under ``repos/outgoing``.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_REJECTED_MARKERS = ("[rejected]", "non-fast-forward", "fetch first")
_COMMITTER = ["-c", "user.name=vouchsafe", "-c", "user.email=vouchsafe@localhost"]


class GitError(RuntimeError):
    """A git invocation failed or timed out."""


class PushRejected(GitError):
    """The remote refused a push because it has commits we lack."""


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class RemoteReader(Protocol):
    """Read-only access to a peer's review repository."""

    def fetch(self) -> str:
        """Update the local view and return the remote head commit."""
        ...

    def has_commit(self, commit: str) -> bool: ...

    def added_paths(self, since: str, head: str) -> list[str]:
        """Files added between *since* and *head*; every file if *since* is empty."""
        ...

    def exists(self, head: str, path: str) -> bool: ...

    def read(self, head: str, path: str) -> bytes: ...


class OutgoingRepository(Protocol):
    """The user's own review repository, writable."""

    def refresh(self) -> None:
        """Bring the working copy up to date with the remote."""
        ...

    def list_paths(self) -> set[str]: ...

    def write_files(self, files: dict[str, bytes]) -> None: ...

    def commit(self, message: str) -> str | None:
        """Commit everything staged; ``None`` when there is nothing to commit."""
        ...

    def push(self) -> str:
        """Push the current branch and return its head commit.

        Raises ``PushRejected`` when the remote is ahead.
        """
        ...


# ---------------------------------------------------------------------------
# git CLI
# ---------------------------------------------------------------------------

def _run_git(
    args: list[str],
    *,
    git_binary: str = "git",
    cwd: Path | None = None,
    timeout: float = 120.0,
    check: bool = True,
) -> subprocess.CompletedProcess[bytes]:
    """Shared subprocess.run wrapper; never prompts for credentials."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    cmd = [git_binary, *args]
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitError(f"git {args[0]} timed out after {timeout:g}s") from exc
    except OSError as exc:
        raise GitError(f"Cannot run {git_binary}: {exc}") from exc
    if check and result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise GitError(f"git {args[0]} failed ({result.returncode}): {stderr}")
    return result


def _make_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise GitError(f"Cannot create {path.parent}: {exc}") from exc


def _split_z(output: bytes) -> list[str]:
    return [p.decode("utf-8", errors="surrogateescape") for p in output.split(b"\0") if p]


class GitRemote:
    """A peer repository read through a local bare mirror.

    Parameters
    ----------
    url:
        Anything ``git clone`` accepts.
    mirror_dir:
        Where the mirror lives; created on first fetch.
    """

    def __init__(
        self,
        url: str,
        mirror_dir: Path,
        *,
        git_binary: str = "git",
        timeout: float = 120.0,
    ) -> None:
        self.url = url
        self._dir = mirror_dir
        self._git_binary = git_binary
        self._timeout = timeout

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[bytes]:
        return _run_git(
            ["--git-dir", str(self._dir), *args],
            git_binary=self._git_binary,
            timeout=self._timeout,
            check=check,
        )

    def fetch(self) -> str:
        if not (self._dir / "HEAD").exists():
            _make_parent(self._dir)
            logger.info("Mirroring peer %s", self.url)
            _run_git(
                ["clone", "--mirror", "--quiet", self.url, str(self._dir)],
                git_binary=self._git_binary,
                timeout=self._timeout,
            )
        else:
            self._git("fetch", "--prune", "--quiet", "origin")
        head = self._git("rev-parse", "--verify", "HEAD^{commit}").stdout.decode().strip()
        logger.debug("Peer %s head is %s", self.url, head)
        return head

    def has_commit(self, commit: str) -> bool:
        if not commit:
            return False
        result = self._git("cat-file", "-e", f"{commit}^{{commit}}", check=False)
        return result.returncode == 0

    def added_paths(self, since: str, head: str) -> list[str]:
        if not since:
            out = self._git("ls-tree", "-r", "-z", "--name-only", head).stdout
        else:
            out = self._git(
                "diff", "--name-only", "--diff-filter=A", "--no-renames", "-z", since, head
            ).stdout
        return sorted(_split_z(out))

    def exists(self, head: str, path: str) -> bool:
        result = self._git("cat-file", "-e", f"{head}:{path}", check=False)
        return result.returncode == 0

    def read(self, head: str, path: str) -> bytes:
        return self._git("show", f"{head}:{path}").stdout


class GitOutgoing:
    """The user's own repository as a normal clone with a working tree."""

    def __init__(
        self,
        url: str,
        workdir: Path,
        *,
        git_binary: str = "git",
        timeout: float = 120.0,
    ) -> None:
        self.url = url
        self._dir = workdir
        self._git_binary = git_binary
        self._timeout = timeout

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[bytes]:
        return _run_git(
            list(args),
            git_binary=self._git_binary,
            cwd=self._dir,
            timeout=self._timeout,
            check=check,
        )

    def _branch(self) -> str:
        return self._git("symbolic-ref", "--short", "HEAD").stdout.decode().strip()

    def refresh(self) -> None:
        if not (self._dir / ".git").exists():
            _make_parent(self._dir)
            logger.info("Cloning outgoing repository %s", self.url)
            _run_git(
                ["clone", "--quiet", self.url, str(self._dir)],
                git_binary=self._git_binary,
                timeout=self._timeout,
            )
            return
        self._git("fetch", "--quiet", "origin")
        upstream = f"refs/remotes/origin/{self._branch()}"
        if self._git("rev-parse", "--verify", "--quiet", upstream, check=False).returncode != 0:
            # Remote branch does not exist yet (empty remote).
            return
        try:
            self._git(*_COMMITTER, "rebase", "--quiet", upstream)
        except GitError:
            self._git("rebase", "--abort", check=False)
            raise

    def list_paths(self) -> set[str]:
        result = self._git("ls-files", "-z")
        return set(_split_z(result.stdout))

    def write_files(self, files: dict[str, bytes]) -> None:
        for rel, data in files.items():
            target = self._dir / rel
            _make_parent(target)
            try:
                target.write_bytes(data)
            except OSError as exc:
                raise GitError(f"Cannot write {target}: {exc}") from exc
        if files:
            self._git("add", "--", *sorted(files))

    def commit(self, message: str) -> str | None:
        if self._git("diff", "--cached", "--quiet", check=False).returncode == 0:
            return None
        self._git(*_COMMITTER, "commit", "--quiet", "-m", message)
        return self._git("rev-parse", "HEAD").stdout.decode().strip()

    def push(self) -> str:
        branch = self._branch()
        result = self._git("push", "--quiet", "origin", f"HEAD:refs/heads/{branch}", check=False)
        if result.returncode == 0:
            return self._git("rev-parse", "HEAD").stdout.decode().strip()
        stderr = result.stderr.decode("utf-8", errors="replace")
        if any(marker in stderr for marker in _REJECTED_MARKERS):
            raise PushRejected(stderr.strip())
        raise GitError(f"git push failed ({result.returncode}): {stderr.strip()}")
