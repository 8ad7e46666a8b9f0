"""Git history for stored intent versions.

Each saved version becomes one commit in a repository rooted at intents/.
The subject is always "[<environment>/<device_group>] Intent <version>" and
the operator who saved it goes into a "Saved-by:" trailer, so the log can be
read back as VersionCommit records without a side index.
"""
import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..errors import FirecraftError

logger = logging.getLogger(__name__)

_SUBJECT_RE = re.compile(r"^\[(?P<scope>[^\]]+)\] Intent (?P<version>v\d+)$")
_SAVED_BY_RE = re.compile(r"^Saved-by: (.+)$", re.MULTILINE)

# git log --format fields: hash, committer date, subject, body
_LOG_FORMAT = "%H%x1f%cI%x1f%s%x1f%b%x1e"


class GitError(FirecraftError):
    """A git command run against the intent repository failed."""

    code = "GIT_ERROR"


@dataclass(frozen=True)
class VersionCommit:
    """One commit of the intent repository."""
    commit: str
    committed_at: datetime
    subject: str
    saved_by: Optional[str] = None
    scope: Optional[str] = None
    version: Optional[str] = None


def version_subject(scope: str, version: str) -> str:
    return f"[{scope}] Intent {version}"


class IntentRepository:
    """Commits intent version files and reads their history back."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @staticmethod
    def available() -> bool:
        """True if a git executable is on PATH."""
        return shutil.which("git") is not None

    @property
    def exists(self) -> bool:
        return (self.root / ".git").is_dir()

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        result = subprocess.run(
            ["git", "-C", str(self.root), *args],
            capture_output=True, text=True, check=False,
        )
        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            logger.error(f"git {args[0]} failed in {self.root}: {stderr}")
            raise GitError(f"git {args[0]} failed: {stderr}", details={"args": list(args)})
        return result

    def ensure(self) -> bool:
        """
        Create the repository on first use.

        Returns:
            True if the repository was created by this call
        """
        if self.exists:
            return False

        self.root.mkdir(parents=True, exist_ok=True)
        self._git("init", "--quiet")
        self._git("config", "user.name", "firecraft")
        self._git("config", "user.email", "firecraft@localhost")
        self._git("commit", "--allow-empty", "--quiet", "-m", "Create intent repository")
        logger.info(f"Created intent repository at {self.root}")
        return True

    def commit_version(
        self,
        path: Path,
        scope: str,
        version: str,
        saved_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Optional[str]:
        """
        Commit one version file.

        Args:
            path: Version file inside the repository
            scope: "<environment>/<device_group>"
            version: Version label, e.g. "v3"
            saved_by: Operator recorded in the Saved-by trailer
            note: Free text placed in the commit body

        Returns:
            Commit hash, or None when that content is already committed
        """
        self.ensure()
        relative = Path(path).resolve().relative_to(self.root.resolve()).as_posix()
        self._git("add", "--", relative)
        if self._git("diff", "--cached", "--quiet", check=False).returncode == 0:
            logger.debug(f"{relative} already committed")
            return None

        paragraphs = [version_subject(scope, version)]
        if note:
            paragraphs.append(note)
        if saved_by:
            paragraphs.append(f"Saved-by: {saved_by}")
        self._git("commit", "--quiet", "-m", "\n\n".join(paragraphs))

        commit = self._git("rev-parse", "HEAD").stdout.strip()
        logger.info(f"Committed {scope}@{version} as {commit[:8]}")
        return commit

    def log(self, path: Optional[str] = None, limit: int = 20) -> list[VersionCommit]:
        """
        Commits newest first.

        Args:
            path: Restrict to commits touching this path (a scope directory or a version file)
            limit: Maximum commits to return
        """
        if not self.exists:
            return []

        args = ["log", f"-n{limit}", f"--format={_LOG_FORMAT}"]
        if path:
            args.extend(["--", path])
        result = self._git(*args, check=False)
        if result.returncode != 0:
            return []

        commits = []
        for record in result.stdout.split("\x1e"):
            # str.strip() would also eat the \x1f separators
            fields = record.lstrip("\n").split("\x1f", 3)
            if len(fields) < 4:
                continue
            commit, stamp, subject, body = fields
            subject_match = _SUBJECT_RE.match(subject)
            saved_by = _SAVED_BY_RE.search(body)
            commits.append(VersionCommit(
                commit=commit,
                committed_at=datetime.fromisoformat(stamp),
                subject=subject,
                saved_by=saved_by.group(1).strip() if saved_by else None,
                scope=subject_match["scope"] if subject_match else None,
                version=subject_match["version"] if subject_match else None,
            ))
        return commits

    def version_commit(self, scope: str, version: str) -> Optional[VersionCommit]:
        """The commit that introduced a version file."""
        commits = self.log(f"{scope}/{version}.yaml")
        return commits[-1] if commits else None

    def read(self, path: str, revision: str = "HEAD") -> Optional[str]:
        """File contents at a revision, or None if it is not there."""
        if not self.exists:
            return None
        result = self._git("show", f"{revision}:{path}", check=False)
        return result.stdout if result.returncode == 0 else None
