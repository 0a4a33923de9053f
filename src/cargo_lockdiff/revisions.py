"""
Access to lockfile history.

Revision resolution and blob reads sit behind the small ``RevisionProvider``
interface; ``GitRevisionProvider`` implements it with GitPython.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

import git

from .error_handling import NotFoundError, RevisionError
from .structured_logging import log_revision_resolved

WORKING_TREE = "working tree"


class RevisionProvider(ABC):
    """Read-only view of a repository's history."""

    @abstractmethod
    def resolve(self, expression: str) -> str:
        """Resolve a revision expression to a commit id, or raise RevisionError."""

    @abstractmethod
    def read_file(self, commit: str, path: str) -> bytes:
        """Return the bytes of ``path`` at ``commit``, or raise NotFoundError."""

    @abstractmethod
    def parent_of(self, commit: str) -> str:
        """Return the first parent of ``commit``, or raise RevisionError."""

    @abstractmethod
    def merge_base(self, first: str, second: str) -> str:
        """Return the best common ancestor of two commits."""

    @abstractmethod
    def head(self) -> str:
        """Return the commit currently checked out."""

    @abstractmethod
    def working_tree_path(self, path: str) -> Path:
        """Return the on-disk location of ``path`` in the working tree."""


class GitRevisionProvider(RevisionProvider):
    """RevisionProvider backed by a local git repository."""

    def __init__(self, repo_path: str = "."):
        try:
            self.repo = git.Repo(repo_path)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise RevisionError(f"Can't open git repo at {repo_path}: {e}")
        self.repo_path = repo_path

    def resolve(self, expression: str) -> str:
        try:
            commit = self.repo.git.rev_parse(
                "--verify", "--quiet", f"{expression}^{{commit}}"
            ).strip()
        except git.GitCommandError:
            raise RevisionError(f"Not a git spec: {expression}")
        if not commit:
            raise RevisionError(f"Not a git spec: {expression}")
        log_revision_resolved(expression, commit)
        return commit

    def read_file(self, commit: str, path: str) -> bytes:
        tree_path = PurePosixPath(Path(path).as_posix()).as_posix()
        try:
            obj = self.repo.commit(commit).tree / tree_path
        except KeyError:
            raise NotFoundError("Couldn't find lock file", path=str(path), revision=commit)
        except (ValueError, git.BadName) as e:
            raise RevisionError(f"Cannot read commit {commit}: {e}")

        if obj.type != "blob":
            raise NotFoundError("Not a git blob", path=str(path), revision=commit)
        return obj.data_stream.read()

    def parent_of(self, commit: str) -> str:
        parents = self.repo.commit(commit).parents
        if not parents:
            raise RevisionError("No parent to compare to", revision=commit)
        return parents[0].hexsha

    def merge_base(self, first: str, second: str) -> str:
        try:
            bases = self.repo.merge_base(first, second)
        except git.GitCommandError as e:
            raise RevisionError(f"Cannot compute merge base of {first} and {second}: {e}")
        if not bases:
            raise RevisionError(f"{first} and {second} have no common ancestor")
        return bases[0].hexsha

    def head(self) -> str:
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            raise RevisionError(f"Failed to get current HEAD: {e}")

    def working_tree_path(self, path: str) -> Path:
        if self.repo.working_tree_dir is None:
            raise RevisionError("Repository has no working tree")
        return Path(self.repo.working_tree_dir) / path


@dataclass(frozen=True)
class RevisionExpression:
    """A parsed command-line revision expression."""

    start: str
    end: Optional[str] = None
    symmetric: bool = False

    @property
    def is_range(self) -> bool:
        return self.end is not None


def parse_revision_expression(expression: str) -> RevisionExpression:
    """
    Split ``A..B`` and ``A...B`` ranges; anything else is a single commit.

    Empty range endpoints default to ``HEAD``, as in git.
    """
    expression = expression.strip()
    if not expression:
        raise RevisionError("Empty revision expression")

    for separator, symmetric in (("...", True), ("..", False)):
        if separator in expression:
            start, _, end = expression.partition(separator)
            return RevisionExpression(
                start=start or "HEAD", end=end or "HEAD", symmetric=symmetric
            )
    return RevisionExpression(start=expression)


@dataclass(frozen=True)
class RevisionSide:
    """One side of a comparison. ``commit`` is None for the working tree."""

    label: str
    commit: Optional[str] = None

    @property
    def is_working_tree(self) -> bool:
        return self.commit is None


@dataclass(frozen=True)
class Comparison:
    old: RevisionSide
    new: RevisionSide


def resolve_comparison(
    provider: RevisionProvider, expression: Optional[str] = None
) -> Comparison:
    """
    Work out which two lockfile versions to compare.

    ``A..B`` compares A with B, ``A...B`` compares the merge base of A and B
    with B, a single commit is compared with its first parent, and no
    expression compares ``HEAD`` with the working tree.

    Raises:
        RevisionError: If an expression does not resolve, or a single commit
            has no parent
    """
    if expression is None:
        head = provider.head()
        return Comparison(
            old=RevisionSide("HEAD", head), new=RevisionSide(WORKING_TREE, None)
        )

    parsed = parse_revision_expression(expression)
    if parsed.is_range:
        start = provider.resolve(parsed.start)
        end = provider.resolve(parsed.end)
        if parsed.symmetric:
            start = provider.merge_base(start, end)
        return Comparison(
            old=RevisionSide(parsed.start, start), new=RevisionSide(parsed.end, end)
        )

    commit = provider.resolve(parsed.start)
    try:
        parent = provider.parent_of(commit)
    except RevisionError as e:
        raise e.with_context(revision=parsed.start)
    return Comparison(
        old=RevisionSide(f"{parsed.start}^", parent),
        new=RevisionSide(parsed.start, commit),
    )
