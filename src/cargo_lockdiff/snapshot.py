"""
Snapshot building: lockfile text, a file on disk, or a file at a revision.
"""

from pathlib import Path
from typing import Tuple

from .error_handling import LockDiffError, NotTextualError
from .models import Snapshot
from .parsers import parse_lockfile, parse_lockfile_text
from .revisions import Comparison, RevisionProvider, RevisionSide


def build(text: str) -> Snapshot:
    """Build a snapshot from Cargo.lock text. Raises ParseError."""
    return Snapshot.from_records(parse_lockfile_text(text))


def build_from_file(path: str) -> Snapshot:
    return Snapshot.from_records(parse_lockfile(path))


def build_from_revision(provider: RevisionProvider, revision: str, path: str) -> Snapshot:
    """
    Build a snapshot from the lockfile stored at ``path`` in ``revision``.

    Raises:
        NotFoundError: If the path does not exist at the revision
        NotTextualError: If the stored content is not UTF-8
        ParseError: If the content is not a valid lockfile
    """
    data = provider.read_file(revision, path)
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        raise NotTextualError("Lock file is not UTF-8", path=str(path), revision=revision)

    try:
        return build(text)
    except LockDiffError as e:
        raise e.with_context(path=str(path), revision=revision)


def build_side(provider: RevisionProvider, side: RevisionSide, path: str) -> Snapshot:
    if side.is_working_tree:
        return build_from_file(str(provider.working_tree_path(path)))
    return build_from_revision(provider, side.commit, path)


def build_comparison(
    provider: RevisionProvider, comparison: Comparison, path: str
) -> Tuple[Snapshot, Snapshot]:
    """Build both snapshots; errors name the side that failed."""
    try:
        old = build_side(provider, comparison.old, path)
    except LockDiffError as e:
        raise e.with_context(side="old", revision=comparison.old.label)
    try:
        new = build_side(provider, comparison.new, path)
    except LockDiffError as e:
        raise e.with_context(side="new", revision=comparison.new.label)
    return old, new
