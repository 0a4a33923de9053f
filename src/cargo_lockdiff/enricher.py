"""
Metadata enrichment for diff operations.

Looks up the packages behind added and updated records and reports changes a
reviewer should look at: build scripts, proc macros, licensing, new authors
and changelog additions.
"""

from dataclasses import dataclass
from difflib import SequenceMatcher
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .diff_engine import Add, Operation, Remove, Update
from .error_handling import ResolutionError
from .registry_clients import PackageMetadata, PackageResolver
from .structured_logging import get_diff_logger

NONE_MARKER = "<none>"


class FindingKind(Enum):
    HAS_BUILD_SCRIPT = "has_build_script"
    IS_PROC_MACRO = "is_proc_macro"
    ADDS_BUILD_SCRIPT = "adds_build_script"
    BECOMES_PROC_MACRO = "becomes_proc_macro"
    LICENSE_CHANGED = "license_changed"
    LICENSE_FILE_CHANGED = "license_file_changed"
    NEW_AUTHORS = "new_authors"
    CHANGELOG_ADDITIONS = "changelog_additions"
    CHANGELOG_UNAVAILABLE = "changelog_unavailable"
    METADATA_UNAVAILABLE = "metadata_unavailable"


@dataclass(frozen=True)
class Finding:
    """One annotation on an operation, with optional verbatim block lines."""

    kind: FindingKind
    message: str
    block: Tuple[str, ...] = ()


def read_changelog(root: Path, changelog_file: str = "CHANGELOG.md") -> str:
    """
    Read a package's changelog. A missing file counts as empty.

    Raises:
        OSError, UnicodeDecodeError: If the file exists but cannot be read
    """
    try:
        return (root / changelog_file).read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def changelog_additions(old: str, new: str) -> List[str]:
    """Lines of ``new`` that are not in ``old``, in the order they appear in ``new``."""
    old_lines = old.splitlines()
    new_lines = new.splitlines()
    matcher = SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    added: List[str] = []
    for tag, _, _, j1, j2 in matcher.get_opcodes():
        if tag in ("insert", "replace"):
            added.extend(new_lines[j1:j2])
    return added


def _or_none(value: Optional[str]) -> str:
    return value if value is not None else NONE_MARKER


class MetadataEnricher:
    """Annotates operations with findings about the packages involved."""

    def __init__(
        self,
        resolver: PackageResolver,
        metadata: bool = True,
        changelog: bool = False,
        changelog_file: str = "CHANGELOG.md",
    ):
        self.resolver = resolver
        self.metadata = metadata
        self.changelog = changelog
        self.changelog_file = changelog_file
        self.logger = get_diff_logger()

    def annotate(self, op: Operation) -> List[Finding]:
        """
        Produce the findings for one operation.

        Removals never get findings. Records without an addressable source
        get none either. A resolution failure yields a single marker finding
        instead of aborting the run.
        """
        if isinstance(op, Remove):
            return []
        try:
            if isinstance(op, Add):
                return self._annotate_add(op)
            if isinstance(op, Update):
                return self._annotate_update(op)
        except ResolutionError as e:
            return [
                Finding(FindingKind.METADATA_UNAVAILABLE, f"Metadata unavailable: {e.message}")
            ]
        return []

    def annotate_all(self, ops: Sequence[Operation]) -> Dict[Operation, List[Finding]]:
        return {op: self.annotate(op) for op in ops}

    def _annotate_add(self, op: Add) -> List[Finding]:
        if not self.metadata:
            return []
        package = self.resolver.resolve(op.record)
        if package is None:
            return []

        findings = []
        if package.has_build_script:
            findings.append(Finding(FindingKind.HAS_BUILD_SCRIPT, "Has a build script"))
        if package.is_proc_macro:
            findings.append(Finding(FindingKind.IS_PROC_MACRO, "Is a proc macro"))
        return findings

    def _annotate_update(self, op: Update) -> List[Finding]:
        if not (self.metadata or self.changelog):
            return []
        old = self.resolver.resolve(op.old)
        new = self.resolver.resolve(op.new)
        if old is None or new is None:
            return []

        findings = self._compare_metadata(old, new) if self.metadata else []
        if self.changelog:
            findings.extend(self._compare_changelogs(old, new))
        return findings

    def _compare_metadata(self, old: PackageMetadata, new: PackageMetadata) -> List[Finding]:
        findings = []
        if not old.has_build_script and new.has_build_script:
            findings.append(Finding(FindingKind.ADDS_BUILD_SCRIPT, "Adds a build script"))
        if not old.is_proc_macro and new.is_proc_macro:
            findings.append(Finding(FindingKind.BECOMES_PROC_MACRO, "Turns into a proc macro"))

        if old.license != new.license:
            findings.append(
                Finding(
                    FindingKind.LICENSE_CHANGED,
                    f"License changed from {_or_none(old.license)} to {_or_none(new.license)}",
                )
            )
        if old.license_file != new.license_file:
            findings.append(
                Finding(
                    FindingKind.LICENSE_FILE_CHANGED,
                    f"License file changed from {_or_none(old.license_file)} "
                    f"to {_or_none(new.license_file)}",
                )
            )

        added_authors = sorted(set(new.authors) - set(old.authors))
        if added_authors:
            findings.append(
                Finding(
                    FindingKind.NEW_AUTHORS,
                    f"Additional authors ({', '.join(added_authors)})",
                )
            )
        return findings

    def _compare_changelogs(self, old: PackageMetadata, new: PackageMetadata) -> List[Finding]:
        try:
            old_text = read_changelog(old.root, self.changelog_file)
            new_text = read_changelog(new.root, self.changelog_file)
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(
                "changelog_unreadable", package=new.name, version=new.version, reason=str(e)
            )
            return [Finding(FindingKind.CHANGELOG_UNAVAILABLE, "CHANGELOG unavailable")]

        added = changelog_additions(old_text, new_text)
        if not added:
            return []
        return [Finding(FindingKind.CHANGELOG_ADDITIONS, "Additions to CHANGELOG", tuple(added))]
