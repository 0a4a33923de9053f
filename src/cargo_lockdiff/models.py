"""
Core data model for lockfile comparison.

Defines the immutable dependency record, the parsed source identifier and
the per-invocation snapshot of a lockfile.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from functools import total_ordering
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import semver

CRATES_IO_INDEX = "https://github.com/rust-lang/crates.io-index"
CRATES_IO_SPARSE_INDEX = "https://index.crates.io/"

SOURCE_KINDS = ("registry", "sparse", "git", "path")


@total_ordering
@dataclass(frozen=True, eq=False)
class SourceId:
    """Where a locked package was fetched from.

    Cargo writes sources as ``<kind>+<url>[#<precise>]``. Sources are compared
    and ordered by that canonical string.
    """

    kind: str
    url: str
    precise: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> "SourceId":
        """
        Parse a lockfile ``source`` string.

        Args:
            raw: Source string, e.g. ``registry+https://github.com/rust-lang/crates.io-index``

        Returns:
            SourceId: Parsed source

        Raises:
            ValueError: If the string has no known ``kind+`` prefix
        """
        if not raw or not isinstance(raw, str):
            raise ValueError("Source must be a non-empty string")

        kind, sep, rest = raw.partition("+")
        if not sep or kind not in SOURCE_KINDS or not rest:
            raise ValueError(f"Unrecognized source identifier: {raw}")

        url, _, precise = rest.partition("#")
        return cls(kind=kind, url=url, precise=precise or None)

    def __str__(self) -> str:
        text = f"{self.kind}+{self.url}"
        if self.precise:
            text += f"#{self.precise}"
        return text

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SourceId):
            return NotImplemented
        return str(self) == str(other)

    def __lt__(self, other: "SourceId") -> bool:
        if not isinstance(other, SourceId):
            return NotImplemented
        return str(self) < str(other)

    def __hash__(self) -> int:
        return hash(str(self))

    @property
    def is_registry(self) -> bool:
        return self.kind in ("registry", "sparse")

    @property
    def is_git(self) -> bool:
        return self.kind == "git"

    @property
    def is_crates_io(self) -> bool:
        url = self.url.rstrip("/")
        return url in (CRATES_IO_INDEX, CRATES_IO_SPARSE_INDEX.rstrip("/"))

    @property
    def repository_url(self) -> str:
        """URL without the query string (git sources carry branch/tag/rev there)."""
        return self.url.split("?", 1)[0]

    @property
    def reference(self) -> Optional[Tuple[str, str]]:
        """Git reference requested in the manifest, as ``(kind, value)``."""
        query = parse_qs(urlparse(self.url).query)
        for key in ("rev", "tag", "branch"):
            if key in query:
                return key, query[key][0]
        return None


def parse_version(raw: str) -> semver.Version:
    """
    Parse a locked package version.

    Raises:
        ValueError: If the version is not valid semver
    """
    if not isinstance(raw, str):
        raise ValueError(f"Version must be a string, got {type(raw).__name__}")
    return semver.Version.parse(raw.strip())


@total_ordering
@dataclass(frozen=True, eq=False)
class DependencyRecord:
    """One ``[[package]]`` entry of a lockfile."""

    name: str
    version: semver.Version
    source: Optional[SourceId] = None

    @classmethod
    def create(
        cls, name: str, version: str, source: Optional[str] = None
    ) -> "DependencyRecord":
        """Build a record from the raw lockfile strings."""
        return cls(
            name=name,
            version=parse_version(version),
            source=SourceId.parse(source) if source else None,
        )

    def _key(self) -> Tuple:
        # semver precedence ignores build metadata, so it breaks ties here
        return (
            self.name,
            self.version,
            self.version.build or "",
            self.source is not None,
            str(self.source) if self.source else "",
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DependencyRecord):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "DependencyRecord") -> bool:
        if not isinstance(other, DependencyRecord):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash((self.name, str(self.version), str(self.source)))

    def __str__(self) -> str:
        return f"{self.name} {self.version}"


class Snapshot(Mapping):
    """
    Structured form of one lockfile at one point in time.

    Maps each dependency name to the sorted, deduplicated tuple of records
    sharing it. Iteration yields names in ascending order. Instances are
    read-only once built.
    """

    def __init__(self, packages: Optional[Dict[str, Tuple[DependencyRecord, ...]]] = None):
        packages = packages or {}
        self._packages: Dict[str, Tuple[DependencyRecord, ...]] = {
            name: packages[name] for name in sorted(packages)
        }

    @classmethod
    def from_records(cls, records: Iterable[DependencyRecord]) -> "Snapshot":
        """Group records by name, sorting and deduplicating each group."""
        grouped: Dict[str, set] = {}
        for record in records:
            grouped.setdefault(record.name, set()).add(record)
        return cls({name: tuple(sorted(group)) for name, group in grouped.items()})

    def __getitem__(self, name: str) -> Tuple[DependencyRecord, ...]:
        return self._packages[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def __repr__(self) -> str:
        return f"Snapshot({self.record_count} records, {len(self)} names)"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._packages == other._packages

    __hash__ = None  # type: ignore[assignment]

    @property
    def record_count(self) -> int:
        return sum(len(group) for group in self._packages.values())

    def records(self) -> List[DependencyRecord]:
        """All records, in name order then record order."""
        return [record for group in self._packages.values() for record in group]
