"""
Cargo.lock parsing.

Turns the TOML text of a lockfile into dependency records, and back.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import toml

from .cli_config import get_config
from .error_handling import NotFoundError, NotTextualError, ParseError
from .models import DependencyRecord, SourceId, parse_version

DEFAULT_LOCKFILE_VERSION = 3


def _record_from_table(index: int, package: Any) -> DependencyRecord:
    """Validate one ``[[package]]`` table and build its record."""
    if not isinstance(package, dict):
        raise ParseError(f"package #{index} is not a table")

    name = package.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ParseError(f"package #{index} has no name")
    name = name.strip()

    raw_version = package.get("version")
    if raw_version is None:
        raise ParseError(f"package {name} (#{index}) has no version")
    try:
        version = parse_version(raw_version)
    except ValueError as e:
        raise ParseError(f"package {name} has invalid version {raw_version!r}: {e}")

    raw_source = package.get("source")
    source: Optional[SourceId] = None
    if raw_source is not None:
        try:
            source = SourceId.parse(raw_source)
        except ValueError as e:
            raise ParseError(f"package {name} {raw_version}: {e}")

    return DependencyRecord(name=name, version=version, source=source)


def parse_lockfile_text(content: str) -> List[DependencyRecord]:
    """
    Parse the text of a Cargo.lock file.

    Args:
        content: Lockfile TOML text

    Returns:
        List[DependencyRecord]: One record per ``[[package]]`` entry, in file order

    Raises:
        ParseError: If the text is not valid TOML or a package entry is malformed
    """
    try:
        data = toml.loads(content)
    except toml.TomlDecodeError as e:
        raise ParseError(f"Invalid TOML format: {e}")
    except Exception as e:
        # the toml decoder raises IndexError on some truncated input
        raise ParseError(f"Invalid TOML format: {type(e).__name__}: {e}")

    packages = data.get("package", [])
    if not isinstance(packages, list):
        raise ParseError("'package' must be an array of tables")

    return [_record_from_table(index, package) for index, package in enumerate(packages)]


def read_text_file(file_path: str) -> str:
    """
    Read a UTF-8 text file with size validation.

    Raises:
        NotFoundError: If the file does not exist or is not a regular file
        NotTextualError: If the content is not valid UTF-8
        ParseError: If the file exceeds the configured size limit
    """
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError("File does not exist", path=str(path))

    max_file_size = get_config().security.max_file_size_bytes
    try:
        file_size = path.stat().st_size
        if file_size > max_file_size:
            raise ParseError(
                f"File too large: {file_size} bytes (max: {max_file_size})",
                path=str(path),
            )
        data = path.read_bytes()
    except PermissionError:
        raise NotFoundError("Permission denied reading file", path=str(path))
    except OSError as e:
        raise NotFoundError(f"Error reading file: {e}", path=str(path))

    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        raise NotTextualError("File contains invalid UTF-8 characters", path=str(path))


def parse_lockfile(file_path: str) -> List[DependencyRecord]:
    """
    Parse a Cargo.lock file from disk.

    Args:
        file_path: Path to the lockfile

    Returns:
        List[DependencyRecord]: Parsed records

    Raises:
        NotFoundError, NotTextualError, ParseError
    """
    content = read_text_file(file_path)
    try:
        return parse_lockfile_text(content)
    except ParseError as e:
        raise e.with_context(path=str(file_path))


def dump_lockfile(
    records: Iterable[DependencyRecord], version: int = DEFAULT_LOCKFILE_VERSION
) -> str:
    """
    Serialize records as Cargo.lock text.

    Only name, version and source are written; the output parses back to the
    same records.
    """
    packages: List[Dict[str, str]] = []
    for record in sorted(records):
        package = {"name": record.name, "version": str(record.version)}
        if record.source is not None:
            package["source"] = str(record.source)
        packages.append(package)

    header = "# This file is automatically @generated by Cargo.\n# It is not intended for manual editing.\n"
    return header + toml.dumps({"version": version, "package": packages})
