"""
Package resolution for dependency records.

Maps a locked ``(name, version, source)`` to an unpacked copy of the package
so its manifest and changelog can be inspected. crates.io and sparse
registries are served from the local Cargo cache or downloaded with httpx;
git sources are cloned with GitPython.
"""

import io
import tarfile
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Union

import git
import httpx
import toml
from httpx import HTTPStatusError, RequestError

from .cli_config import LockDiffConfig, get_config
from .error_handling import (
    ResolutionError,
    log_network_error,
    log_resolution_error,
    sanitize_message,
)
from .models import DependencyRecord, SourceId
from .structured_logging import get_git_logger, get_registry_logger, log_resolution

MANIFEST = "Cargo.toml"
LOCAL_CACHE_PREFIXES = ("index.crates.io-", "github.com-")
SKIPPED_DIRS = {".git", "target"}


@dataclass
class PackageMetadata:
    """Manifest data of one resolved package."""

    name: str
    version: str
    root: Path
    license: Optional[str] = None
    license_file: Optional[str] = None
    authors: List[str] = field(default_factory=list)
    has_build_script: bool = False
    is_proc_macro: bool = False


class PackageResolver(ABC):
    """Maps dependency records to package metadata."""

    @abstractmethod
    def resolve(self, record: DependencyRecord) -> Optional[PackageMetadata]:
        """
        Resolve a record to its package.

        Returns None when the record has no addressable source (workspace
        members, path dependencies).

        Raises:
            ResolutionError: If the source cannot be fetched or read
        """


def _load_manifest(manifest_path: Path) -> Dict[str, Any]:
    try:
        with open(manifest_path, encoding="utf-8") as f:
            return toml.load(f)
    except FileNotFoundError:
        raise ResolutionError(f"No {MANIFEST} in {manifest_path.parent}")
    except (OSError, UnicodeDecodeError, toml.TomlDecodeError) as e:
        raise ResolutionError(f"Cannot read {manifest_path}: {e}")


def _inherit(
    package: Dict[str, Any], key: str, workspace: Optional[Dict[str, Any]]
) -> Any:
    """Look up a package field, following ``{ workspace = true }``."""
    value = package.get(key)
    if isinstance(value, dict) and value.get("workspace") is True:
        if workspace is None or key not in workspace:
            raise ResolutionError(
                f"'{key}' is inherited from a workspace that could not be found"
            )
        return workspace[key]
    return value


def find_workspace_package(root: Path, stop: Optional[Path] = None) -> Optional[Dict[str, Any]]:
    """
    Find the ``[workspace.package]`` table governing a package directory.

    Walks up from ``root`` to ``stop`` (inclusive) and returns the table of the
    first manifest declaring a ``[workspace]``.
    """
    for directory in [root, *root.parents]:
        manifest_path = directory / MANIFEST
        if manifest_path.is_file():
            manifest = _load_manifest(manifest_path)
            if "workspace" in manifest:
                return manifest["workspace"].get("package", {})
        if stop is not None and directory == stop:
            break
    return None


def read_package_metadata(
    root: Path, workspace: Optional[Dict[str, Any]] = None
) -> PackageMetadata:
    """
    Read the metadata of the package whose ``Cargo.toml`` is in ``root``.

    Args:
        root: Package directory
        workspace: ``[workspace.package]`` table used for inherited fields

    Returns:
        PackageMetadata: Parsed metadata

    Raises:
        ResolutionError: If the manifest is missing, unreadable or has no package
    """
    manifest = _load_manifest(root / MANIFEST)
    package = manifest.get("package")
    if not isinstance(package, dict) or "name" not in package:
        raise ResolutionError(f"{root / MANIFEST} has no [package] section")

    build = package.get("build")
    if build is None:
        has_build_script = (root / "build.rs").is_file()
    else:
        has_build_script = build is not False

    lib = manifest.get("lib", {})
    is_proc_macro = bool(lib.get("proc-macro", lib.get("proc_macro", False)))

    authors = _inherit(package, "authors", workspace) or []

    return PackageMetadata(
        name=package["name"],
        version=str(_inherit(package, "version", workspace) or ""),
        root=root,
        license=_inherit(package, "license", workspace),
        license_file=_inherit(package, "license-file", workspace),
        authors=[str(author) for author in authors],
        has_build_script=has_build_script,
        is_proc_macro=is_proc_macro,
    )


def _index_prefix(name: str) -> str:
    if len(name) <= 2:
        return str(len(name))
    if len(name) == 3:
        return f"3/{name[0]}"
    return f"{name[0:2]}/{name[2:4]}"


def expand_download_template(template: str, name: str, version: str) -> str:
    """
    Build a crate download URL from a registry's ``dl`` setting.

    Templates without markers get ``/{crate}/{version}/download`` appended.
    """
    markers = ("{crate}", "{version}", "{prefix}", "{lowerprefix}", "{sha256-checksum}")
    if not any(marker in template for marker in markers):
        return f"{template.rstrip('/')}/{name}/{version}/download"
    if "{sha256-checksum}" in template:
        raise ResolutionError("Registry download URLs that need a checksum are not supported")

    prefix = _index_prefix(name)
    return (
        template.replace("{crate}", name)
        .replace("{version}", version)
        .replace("{prefix}", prefix)
        .replace("{lowerprefix}", prefix.lower())
    )


def extract_crate(data: bytes, destination: Path) -> None:
    """
    Unpack a ``.crate`` archive (gzipped tar) into ``destination``.

    Raises:
        ResolutionError: If the archive is invalid or has entries escaping
            the destination
    """
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            for member in archive.getmembers():
                member_path = PurePosixPath(member.name)
                if member_path.is_absolute() or ".." in member_path.parts:
                    raise ResolutionError(f"Unsafe path in crate archive: {member.name}")

                target = destination.joinpath(*member_path.parts)
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    source = archive.extractfile(member)
                    if source is not None:
                        target.write_bytes(source.read())
                # links and device entries are skipped
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ResolutionError(f"Invalid crate archive: {e}")


class RegistryResolver(PackageResolver):
    """Resolves crates.io and sparse registry packages."""

    def __init__(
        self,
        client: httpx.Client,
        work_dir: Path,
        config: Optional[LockDiffConfig] = None,
    ):
        self.client = client
        self.work_dir = work_dir
        self.config = config or get_config()
        self._download_templates: Dict[str, str] = {}
        self.logger = get_registry_logger()

    def resolve(self, record: DependencyRecord) -> Optional[PackageMetadata]:
        source = record.source
        if source is None or not source.is_registry:
            return None

        if source.is_crates_io and self.config.resolver.use_local_registry_cache:
            cached = self._find_in_local_cache(record)
            if cached is not None:
                log_resolution(record.name, str(record.version), "local-cache", True)
                return read_package_metadata(cached)

        root = self._download(record)
        log_resolution(record.name, str(record.version), "download", True)
        return read_package_metadata(root)

    def _find_in_local_cache(self, record: DependencyRecord) -> Optional[Path]:
        src_dir = self.config.resolver.cargo_home_path / "registry" / "src"
        if not src_dir.is_dir():
            return None

        for candidate in sorted(src_dir.glob(f"*/{record.name}-{record.version}")):
            if candidate.parent.name.startswith(LOCAL_CACHE_PREFIXES) and (
                candidate / MANIFEST
            ).is_file():
                return candidate
        return None

    def download_url(self, record: DependencyRecord) -> str:
        source = record.source
        name, version = record.name, str(record.version)
        if source.is_crates_io:
            base = self.config.network.crates_download_url.rstrip("/")
            return f"{base}/{name}/{name}-{version}.crate"
        if source.kind == "sparse":
            return expand_download_template(self._sparse_template(source), name, version)
        raise ResolutionError(f"Unsupported registry: {source.url}")

    def _sparse_template(self, source: SourceId) -> str:
        index_url = source.url.rstrip("/") + "/"
        if index_url not in self._download_templates:
            config_url = index_url + "config.json"
            try:
                data = self._get(config_url).json()
            except ValueError as e:
                raise ResolutionError(f"Registry config at {config_url} is not valid JSON: {e}")
            dl = data.get("dl") if isinstance(data, dict) else None
            if not isinstance(dl, str) or not dl:
                raise ResolutionError(f"Registry config at {config_url} has no 'dl' entry")
            self._download_templates[index_url] = dl
        return self._download_templates[index_url]

    def _get(self, url: str) -> httpx.Response:
        try:
            response = self.client.get(url)
            response.raise_for_status()
            return response
        except HTTPStatusError as e:
            log_network_error(
                "Registry request failed",
                "registry_clients",
                "_get",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            raise ResolutionError(f"HTTP {e.response.status_code} from {url}")
        except RequestError as e:
            log_network_error(
                "Registry request failed", "registry_clients", "_get", url=url, exception=e
            )
            raise ResolutionError(f"Request to {url} failed: {e}")
        except httpx.InvalidURL as e:
            raise ResolutionError(f"Invalid registry URL {url}: {e}")

    def _download(self, record: DependencyRecord) -> Path:
        url = self.download_url(record)
        max_size = self.config.security.max_crate_size_bytes
        chunks = []
        received = 0
        self.logger.debug("crate_download_started", package_name=record.name, url=url)
        try:
            with self.client.stream("GET", url) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes():
                    received += len(chunk)
                    if received > max_size:
                        raise ResolutionError(
                            f"Crate archive exceeds {max_size} bytes: {url}"
                        )
                    chunks.append(chunk)
        except HTTPStatusError as e:
            log_network_error(
                "Crate download failed",
                "registry_clients",
                "_download",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            raise ResolutionError(f"HTTP {e.response.status_code} downloading {url}")
        except RequestError as e:
            log_network_error(
                "Crate download failed", "registry_clients", "_download", url=url, exception=e
            )
            raise ResolutionError(f"Downloading {url} failed: {e}")
        except httpx.InvalidURL as e:
            raise ResolutionError(f"Invalid download URL {url}: {e}")

        destination = self.work_dir / "registry" / f"{record.name}-{record.version}"
        extract_crate(b"".join(chunks), destination)

        root = destination / f"{record.name}-{record.version}"
        if not (root / MANIFEST).is_file():
            raise ResolutionError(f"Crate archive from {url} has no {MANIFEST}")
        return root


class GitSourceResolver(PackageResolver):
    """Resolves git sources by checking out the locked commit."""

    def __init__(self, work_dir: Path, config: Optional[LockDiffConfig] = None):
        self.work_dir = work_dir
        self.config = config or get_config()
        self._checkouts: Dict[Tuple[str, str], Path] = {}
        self.logger = get_git_logger()

    def resolve(self, record: DependencyRecord) -> Optional[PackageMetadata]:
        source = record.source
        if source is None or not source.is_git:
            return None
        if not source.precise:
            requested = "=".join(source.reference) if source.reference else "default branch"
            raise ResolutionError(
                f"Git source for {record.name} has no locked commit ({requested})"
            )

        checkout = self._checkout(source.repository_url, source.precise)
        metadata = self._find_member(checkout, record)
        log_resolution(record.name, str(record.version), "git", True)
        return metadata

    def _local_checkout(self, commit: str) -> Optional[Path]:
        checkouts = self.config.resolver.cargo_home_path / "git" / "checkouts"
        if not checkouts.is_dir():
            return None
        for candidate in sorted(checkouts.glob(f"*/{commit[:7]}")):
            if candidate.is_dir():
                return candidate
        return None

    def _checkout(self, url: str, commit: str) -> Path:
        key = (url, commit)
        if key in self._checkouts:
            return self._checkouts[key]

        if self.config.resolver.use_local_registry_cache:
            local = self._local_checkout(commit)
            if local is not None:
                self._checkouts[key] = local
                return local

        if not self.config.resolver.allow_git_clone:
            raise ResolutionError(f"Cloning git sources is disabled ({url})")

        destination = self.work_dir / "git" / f"checkout-{len(self._checkouts)}"
        self.logger.debug("git_clone_started", url=sanitize_message(url), commit=commit)
        try:
            repo = git.Repo.clone_from(url, destination, no_checkout=True)
            repo.git.checkout(commit)
        except git.GitCommandError as e:
            raise ResolutionError(f"Cannot check out {commit} from {url}: {e.stderr or e}")

        self._checkouts[key] = destination
        return destination

    def _find_member(self, checkout: Path, record: DependencyRecord) -> PackageMetadata:
        workspace = find_workspace_package(checkout, stop=checkout)
        name_match: Optional[PackageMetadata] = None

        for manifest_path in sorted(checkout.rglob(MANIFEST)):
            relative = manifest_path.relative_to(checkout)
            if SKIPPED_DIRS.intersection(relative.parts):
                continue
            try:
                metadata = read_package_metadata(manifest_path.parent, workspace)
            except ResolutionError as e:
                # virtual manifests and broken members are not candidates
                self.logger.debug(
                    "manifest_skipped", manifest=str(relative), reason=e.message
                )
                continue
            if metadata.name != record.name:
                continue
            if metadata.version == str(record.version):
                return metadata
            if name_match is None:
                name_match = metadata

        if name_match is not None:
            return name_match
        raise ResolutionError(f"No package named {record.name} in {checkout}")


class CargoPackageResolver(PackageResolver):
    """
    Dispatching resolver owning the per-run download and clone directory.

    Use as a context manager; results are memoized for the lifetime of the
    run and the temporary directory is removed on exit.
    """

    def __init__(
        self,
        config: Optional[LockDiffConfig] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.config = config or get_config()
        self._client = client
        self._owns_client = client is None
        self._temp_dir: Optional[tempfile.TemporaryDirectory] = None
        self._resolvers: Dict[str, PackageResolver] = {}
        self._cache: Dict[DependencyRecord, Union[PackageMetadata, ResolutionError, None]] = {}

    def __enter__(self):
        self._temp_dir = tempfile.TemporaryDirectory(prefix="cargo-lockdiff-")
        work_dir = Path(self._temp_dir.name)

        if self._client is None:
            network = self.config.network
            self._client = httpx.Client(
                timeout=httpx.Timeout(network.read_timeout, connect=network.connect_timeout),
                headers={"User-Agent": network.user_agent},
                follow_redirects=True,
            )

        registry = RegistryResolver(self._client, work_dir, self.config)
        self._resolvers = {
            "registry": registry,
            "sparse": registry,
            "git": GitSourceResolver(work_dir, self.config),
        }
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        if self._temp_dir is not None:
            self._temp_dir.cleanup()
            self._temp_dir = None
        self._resolvers = {}
        self._cache.clear()

    def resolve(self, record: DependencyRecord) -> Optional[PackageMetadata]:
        if record in self._cache:
            cached = self._cache[record]
            if isinstance(cached, ResolutionError):
                raise cached
            return cached

        if self._temp_dir is None:
            raise RuntimeError("CargoPackageResolver must be used as a context manager")

        try:
            result = self._dispatch(record)
        except ResolutionError as e:
            log_resolution(record.name, str(record.version), "unknown", False, e.message)
            log_resolution_error(
                f"Cannot resolve {record}",
                "registry_clients",
                "resolve",
                package=str(record),
                source=str(record.source),
                exception=e,
            )
            self._cache[record] = e
            raise

        self._cache[record] = result
        return result

    def _dispatch(self, record: DependencyRecord) -> Optional[PackageMetadata]:
        if record.source is None:
            return None
        resolver = self._resolvers.get(record.source.kind)
        if resolver is None:
            # path sources point into the workspace itself
            return None
        return resolver.resolve(record)
