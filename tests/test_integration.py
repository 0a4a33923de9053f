"""
Integration tests for cargo-lockdiff.
Tests complete workflows against real git repositories and mocked registries.
"""

import io
import tarfile

import httpx
import pytest

from cargo_lockdiff.cli_config import LockDiffConfig
from cargo_lockdiff.diff_engine import Add, Remove, Update
from cargo_lockdiff.enricher import (
    Finding,
    FindingKind,
    MetadataEnricher,
    changelog_additions,
)
from cargo_lockdiff.error_handling import (
    NotFoundError,
    NotTextualError,
    ParseError,
    ResolutionError,
    RevisionError,
)
from cargo_lockdiff.main import compare_lockfiles
from cargo_lockdiff.models import DependencyRecord
from cargo_lockdiff.registry_clients import (
    CargoPackageResolver,
    PackageMetadata,
    PackageResolver,
    expand_download_template,
    read_package_metadata,
)
from cargo_lockdiff.reporting import DiffReporter
from cargo_lockdiff.revisions import GitRevisionProvider

from conftest import CRATES_IO, LockRepo, make_lockfile

OLD_LOCK = make_lockfile([("app", "0.1.0"), ("serde", "1.0.0", CRATES_IO)])
NEW_LOCK = make_lockfile(
    [("app", "0.1.0"), ("rand", "0.8.0", CRATES_IO), ("serde", "1.0.1", CRATES_IO)]
)
EXPECTED_REPORT = ["+++ rand 0.8.0", "    serde 1.0.0 -> 1.0.1"]


def rec(name, version, source=CRATES_IO):
    return DependencyRecord.create(name, version, source)


def offline_config() -> LockDiffConfig:
    config = LockDiffConfig()
    config.resolver.use_local_registry_cache = False
    return config


def crate_archive(name: str, version: str, files: dict) -> bytes:
    """Build an in-memory .crate (gzipped tar) with ``name-version/`` entries."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for relpath, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{name}-{version}/{relpath}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def manifest(name, version, extra=""):
    return f'[package]\nname = "{name}"\nversion = "{version}"\n{extra}'


class FakeResolver(PackageResolver):
    """Resolver answering from a dict; exceptions in the dict are raised."""

    def __init__(self, packages):
        self.packages = packages
        self.calls = []

    def resolve(self, record):
        self.calls.append(record)
        result = self.packages.get(record)
        if isinstance(result, Exception):
            raise result
        return result


class TestEndToEndDiff:
    """Test complete workflows: git history -> snapshots -> diff -> report."""

    def test_range(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, "HEAD~1..HEAD", "Cargo.lock") == EXPECTED_REPORT

    def test_single_commit_compares_with_parent(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, "HEAD", "Cargo.lock") == EXPECTED_REPORT

    def test_reverse_range(self, lock_repo):
        first = lock_repo.commit_lockfile(OLD_LOCK)
        second = lock_repo.commit_lockfile(NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, f"{second}..{first}", "Cargo.lock") == [
            "--- rand 0.8.0",
            "    serde 1.0.1 -> 1.0.0",
        ]

    def test_root_commit_has_no_parent(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(RevisionError, match="No parent"):
            compare_lockfiles(provider, "HEAD", "Cargo.lock")

    def test_working_tree(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.write("Cargo.lock", NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, None, "Cargo.lock") == EXPECTED_REPORT

    def test_merge_base_range(self, lock_repo):
        base = lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(make_lockfile([("serde", "1.0.5", CRATES_IO)]))
        main_branch = lock_repo.repo.active_branch.name

        lock_repo.create_branch("feature", base)
        lock_repo.checkout("feature")
        lock_repo.commit_lockfile(NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        report = compare_lockfiles(provider, f"{main_branch}...feature", "Cargo.lock")
        assert report == EXPECTED_REPORT

    def test_nested_lockfile_path(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK, path="crates/app/Cargo.lock")
        lock_repo.commit_lockfile(NEW_LOCK, path="crates/app/Cargo.lock")

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, "HEAD", "crates/app/Cargo.lock") == EXPECTED_REPORT

    def test_identical_lockfiles(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.write("README.md", "docs\n")
        lock_repo.commit("docs", ["README.md"])

        provider = GitRevisionProvider(str(lock_repo.path))
        assert compare_lockfiles(provider, "HEAD", "Cargo.lock") == []

    def test_missing_lockfile_at_old_revision(self, lock_repo):
        lock_repo.write("README.md", "docs\n")
        lock_repo.commit("docs", ["README.md"])
        lock_repo.commit_lockfile(NEW_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(NotFoundError) as exc_info:
            compare_lockfiles(provider, "HEAD", "Cargo.lock")
        assert exc_info.value.side == "old"
        assert "old version" in str(exc_info.value)

    def test_path_is_a_directory(self, lock_repo):
        lock_repo.write("Cargo.lock/inner", "x\n")
        lock_repo.commit("dir")
        lock_repo.write("other", "y\n")
        lock_repo.commit("other", ["other"])

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(NotFoundError, match="Not a git blob"):
            compare_lockfiles(provider, "HEAD", "Cargo.lock")

    def test_invalid_new_lockfile(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile('[[package]]\nname = "serde"\n')

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(ParseError) as exc_info:
            compare_lockfiles(provider, "HEAD", "Cargo.lock")
        assert exc_info.value.side == "new"

    def test_truncated_new_lockfile(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(OLD_LOCK + 'dependencies = [\n "b",\n')

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(ParseError, match="Invalid TOML format") as exc_info:
            compare_lockfiles(provider, "HEAD", "Cargo.lock")
        assert exc_info.value.side == "new"

    def test_non_utf8_lockfile(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(b"\xff\xfe\x00garbage")

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(NotTextualError):
            compare_lockfiles(provider, "HEAD", "Cargo.lock")

    def test_unknown_revision(self, lock_repo):
        lock_repo.commit_lockfile(OLD_LOCK)

        provider = GitRevisionProvider(str(lock_repo.path))
        with pytest.raises(RevisionError, match="Not a git spec"):
            compare_lockfiles(provider, "does-not-exist..HEAD", "Cargo.lock")

    def test_not_a_repository(self, temp_dir):
        with pytest.raises(RevisionError, match="Can't open git repo"):
            GitRevisionProvider(str(temp_dir))

    def test_enrichment_with_injected_resolver(self, lock_repo, temp_dir):
        lock_repo.commit_lockfile(OLD_LOCK)
        lock_repo.commit_lockfile(NEW_LOCK)
        resolver = FakeResolver(
            {
                rec("rand", "0.8.0"): PackageMetadata(
                    "rand", "0.8.0", temp_dir, has_build_script=True
                ),
            }
        )

        provider = GitRevisionProvider(str(lock_repo.path))
        report = compare_lockfiles(
            provider, "HEAD", "Cargo.lock", metadata=True, resolver=resolver
        )
        assert report == [
            "+++ rand 0.8.0",
            "--> Has a build script",
            "    serde 1.0.0 -> 1.0.1",
        ]


class TestMetadataEnricher:
    """Test findings produced for operations."""

    def make_package(self, root, name="widget", version="1.0.0", **kwargs):
        return PackageMetadata(name=name, version=version, root=root, **kwargs)

    def test_remove_has_no_findings(self):
        resolver = FakeResolver({})
        enricher = MetadataEnricher(resolver)

        assert enricher.annotate(Remove(rec("widget", "1.0.0"))) == []
        assert resolver.calls == []

    def test_add_findings(self, temp_dir):
        record = rec("widget", "1.0.0")
        resolver = FakeResolver(
            {
                record: self.make_package(
                    temp_dir, has_build_script=True, is_proc_macro=True
                )
            }
        )

        findings = MetadataEnricher(resolver).annotate(Add(record))
        assert [f.message for f in findings] == ["Has a build script", "Is a proc macro"]

    def test_update_findings_in_order(self, temp_dir):
        old, new = rec("widget", "1.0.0"), rec("widget", "2.0.0")
        resolver = FakeResolver(
            {
                old: self.make_package(
                    temp_dir / "old", license="MIT", authors=["Alice <a@example.com>"]
                ),
                new: self.make_package(
                    temp_dir / "new",
                    version="2.0.0",
                    license="MIT OR Apache-2.0",
                    license_file="LICENSE",
                    authors=["Zed", "Alice <a@example.com>", "Bob"],
                    has_build_script=True,
                    is_proc_macro=True,
                ),
            }
        )

        findings = MetadataEnricher(resolver).annotate(Update(old, new))
        assert [f.message for f in findings] == [
            "Adds a build script",
            "Turns into a proc macro",
            "License changed from MIT to MIT OR Apache-2.0",
            "License file changed from <none> to LICENSE",
            "Additional authors (Bob, Zed)",
        ]

    def test_unchanged_update_has_no_findings(self, temp_dir):
        old, new = rec("widget", "1.0.0"), rec("widget", "1.0.1")
        package = self.make_package(temp_dir, license="MIT", has_build_script=True)
        resolver = FakeResolver({old: package, new: package})

        assert MetadataEnricher(resolver, changelog=True).annotate(Update(old, new)) == []

    def test_changelog_additions(self, temp_dir):
        old_root, new_root = temp_dir / "old", temp_dir / "new"
        old_root.mkdir()
        new_root.mkdir()
        (old_root / "CHANGELOG.md").write_text("# Changelog\n## 1.0.0\n- first\n")
        (new_root / "CHANGELOG.md").write_text(
            "# Changelog\n## 1.1.0\n- faster\n## 1.0.0\n- first\n"
        )
        old, new = rec("widget", "1.0.0"), rec("widget", "1.1.0")
        resolver = FakeResolver(
            {old: self.make_package(old_root), new: self.make_package(new_root)}
        )

        findings = MetadataEnricher(resolver, changelog=True).annotate(Update(old, new))
        assert findings == [
            Finding(
                FindingKind.CHANGELOG_ADDITIONS,
                "Additions to CHANGELOG",
                ("## 1.1.0", "- faster"),
            )
        ]

    def test_changelog_only_mode(self, temp_dir):
        old_root, new_root = temp_dir / "old", temp_dir / "new"
        old_root.mkdir()
        new_root.mkdir()
        (new_root / "CHANGELOG.md").write_text("## 2.0.0\n")
        old, new = rec("widget", "1.0.0"), rec("widget", "2.0.0")
        resolver = FakeResolver(
            {
                old: self.make_package(old_root),
                new: self.make_package(new_root, license="MIT", has_build_script=True),
            }
        )
        enricher = MetadataEnricher(resolver, metadata=False, changelog=True)

        findings = enricher.annotate(Update(old, new))
        assert [f.message for f in findings] == ["Additions to CHANGELOG"]
        assert findings[0].block == ("## 2.0.0",)
        assert enricher.annotate(Add(rec("other", "1.0.0"))) == []

    def test_unreadable_changelog(self, temp_dir):
        old_root, new_root = temp_dir / "old", temp_dir / "new"
        old_root.mkdir()
        (new_root / "CHANGELOG.md").mkdir(parents=True)
        old, new = rec("widget", "1.0.0"), rec("widget", "2.0.0")
        resolver = FakeResolver(
            {old: self.make_package(old_root), new: self.make_package(new_root)}
        )

        findings = MetadataEnricher(resolver, metadata=False, changelog=True).annotate(
            Update(old, new)
        )
        assert [f.kind for f in findings] == [FindingKind.CHANGELOG_UNAVAILABLE]

    def test_unaddressable_source_is_skipped(self):
        record = rec("app", "0.1.0", None)
        resolver = FakeResolver({record: None})

        assert MetadataEnricher(resolver).annotate(Add(record)) == []

    def test_resolution_failure_marker(self):
        old, new = rec("widget", "1.0.0"), rec("widget", "2.0.0")
        resolver = FakeResolver({old: ResolutionError("HTTP 404 from registry")})

        findings = MetadataEnricher(resolver).annotate(Update(old, new))
        assert [f.message for f in findings] == ["Metadata unavailable: HTTP 404 from registry"]

    def test_changelog_additions_keep_new_order(self):
        old = "a\nb\nc\n"
        new = "x\na\ny\nc\nz\n"
        assert changelog_additions(old, new) == ["x", "y", "z"]
        assert changelog_additions(new, new) == []


class TestDiffReporter:
    """Test report rendering."""

    def test_render_with_findings(self):
        add = Add(rec("rand", "0.8.0"))
        update = Update(rec("serde", "1.0.0"), rec("serde", "1.0.1"))
        remove = Remove(rec("old-crate", "0.1.0"))
        findings = {
            update: [
                Finding(FindingKind.CHANGELOG_ADDITIONS, "Additions to CHANGELOG", ("- [fix] x",))
            ]
        }

        assert DiffReporter().render([add, remove, update], findings) == [
            "+++ rand 0.8.0",
            "--- old-crate 0.1.0",
            "    serde 1.0.0 -> 1.0.1",
            "--> Additions to CHANGELOG",
            "- [fix] x",
        ]

    def test_print_report(self):
        stream = io.StringIO()
        DiffReporter(stream).print_report([Add(rec("rand", "0.8.0"))])
        assert stream.getvalue() == "+++ rand 0.8.0\n"


class TestReadPackageMetadata:
    """Test Cargo.toml inspection."""

    def test_plain_package(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(
            manifest("widget", "1.2.3", 'license = "MIT"\nauthors = ["Alice"]\n')
        )

        package = read_package_metadata(temp_dir)
        assert package.name == "widget"
        assert package.version == "1.2.3"
        assert package.license == "MIT"
        assert package.license_file is None
        assert package.authors == ["Alice"]
        assert not package.has_build_script
        assert not package.is_proc_macro

    def test_build_rs_is_detected(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(manifest("widget", "1.0.0"))
        (temp_dir / "build.rs").write_text("fn main() {}\n")

        assert read_package_metadata(temp_dir).has_build_script

    def test_build_disabled(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(manifest("widget", "1.0.0", "build = false\n"))
        (temp_dir / "build.rs").write_text("fn main() {}\n")

        assert not read_package_metadata(temp_dir).has_build_script

    def test_custom_build_path(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(
            manifest("widget", "1.0.0", 'build = "tools/gen.rs"\n')
        )
        assert read_package_metadata(temp_dir).has_build_script

    def test_proc_macro(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(
            manifest("widget-derive", "1.0.0") + "\n[lib]\nproc-macro = true\n"
        )
        assert read_package_metadata(temp_dir).is_proc_macro

    def test_workspace_inheritance(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(
            '[package]\nname = "widget"\nversion = { workspace = true }\n'
            "license = { workspace = true }\n"
        )
        workspace = {"version": "0.4.0", "license": "Apache-2.0"}

        package = read_package_metadata(temp_dir, workspace)
        assert package.version == "0.4.0"
        assert package.license == "Apache-2.0"

    def test_missing_workspace(self, temp_dir):
        (temp_dir / "Cargo.toml").write_text(
            '[package]\nname = "widget"\nversion = "1.0.0"\nlicense = { workspace = true }\n'
        )
        with pytest.raises(ResolutionError, match="inherited"):
            read_package_metadata(temp_dir)

    def test_missing_manifest(self, temp_dir):
        with pytest.raises(ResolutionError):
            read_package_metadata(temp_dir)


class TestRegistryResolution:
    """Test crate downloads against a mocked registry."""

    def make_client(self, routes, calls=None):
        def handler(request):
            if calls is not None:
                calls.append(str(request.url))
            body = routes.get(str(request.url))
            if body is None:
                return httpx.Response(404)
            if isinstance(body, dict):
                return httpx.Response(200, json=body)
            return httpx.Response(200, content=body)

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_download_from_crates_io(self):
        archive = crate_archive(
            "serde",
            "1.0.1",
            {"Cargo.toml": manifest("serde", "1.0.1", 'license = "MIT OR Apache-2.0"\n')},
        )
        calls = []
        client = self.make_client(
            {"https://static.crates.io/crates/serde/serde-1.0.1.crate": archive}, calls
        )

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            package = resolver.resolve(rec("serde", "1.0.1"))
            again = resolver.resolve(rec("serde", "1.0.1"))
            root = package.root
            assert (root / "Cargo.toml").is_file()

        assert package.license == "MIT OR Apache-2.0"
        assert again is package
        assert len(calls) == 1
        assert not root.exists()

    def test_download_failure(self):
        client = self.make_client({})

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            with pytest.raises(ResolutionError, match="404"):
                resolver.resolve(rec("serde", "9.9.9"))

    def test_path_traversal_is_rejected(self):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            data = b"owned"
            info = tarfile.TarInfo("../escape.txt")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
        client = self.make_client(
            {"https://static.crates.io/crates/evil/evil-1.0.0.crate": buffer.getvalue()}
        )

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            with pytest.raises(ResolutionError, match="Unsafe path"):
                resolver.resolve(rec("evil", "1.0.0"))

    def test_local_registry_cache(self, tmp_path):
        cargo_home = tmp_path / "cargo-home"
        cached = cargo_home / "registry" / "src" / "index.crates.io-6f17d22bba15001f" / "serde-1.0.1"
        cached.mkdir(parents=True)
        (cached / "Cargo.toml").write_text(manifest("serde", "1.0.1", 'license = "MIT"\n'))
        config = LockDiffConfig()
        config.resolver.cargo_home = str(cargo_home)
        calls = []

        with CargoPackageResolver(config, client=self.make_client({}, calls)) as resolver:
            package = resolver.resolve(rec("serde", "1.0.1"))

        assert package.root == cached
        assert package.license == "MIT"
        assert calls == []

    def test_alternate_sparse_registry(self):
        source = "sparse+https://registry.example.com/index/"
        archive = crate_archive("widget", "0.2.0", {"Cargo.toml": manifest("widget", "0.2.0")})
        client = self.make_client(
            {
                "https://registry.example.com/index/config.json": {
                    "dl": "https://dl.example.com/{crate}/{version}.crate"
                },
                "https://dl.example.com/widget/0.2.0.crate": archive,
            }
        )

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            package = resolver.resolve(rec("widget", "0.2.0", source))

        assert package.name == "widget"

    def test_sparse_config_is_not_json(self):
        source = "sparse+https://registry.example.com/index/"
        client = self.make_client(
            {"https://registry.example.com/index/config.json": b"<html>not json</html>"}
        )

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            findings = MetadataEnricher(resolver).annotate(Add(rec("widget", "0.2.0", source)))

        assert [f.kind for f in findings] == [FindingKind.METADATA_UNAVAILABLE]
        assert "not valid JSON" in findings[0].message

    def test_malformed_download_url(self):
        source = "sparse+https://registry.example.com/index/"
        client = self.make_client(
            {
                "https://registry.example.com/index/config.json": {
                    "dl": "https://dl.example.com/\x01{crate}"
                }
            }
        )

        with CargoPackageResolver(offline_config(), client=client) as resolver:
            with pytest.raises(ResolutionError, match="Invalid download URL"):
                resolver.resolve(rec("widget", "0.2.0", source))

    def test_unsupported_registry(self):
        source = "registry+https://git.example.com/private-index"
        with CargoPackageResolver(offline_config(), client=self.make_client({})) as resolver:
            with pytest.raises(ResolutionError, match="Unsupported registry"):
                resolver.resolve(rec("widget", "0.2.0", source))

    def test_path_and_workspace_records_resolve_to_none(self):
        with CargoPackageResolver(offline_config(), client=self.make_client({})) as resolver:
            assert resolver.resolve(rec("app", "0.1.0", None)) is None
            assert resolver.resolve(rec("local", "0.1.0", "path+file:///src/local")) is None

    @pytest.mark.parametrize(
        "template, expected",
        [
            ("https://dl.example.com/api/v1/crates", "https://dl.example.com/api/v1/crates/serde/1.0.1/download"),
            ("https://dl.example.com/{prefix}/{crate}-{version}", "https://dl.example.com/se/rd/serde-1.0.1"),
            ("https://dl.example.com/{lowerprefix}/{crate}", "https://dl.example.com/se/rd/serde"),
        ],
    )
    def test_expand_download_template(self, template, expected):
        assert expand_download_template(template, "serde", "1.0.1") == expected

    def test_index_prefixes(self):
        assert expand_download_template("{prefix}", "a", "1.0.0") == "1"
        assert expand_download_template("{prefix}", "ab", "1.0.0") == "2"
        assert expand_download_template("{prefix}", "abc", "1.0.0") == "3/a"


class TestGitSourceResolution:
    """Test resolving git sources from a local repository."""

    @pytest.fixture
    def upstream(self, tmp_path):
        repo = LockRepo(tmp_path / "upstream")
        repo.write(
            "Cargo.toml",
            '[workspace]\nmembers = ["widget", "widget-derive"]\n\n'
            '[workspace.package]\nlicense = "MIT"\nversion = "0.3.0"\n',
        )
        repo.write(
            "widget/Cargo.toml",
            '[package]\nname = "widget"\nversion = { workspace = true }\nlicense = { workspace = true }\n',
        )
        repo.write(
            "widget-derive/Cargo.toml",
            '[package]\nname = "widget-derive"\nversion = "0.3.0"\n\n[lib]\nproc-macro = true\n',
        )
        commit = repo.commit("initial")
        return repo, commit

    def test_resolve_workspace_member(self, upstream):
        repo, commit = upstream
        source = f"git+{repo.path.as_uri()}?branch=main#{commit}"

        with CargoPackageResolver(offline_config()) as resolver:
            widget = resolver.resolve(rec("widget", "0.3.0", source))
            derive = resolver.resolve(rec("widget-derive", "0.3.0", source))

        assert widget.license == "MIT"
        assert widget.version == "0.3.0"
        assert derive.is_proc_macro

    def test_unknown_member(self, upstream):
        repo, commit = upstream
        source = f"git+{repo.path.as_uri()}#{commit}"

        with CargoPackageResolver(offline_config()) as resolver:
            with pytest.raises(ResolutionError, match="No package named"):
                resolver.resolve(rec("gadget", "0.3.0", source))

    def test_source_without_locked_commit(self):
        source = "git+https://github.com/example/widget?branch=main"

        with CargoPackageResolver(offline_config()) as resolver:
            with pytest.raises(ResolutionError, match=r"no locked commit \(branch=main\)"):
                resolver.resolve(rec("widget", "0.3.0", source))

    def test_clone_disabled(self, upstream):
        repo, commit = upstream
        config = offline_config()
        config.resolver.allow_git_clone = False
        source = f"git+{repo.path.as_uri()}#{commit}"

        with CargoPackageResolver(config) as resolver:
            with pytest.raises(ResolutionError, match="disabled"):
                resolver.resolve(rec("widget", "0.3.0", source))
