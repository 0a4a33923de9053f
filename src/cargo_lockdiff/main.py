import sys
import time
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .cli_config import (
    LockDiffConfig,
    apply_config_data,
    create_sample_config,
    get_config,
    load_config,
    load_config_file,
    validate_config_values,
)
from .diff_engine import diff as diff_snapshots
from .diff_engine import summarize
from .enricher import MetadataEnricher
from .error_handling import (
    ErrorCategory,
    LockDiffError,
    NotFoundError,
    NotTextualError,
    ParseError,
    RevisionError,
    get_error_handler,
    log_parsing_error,
    sanitize_message,
)
from .registry_clients import CargoPackageResolver, PackageResolver
from .reporting import DiffReporter
from .revisions import GitRevisionProvider, RevisionProvider, resolve_comparison
from .snapshot import build_comparison
from .structured_logging import (
    clear_run_context,
    configure_logging,
    log_diff_complete,
    log_diff_start,
)

console = Console(stderr=True)


def _error_category(error: LockDiffError) -> ErrorCategory:
    if isinstance(error, (ParseError, NotTextualError)):
        return ErrorCategory.PARSING
    if isinstance(error, RevisionError):
        return ErrorCategory.REVISION
    if isinstance(error, NotFoundError):
        return ErrorCategory.FILESYSTEM
    return ErrorCategory.RESOLUTION


def _log_fatal(error: LockDiffError) -> None:
    category = _error_category(error)
    if category is ErrorCategory.PARSING:
        log_parsing_error(error.message, "main", "diff", exception=error)
    else:
        get_error_handler().error(category, error.message, "main", "diff", exception=error)


def compare_lockfiles(
    provider: RevisionProvider,
    revspec: Optional[str],
    lockfile_path: str,
    metadata: bool = False,
    changelog: bool = False,
    resolver: Optional[PackageResolver] = None,
    config: Optional[LockDiffConfig] = None,
) -> List[str]:
    """
    Run a full comparison and return the report lines.

    Nothing is printed here, so a fatal error never leaves a partial report.

    Args:
        provider: Repository access
        revspec: Revision expression, or None for HEAD against the working tree
        lockfile_path: Lockfile path relative to the repository root
        metadata: Annotate operations with package metadata findings
        changelog: Annotate updates with changelog additions
        resolver: Package resolver used for annotations; a
            CargoPackageResolver is created when needed and not given
        config: Configuration, defaults to the global one

    Raises:
        RevisionError, NotFoundError, NotTextualError, ParseError
    """
    config = config or get_config()
    start_time = time.time()

    comparison = resolve_comparison(provider, revspec)
    log_diff_start(comparison.old.label, comparison.new.label, lockfile_path)
    old, new = build_comparison(provider, comparison, lockfile_path)
    ops = diff_snapshots(old, new)

    findings = None
    if ops and (metadata or changelog):
        if resolver is not None:
            findings = _annotate(resolver, ops, metadata, changelog, config)
        else:
            with CargoPackageResolver(config) as cargo_resolver:
                findings = _annotate(cargo_resolver, ops, metadata, changelog, config)

    added, removed, updated = summarize(ops)
    log_diff_complete(
        old.record_count,
        new.record_count,
        added,
        removed,
        updated,
        int((time.time() - start_time) * 1000),
    )
    return DiffReporter().render(ops, findings)


def _annotate(resolver, ops, metadata, changelog, config):
    enricher = MetadataEnricher(
        resolver,
        metadata=metadata,
        changelog=changelog,
        changelog_file=config.diff.changelog_file,
    )
    return enricher.annotate_all(ops)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    Cargo-Lockdiff: review dependency changes between Cargo.lock versions.

    Lists added, removed and updated packages, optionally with what changed
    in their metadata and changelogs.
    """
    if version:
        console.print(f"cargo-lockdiff version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("revspec", required=False)
@click.option(
    "--path",
    "-p",
    help="Lockfile path inside the repository (default from config or Cargo.lock)",
)
@click.option(
    "--git-repo",
    "-g",
    type=click.Path(file_okay=False),
    help="Path to the git repository (default from config or .)",
)
@click.option(
    "--metadata",
    "-m",
    is_flag=True,
    help="Report build scripts, proc macros, license and author changes",
)
@click.option(
    "--changelog",
    "-c",
    is_flag=True,
    help="Report lines added to the CHANGELOG of updated packages",
)
@click.option("--verbose", "-v", is_flag=True, help="Emit debug logs on stderr")
def diff(
    revspec: Optional[str],
    path: Optional[str],
    git_repo: Optional[str],
    metadata: bool,
    changelog: bool,
    verbose: bool,
) -> None:
    """
    Show dependency changes between two versions of Cargo.lock.

    REVSPEC is a single commit (compared with its first parent), a range
    A..B, or A...B (compared from the merge base). Without REVSPEC the
    lockfile at HEAD is compared with the working tree.

    Examples:

      cargo-lockdiff diff

      cargo-lockdiff diff HEAD~3..HEAD -m

      cargo-lockdiff diff main...feature -c -p crates/app/Cargo.lock
    """
    config = load_config()
    configure_logging(
        "DEBUG" if verbose else config.logging.log_level, config.logging.enable_json
    )

    lockfile_path = path or config.diff.lockfile_path
    repo_path = git_repo or config.diff.repo_path

    try:
        provider = GitRevisionProvider(repo_path)
        lines = compare_lockfiles(
            provider,
            revspec,
            lockfile_path,
            metadata=metadata,
            changelog=changelog,
            config=config,
        )
    except LockDiffError as e:
        _log_fatal(e)
        console.print(f"❌ Error: {sanitize_message(str(e))}", style="red", markup=False)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n⚠️  Interrupted by user", style="yellow")
        sys.exit(130)
    finally:
        clear_run_context()

    for line in lines:
        print(line)


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".cargo-lockdiff.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        console.print(f"❌ Failed to create config file: {e}", style="red")
        sys.exit(1)

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current = get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    console.print("\n[bold cyan]📄 Diff Settings:[/bold cyan]")
    console.print(f"  Lockfile Path: {current.diff.lockfile_path}")
    console.print(f"  Repository Path: {current.diff.repo_path}")
    console.print(f"  Changelog File: {current.diff.changelog_file}")

    console.print("\n[bold cyan]🔒 Security Settings:[/bold cyan]")
    console.print(f"  Max File Size: {current.security.max_file_size_mb} MB")
    console.print(f"  Max Crate Size: {current.security.max_crate_size_mb} MB")

    console.print("\n[bold cyan]🌐 Network Settings:[/bold cyan]")
    console.print(f"  Crates Download URL: {current.network.crates_download_url}")
    console.print(f"  Connect Timeout: {current.network.connect_timeout}s")
    console.print(f"  Read Timeout: {current.network.read_timeout}s")
    console.print(f"  User Agent: {current.network.user_agent}")

    console.print("\n[bold cyan]📦 Resolver Settings:[/bold cyan]")
    console.print(f"  Cargo Home: {current.resolver.cargo_home_path}")
    console.print(f"  Local Registry Cache: {current.resolver.use_local_registry_cache}")
    console.print(f"  Git Clone Allowed: {current.resolver.allow_git_clone}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current.logging.log_level}")
    console.print(f"  JSON Logs: {current.logging.enable_json}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        console.print(f"❌ Could not load config from {config_file}", style="red")
        sys.exit(1)

    candidate = LockDiffConfig()
    apply_config_data(candidate, config_data)
    errors = validate_config_values(candidate)
    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
