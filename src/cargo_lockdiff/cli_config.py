"""
Configuration management for cargo-lockdiff.

Provides defaults for lockfile location, registry access, package resolution
and logging, overridable from a config file and from the environment.
"""

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import toml
from rich.console import Console

console = Console(stderr=True)

ENV_PREFIX = "CARGO_LOCKDIFF_"


@dataclass
class DiffConfig:
    """Defaults for the comparison itself."""

    lockfile_path: str = "Cargo.lock"
    repo_path: str = "."
    changelog_file: str = "CHANGELOG.md"


@dataclass
class SecurityConfig:
    """Size limits for files read from disk or downloaded."""

    max_file_size_mb: int = 10
    max_crate_size_mb: int = 50

    @property
    def max_file_size_bytes(self) -> int:
        """Convert MB to bytes for internal use."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def max_crate_size_bytes(self) -> int:
        return self.max_crate_size_mb * 1024 * 1024


@dataclass
class NetworkConfig:
    """Network and registry configuration."""

    user_agent: str = "cargo-lockdiff/0.3.0 (https://github.com/cargo-lockdiff)"
    crates_download_url: str = "https://static.crates.io/crates"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class ResolverConfig:
    """How dependency records are mapped to package sources."""

    cargo_home: Optional[str] = None
    use_local_registry_cache: bool = True
    allow_git_clone: bool = True

    @property
    def cargo_home_path(self) -> Path:
        if self.cargo_home:
            return Path(self.cargo_home).expanduser()
        env_home = os.environ.get("CARGO_HOME")
        if env_home:
            return Path(env_home).expanduser()
        return Path.home() / ".cargo"


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    enable_json: bool = True


@dataclass
class LockDiffConfig:
    """Main configuration containing all subsections."""

    diff: DiffConfig = field(default_factory=DiffConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
SECTION_NAMES = ("diff", "security", "network", "resolver", "logging")

# Global configuration instance
_global_config: Optional[LockDiffConfig] = None


def _expected_types(default: Any) -> Tuple[Tuple[type, ...], str]:
    if default is None:
        return (str, type(None)), "a string"
    if isinstance(default, bool):
        return (bool,), "a boolean"
    if isinstance(default, float):
        return (int, float), "a number"
    if isinstance(default, int):
        return (int,), "an integer"
    return (str,), "a string"


def _type_errors(config: LockDiffConfig) -> List[str]:
    """Report settings whose type differs from the default's."""
    errors = []
    for section_name in SECTION_NAMES:
        section = getattr(config, section_name)
        defaults = type(section)()
        for section_field in fields(section):
            value = getattr(section, section_field.name)
            expected, label = _expected_types(getattr(defaults, section_field.name))
            # bool is an int subclass but never a valid number
            if (isinstance(value, bool) and bool not in expected) or not isinstance(value, expected):
                errors.append(
                    f"{section_name}.{section_field.name} must be {label}, "
                    f"got {type(value).__name__}"
                )
    return errors


def validate_config_values(config: LockDiffConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = _type_errors(config)
    # range checks assume the types are right
    mistyped = {error.split(".", 1)[0] for error in errors}

    if "diff" not in mistyped:
        if not config.diff.lockfile_path:
            errors.append("diff.lockfile_path must not be empty")
        if not config.diff.changelog_file:
            errors.append("diff.changelog_file must not be empty")

    if "security" not in mistyped:
        if config.security.max_file_size_mb <= 0:
            errors.append("security.max_file_size_mb must be positive")
        if config.security.max_crate_size_mb <= 0:
            errors.append("security.max_crate_size_mb must be positive")

    if "network" not in mistyped:
        if config.network.connect_timeout <= 0:
            errors.append("network.connect_timeout must be positive")
        if config.network.read_timeout <= 0:
            errors.append("network.read_timeout must be positive")
        if not config.network.crates_download_url.startswith(("https://", "http://")):
            errors.append("network.crates_download_url must be an http(s) URL")

    if "logging" not in mistyped and config.logging.log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"logging.log_level must be one of {', '.join(VALID_LOG_LEVELS)}"
        )

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or TOML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() == ".toml":
                return toml.load(f)
            elif config_path.suffix.lower() == ".json":
                return json.load(f)
    except (OSError, ValueError, toml.TomlDecodeError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )

    return None


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".cargo-lockdiff.json",
        Path.cwd() / ".cargo-lockdiff.toml",
        Path.home() / ".config" / "cargo-lockdiff" / "config.json",
        Path.home() / ".config" / "cargo-lockdiff" / "config.toml",
        Path.home() / ".cargo-lockdiff.json",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: LockDiffConfig) -> None:
    """Load ``CARGO_LOCKDIFF_*`` environment variable overrides."""

    def get_env_bool(key: str, default: bool = False) -> bool:
        value = os.environ.get(ENV_PREFIX + key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[ENV_PREFIX + key]) if ENV_PREFIX + key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {ENV_PREFIX + key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[ENV_PREFIX + key]) if ENV_PREFIX + key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {ENV_PREFIX + key}, using default", style="yellow")
            return None

    if lockfile_path := os.environ.get(ENV_PREFIX + "LOCKFILE"):
        config.diff.lockfile_path = lockfile_path
    if changelog_file := os.environ.get(ENV_PREFIX + "CHANGELOG_FILE"):
        config.diff.changelog_file = changelog_file

    if max_file_size := get_env_int("MAX_FILE_SIZE_MB"):
        config.security.max_file_size_mb = max_file_size
    if max_crate_size := get_env_int("MAX_CRATE_SIZE_MB"):
        config.security.max_crate_size_mb = max_crate_size

    if user_agent := os.environ.get(ENV_PREFIX + "USER_AGENT"):
        config.network.user_agent = user_agent
    if download_url := os.environ.get(ENV_PREFIX + "CRATES_DOWNLOAD_URL"):
        config.network.crates_download_url = download_url
    if connect_timeout := get_env_float("CONNECT_TIMEOUT"):
        config.network.connect_timeout = connect_timeout
    if read_timeout := get_env_float("READ_TIMEOUT"):
        config.network.read_timeout = read_timeout

    if cargo_home := os.environ.get(ENV_PREFIX + "CARGO_HOME"):
        config.resolver.cargo_home = cargo_home
    config.resolver.use_local_registry_cache = get_env_bool(
        "USE_LOCAL_REGISTRY_CACHE", config.resolver.use_local_registry_cache
    )
    config.resolver.allow_git_clone = get_env_bool(
        "ALLOW_GIT_CLONE", config.resolver.allow_git_clone
    )

    if log_level := os.environ.get(ENV_PREFIX + "LOG_LEVEL"):
        config.logging.log_level = log_level.upper()
    config.logging.enable_json = get_env_bool("LOG_JSON", config.logging.enable_json)


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def apply_config_data(config: LockDiffConfig, file_config: Dict[str, Any]) -> None:
    """Apply every known section of a loaded config file."""
    for section_name in SECTION_NAMES:
        if section_name in file_config and isinstance(file_config[section_name], dict):
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def load_config() -> LockDiffConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = LockDiffConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = _replace_invalid_sections(config)

    _global_config = config
    return config


def _replace_invalid_sections(config: LockDiffConfig) -> LockDiffConfig:
    """Reset each section that has a validation error to its defaults."""
    defaults = LockDiffConfig()
    for error in validate_config_values(config):
        section_name = error.split(".", 1)[0]
        setattr(config, section_name, getattr(defaults, section_name))
    return config


def get_config() -> LockDiffConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample JSON configuration with every default."""
    return json.dumps(LockDiffConfig().to_dict(), indent=2)
