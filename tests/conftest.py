"""Shared fixtures: isolated configuration and throwaway git repositories.

Git repositories are built with GitPython; commits use a fixed actor so no
global git identity is needed.
"""

import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

import git
import pytest

from cargo_lockdiff.cli_config import reset_config
from cargo_lockdiff.error_handling import get_error_handler

CRATES_IO = "registry+https://github.com/rust-lang/crates.io-index"
ACTOR = git.Actor("Lockdiff Tests", "tests@example.com")


def make_lockfile(packages: Iterable[Tuple[str, ...]], version: int = 3) -> str:
    """Render ``(name, version[, source])`` tuples as Cargo.lock text."""
    lines = [
        "# This file is automatically @generated by Cargo.",
        "# It is not intended for manual editing.",
        f"version = {version}",
    ]
    for package in packages:
        lines.append("")
        lines.append("[[package]]")
        lines.append(f'name = "{package[0]}"')
        lines.append(f'version = "{package[1]}"')
        if len(package) > 2 and package[2]:
            lines.append(f'source = "{package[2]}"')
    return "\n".join(lines) + "\n"


class LockRepo:
    """A temporary git repository holding a Cargo.lock history."""

    def __init__(self, path: Path):
        self.path = path
        self.repo = git.Repo.init(str(path))

    def write(self, relpath: str, content) -> Path:
        full = self.path / relpath
        full.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            full.write_bytes(content)
        else:
            full.write_text(content, encoding="utf-8")
        return full

    def commit(self, message: str = "update lockfile", paths: Optional[list] = None) -> str:
        to_add = paths or [
            str(p.relative_to(self.path))
            for p in self.path.rglob("*")
            if p.is_file() and ".git" not in p.relative_to(self.path).parts
        ]
        self.repo.index.add(to_add)
        return self.repo.index.commit(message, author=ACTOR, committer=ACTOR).hexsha

    def commit_lockfile(self, text, path: str = "Cargo.lock", message: str = "update lockfile") -> str:
        self.write(path, text)
        return self.commit(message, [path])

    def create_branch(self, name: str, at: str) -> None:
        self.repo.create_head(name, at)

    def checkout(self, name: str) -> None:
        self.repo.heads[name].checkout(force=True)

    @property
    def head(self) -> str:
        return self.repo.head.commit.hexsha


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep user config files, CARGO_HOME and env overrides out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CARGO_HOME", str(home / ".cargo"))
    monkeypatch.chdir(home)
    for key in list(os.environ):
        if key.startswith("CARGO_LOCKDIFF_"):
            monkeypatch.delenv(key)

    reset_config()
    get_error_handler().reset_stats()
    yield
    reset_config()


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def lock_repo(tmp_path):
    return LockRepo(tmp_path / "repo")


@pytest.fixture
def lockfile_text():
    return make_lockfile


@pytest.fixture
def sample_cargo_lock():
    return make_lockfile(
        [
            ("app", "0.1.0"),
            ("libc", "0.2.150", CRATES_IO),
            ("serde", "1.0.190", CRATES_IO),
            ("syn", "1.0.109", CRATES_IO),
            ("syn", "2.0.39", CRATES_IO),
        ]
    )
