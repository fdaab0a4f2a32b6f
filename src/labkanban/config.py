"""Board settings stored in the repository's git config."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from git import InvalidGitRepositoryError, NoSuchPathError, Repo

SECTION = "labkanban"

DEFAULTS: dict[str, Any] = {
    "branch": "labkanban",
    "activity": True,
    "revalidate": True,
}


@dataclass(frozen=True)
class Settings:
    """Service settings. Field names are the python-style config keys."""

    branch: str = DEFAULTS["branch"]
    activity: bool = DEFAULTS["activity"]
    revalidate: bool = DEFAULTS["revalidate"]

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known})


def _python_key(git_key: str) -> str:
    """Git config key to its Settings field name."""
    return git_key.replace("-", "_")


def _git_key(python_key: str) -> str:
    """Settings field name to its git config spelling."""
    return python_key.replace("_", "-")


def _coerce(key: str, raw: str) -> Any:
    """Type-coerce a raw config string using the type of its default."""
    default = DEFAULTS.get(key)
    if isinstance(default, bool):
        return raw.lower() in ("true", "yes", "on", "1")
    if isinstance(default, int):
        return int(raw)
    return raw


def is_git_repo(path: str | Path) -> bool:
    """True if path is a git work tree or bare repository."""
    try:
        Repo(path)
        return True
    except (InvalidGitRepositoryError, NoSuchPathError):
        return False


def read_config(repo_path: str | Path) -> dict[str, Any]:
    """Read the [labkanban] section merged over the defaults."""
    values = dict(DEFAULTS)
    reader = Repo(repo_path).config_reader()
    if reader.has_section(SECTION):
        for git_k, raw in reader.items(SECTION):
            key = _python_key(git_k)
            values[key] = _coerce(key, raw)
    return values


def read_settings(repo_path: str | Path) -> Settings:
    return Settings.from_dict(read_config(repo_path))


def write_config_key(repo_path: str | Path, key: str, value: Any) -> None:
    """Write one key to the repository config. key is python-style."""
    writer = Repo(repo_path).config_writer("repository")
    try:
        if isinstance(value, bool):
            writer.set_value(SECTION, _git_key(key), str(value).lower())
        else:
            writer.set_value(SECTION, _git_key(key), str(value))
    finally:
        writer.release()
