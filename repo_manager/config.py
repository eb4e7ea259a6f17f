"""Configuration loader for repository manager YAML files."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from .auth import AuthMode
from .auth.passwords import Credential, HashScheme
from .exceptions import ConfigError
from .permissions import Permission, PermissionEntry

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "/etc/repo-manager/config.yaml"
REPOSITORY_TYPES = ("file",)


@dataclass(frozen=True)
class ServerSettings:
    """HTTP listener settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    max_upload_bytes: int = 1024**3

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"invalid port {self.port}")
        if self.max_upload_bytes < 1:
            raise ValueError("max_upload_bytes must be positive")


@dataclass(frozen=True)
class VerifierSettings:
    """Worker pool settings for password verification."""

    max_workers: int = 4
    max_pending: int = 64

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.max_pending < 0:
            raise ValueError("max_pending must not be negative")


@dataclass(frozen=True)
class RepositoryConfig:
    """A configured repository."""

    name: str
    path: str
    permissions: tuple[PermissionEntry, ...] = ()
    type: str = "file"
    follow_symlinks_outside_root: bool = False


@dataclass(frozen=True)
class Config:
    """Complete, immutable process configuration."""

    repositories: tuple[RepositoryConfig, ...] = ()
    users: tuple[Credential, ...] = ()
    server: ServerSettings = field(default_factory=ServerSettings)
    verifier: VerifierSettings = field(default_factory=VerifierSettings)


class ConfigLoader:
    """Loads and validates the repository manager configuration file.

    Unlike per-request failures, every problem found here is fatal: a bad
    file raises ConfigError so startup aborts.
    """

    def __init__(self, config_file: str = DEFAULT_CONFIG_PATH):
        self.config_file = Path(config_file)

    def load(self) -> Config:
        """Load and parse the configuration file."""
        if not self.config_file.exists():
            raise ConfigError(f"Config file does not exist: {self.config_file}")

        try:
            with open(self.config_file) as f:
                content = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read config {self.config_file}: {e}") from e

        config = parse_config(content)
        logger.info(
            "Configuration loaded",
            file=str(self.config_file),
            repository_count=len(config.repositories),
            user_count=len(config.users),
        )
        return config


def parse_config(content: Any) -> Config:
    """Build a Config from the deserialized YAML document."""
    if not isinstance(content, dict):
        raise ConfigError("Config must be a mapping")

    users = tuple(
        _parse_user(user, index)
        for index, user in enumerate(_get_list(content, "users"))
    )
    usernames = [user.username for user in users]
    duplicates = sorted({name for name in usernames if usernames.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate users: {', '.join(duplicates)}")

    repositories = tuple(
        _parse_repository(repo, index)
        for index, repo in enumerate(_get_list(content, "repositories"))
    )
    names = [repo.name for repo in repositories]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate repositories: {', '.join(duplicates)}")

    return Config(
        repositories=repositories,
        users=users,
        server=_parse_section(content, "server", ServerSettings),
        verifier=_parse_section(content, "verifier", VerifierSettings),
    )


def _get_list(content: dict, key: str) -> list:
    value = content.get(key) or []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list")
    return value


def _require(item: dict, key: str, where: str) -> Any:
    value = item.get(key)
    if value is None or value == "":
        raise ConfigError(f"{where}: missing '{key}'")
    return value


def _get_bool(item: dict, key: str, where: str) -> bool:
    value = item.get(key, False)
    if not isinstance(value, bool):
        raise ConfigError(f"{where}: '{key}' must be true or false, got {value!r}")
    return value


def _parse_user(item: Any, index: int) -> Credential:
    where = f"users[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: must be a mapping")

    username = str(_require(item, "username", where))
    password = str(_require(item, "password", where))
    scheme_tag = str(item.get("password_type", HashScheme.BCRYPT.value)).lower()
    try:
        scheme = HashScheme(scheme_tag)
    except ValueError:
        raise ConfigError(f"{where}: unknown password_type '{scheme_tag}'") from None

    try:
        return Credential(username=username, secret=password, scheme=scheme)
    except ValueError as e:
        # Stored secrets are validated here so a bad entry cannot fail later
        raise ConfigError(f"{where} ({username}): {e}") from e


def _parse_permission(item: Any, where: str) -> PermissionEntry:
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: must be a mapping")

    tag = str(_require(item, "permission", where)).lower()
    try:
        permission = Permission(tag)
    except ValueError:
        raise ConfigError(f"{where}: unknown permission '{tag}'") from None

    username = item.get("username")
    try:
        return PermissionEntry(
            permission=permission,
            username=str(username) if username is not None else None,
            anonymous=_get_bool(item, "anonymous", where),
        )
    except ValueError as e:
        raise ConfigError(f"{where}: {e}") from e


def _parse_repository(item: Any, index: int) -> RepositoryConfig:
    where = f"repositories[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: must be a mapping")

    repo_type = str(item.get("type", "file"))
    if repo_type not in REPOSITORY_TYPES:
        raise ConfigError(f"{where}: unsupported repository type '{repo_type}'")

    name = str(_require(item, "name", where))
    if "/" in name:
        raise ConfigError(f"{where}: repository name must not contain '/'")
    path = os.path.normpath(os.path.abspath(str(_require(item, "path", where))))

    permissions = item.get("permissions") or []
    if not isinstance(permissions, list):
        raise ConfigError(f"{where}: 'permissions' must be a list")

    return RepositoryConfig(
        name=name,
        path=path,
        permissions=tuple(
            _parse_permission(entry, f"{where}.permissions[{i}]")
            for i, entry in enumerate(permissions)
        ),
        type=repo_type,
        follow_symlinks_outside_root=_get_bool(
            item, "follow_symlinks_outside_root", where
        ),
    )


def _parse_section(content: dict, key: str, cls: type) -> Any:
    section = content.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping")

    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigError(f"'{key}': unknown settings {', '.join(unknown)}")

    try:
        values = {name: int(value) for name, value in section.items() if name != "host"}
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}': {e}") from e
    if "host" in section:
        values["host"] = str(section["host"])
    try:
        return cls(**values)
    except ValueError as e:
        raise ConfigError(f"'{key}': {e}") from e


def get_auth_mode() -> AuthMode:
    """Authentication mode from AUTH_MODE; anything but 'none' is active."""
    mode = os.getenv("AUTH_MODE", "active").lower()
    if mode == AuthMode.NONE.value:
        return AuthMode.NONE
    return AuthMode.ACTIVE


def get_config_loader(config_file: str | None = None) -> ConfigLoader:
    """Get configured config loader instance."""
    return ConfigLoader(
        config_file or os.getenv("REPO_MANAGER_CONFIG", DEFAULT_CONFIG_PATH)
    )
