"""Configuration models and loaders for the database backup tool."""
from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

from .utils import resolve_service_name, split_list


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class StorageConfig:
    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    force_path_style: bool = False
    subfolder: Optional[str] = None

    def validate(self) -> None:
        if not self.bucket:
            raise ConfigError("Object storage bucket (AWS_S3_BUCKET) is not set.")
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ConfigError(
                "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must be set together."
            )

    @classmethod
    def from_dict(cls, data: Optional[Mapping]) -> "StorageConfig":
        data = data or {}
        return cls(
            bucket=str(data.get("bucket") or ""),
            region=data.get("region") or None,
            endpoint=data.get("endpoint") or None,
            access_key_id=data.get("access_key_id") or None,
            secret_access_key=data.get("secret_access_key") or None,
            force_path_style=_safe_bool(data.get("force_path_style")),
            subfolder=(data.get("subfolder") or "").strip("/") or None,
        )


@dataclass(frozen=True)
class ServiceConfig:
    name: str
    connection_string: str


@dataclass(frozen=True)
class AppConfig:
    services: Tuple[ServiceConfig, ...]
    storage: StorageConfig
    dump_options: Tuple[str, ...] = ()

    def validate(self) -> None:
        if not self.services:
            raise ConfigError("No databases configured (BACKUP_DATABASE_URLS is empty).")
        for service in self.services:
            if not service.connection_string:
                raise ConfigError(f"Service '{service.name}' has an empty connection string.")
        self.storage.validate()


# Environment variable -> storage field
STORAGE_ENV: Dict[str, str] = {
    "AWS_S3_BUCKET": "bucket",
    "AWS_S3_REGION": "region",
    "AWS_S3_ENDPOINT": "endpoint",
    "AWS_ACCESS_KEY_ID": "access_key_id",
    "AWS_SECRET_ACCESS_KEY": "secret_access_key",
    "AWS_S3_FORCE_PATH_STYLE": "force_path_style",
    "BUCKET_SUBFOLDER": "subfolder",
}


# ---------------------------------------------------------------------------
def build_services(urls: str, names: Optional[str] = None) -> Tuple[ServiceConfig, ...]:
    """Pair comma-separated connection strings with service names by position.

    A missing or blank name falls back to the 1-based position of the URL.
    """

    connection_strings = [url.strip() for url in split_list(urls)]
    service_names = split_list(names or "")
    return tuple(
        ServiceConfig(
            name=resolve_service_name(service_names, index),
            connection_string=url,
        )
        for index, url in enumerate(connection_strings)
        if url
    )


def load_file(path: Path) -> Dict:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' not found.")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse '{path}': {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file '{path}' must contain a mapping.")
    return data


def _services_from_file(data: Mapping) -> Tuple[ServiceConfig, ...]:
    databases = data.get("databases") or []
    if not isinstance(databases, list):
        raise ConfigError("Key 'databases' must be a list.")
    names = []
    urls = []
    for item in databases:
        if not isinstance(item, dict) or not item.get("url"):
            raise ConfigError("Every entry in 'databases' needs a 'url'.")
        names.append(str(item.get("name") or ""))
        urls.append(str(item["url"]))
    return tuple(
        ServiceConfig(name=resolve_service_name(names, index), connection_string=url)
        for index, url in enumerate(urls)
    )


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Build the run configuration once from a YAML file and the environment.

    Environment variables win over values from the file.
    """

    environ = os.environ if environ is None else environ
    data = load_file(path) if path is not None else {}

    services = _services_from_file(data)
    if environ.get("BACKUP_DATABASE_URLS"):
        services = build_services(environ["BACKUP_DATABASE_URLS"], environ.get("SERVICE_NAMES"))

    storage_data = data.get("storage") or {}
    if not isinstance(storage_data, dict):
        raise ConfigError("Key 'storage' must be a mapping.")
    storage_data = dict(storage_data)
    for env_name, key in STORAGE_ENV.items():
        if environ.get(env_name):
            storage_data[key] = environ[env_name]

    dump_options = data.get("dump_options") or []
    if isinstance(dump_options, str):
        dump_options = shlex.split(dump_options)
    elif not isinstance(dump_options, list):
        raise ConfigError("Key 'dump_options' must be a string or a list.")
    if environ.get("BACKUP_OPTIONS"):
        dump_options = shlex.split(environ["BACKUP_OPTIONS"])

    config = AppConfig(
        services=services,
        storage=StorageConfig.from_dict(storage_data),
        dump_options=tuple(str(option) for option in dump_options),
    )
    config.validate()
    return config


# ---------------------------------------------------------------------------
def _safe_bool(value) -> bool:
    if value is None or isinstance(value, bool):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"", "0", "false", "no", "off"}:
        return False
    raise ConfigError(f"Value '{value}' is not a valid boolean.")


__all__ = [
    "AppConfig",
    "ConfigError",
    "ServiceConfig",
    "StorageConfig",
    "STORAGE_ENV",
    "build_services",
    "load_config",
]
