"""Helper utilities for the database backup tool."""
from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import parse_qsl, unquote, urlsplit

ARCHIVE_SUFFIX = ".tar.gz"

_SIZE_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated setting, keeping empty positions."""

    if not value:
        return []
    return value.split(",")


def resolve_service_name(names: Sequence[str], index: int) -> str:
    """Return the configured name at *index* or its 1-based position."""

    if index < len(names):
        name = (names[index] or "").strip()
        if name:
            return name
    return str(index + 1)


def destination_key(service_name: str, run_date: date, prefix: Optional[str] = None) -> str:
    key = f"{service_name}/{run_date.strftime('%Y%m%d')}{ARCHIVE_SUFFIX}"
    if prefix:
        return f"{prefix.strip('/')}/{key}"
    return key


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def format_size(size: float) -> str:
    """Human readable byte count, e.g. ``1.5 KB``."""

    if abs(size) < 1024:
        return f"{int(size)} B"
    size = float(size)
    for unit in _SIZE_UNITS[1:-1]:
        size /= 1024
        if abs(size) < 1024:
            return f"{size:.1f} {unit}"
    return f"{size / 1024:.1f} {_SIZE_UNITS[-1]}"


_DSN_PAIR = re.compile(r"(\w+)\s*=\s*('(?:[^'\\]|\\.)*'|\S*)")
_DSN_VISIBLE = ("host", "hostaddr", "port", "dbname")


def describe_connection(value: str) -> str:
    """Credential-free description of a connection string for log messages.

    URIs keep scheme, host, port and path; keyword DSNs keep host, port and
    dbname. User names, passwords and query parameters are dropped.
    """

    value = value.strip()
    if "://" in value:
        parts = urlsplit(value)
        netloc = parts.hostname or ""
        try:
            port = parts.port
        except ValueError:
            port = None
        if port:
            netloc = f"{netloc}:{port}"
        return f"{parts.scheme}://{netloc}{parts.path}"
    pairs = dict((key.lower(), item) for key, item in _DSN_PAIR.findall(value))
    visible = [f"{key}={pairs[key]}" for key in _DSN_VISIBLE if key in pairs]
    return " ".join(visible) or "<connection string>"


def connection_secrets(value: str) -> List[str]:
    """Values that must never appear in output: the whole string and its passwords."""

    secrets = [value]
    if "://" in value:
        parts = urlsplit(value)
        if parts.password:
            secrets.append(parts.password)
            secrets.append(unquote(parts.password))
        secrets.extend(item for key, item in parse_qsl(parts.query) if key.lower() == "password")
    else:
        for key, item in _DSN_PAIR.findall(value):
            if key.lower() == "password":
                secrets.extend([item, item.strip("'")])
    # longest first so a password inside the full string does not break its masking
    return sorted({secret for secret in secrets if secret}, key=len, reverse=True)


def slugify(value: str, fallback: str = "service") -> str:
    """Return a single, filesystem-friendly path segment for *value*."""

    sanitized = re.sub(r"[^0-9A-Za-z_.-]+", "_", value.strip())
    sanitized = re.sub(r"_+", "_", sanitized).strip("._")
    return sanitized or fallback


def mask_sensitive(value: str, secrets: Sequence[str]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***")
    return masked


__all__ = [
    "ARCHIVE_SUFFIX",
    "connection_secrets",
    "describe_connection",
    "destination_key",
    "ensure_directory",
    "format_size",
    "mask_sensitive",
    "resolve_service_name",
    "slugify",
    "split_list",
]
