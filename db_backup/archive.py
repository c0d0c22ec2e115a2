"""Producing, checking and removing local dump archives."""
from __future__ import annotations

import gzip
import logging
import subprocess
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

from .utils import (
    connection_secrets,
    describe_connection,
    ensure_directory,
    format_size,
    mask_sensitive,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_DUMP_COMMAND: Tuple[str, ...] = ("pg_dump", "--format=tar")
DEFAULT_COMPRESS_COMMAND: Tuple[str, ...] = ("gzip", "-c")


class BackupError(Exception):
    """Base class for failures of a single backup stage."""


class DumpError(BackupError):
    """Raised when the dump toolchain exits with a non-zero status."""

    def __init__(self, exit_status: int, stderr: str) -> None:
        self.exit_status = exit_status
        self.stderr = stderr
        message = f"dump exited with status {exit_status}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class InvalidArchiveError(BackupError):
    """Raised when an archive is empty or cannot be decompressed."""


class CleanupError(BackupError):
    """Raised when the local archive cannot be removed."""


@dataclass
class ArchiveInfo:
    path: Path
    size_bytes: int

    @property
    def human_size(self) -> str:
        return format_size(self.size_bytes)


@dataclass
class Archiver:
    """Run the dump tool piped through the compressor into a local file."""

    dump_command: Sequence[str] = DEFAULT_DUMP_COMMAND
    compress_command: Sequence[str] = DEFAULT_COMPRESS_COMMAND
    dump_options: Sequence[str] = field(default_factory=tuple)
    logger: logging.Logger = LOGGER

    def build_command(self, connection_string: str) -> list:
        return [*self.dump_command, f"--dbname={connection_string}", *self.dump_options]

    def dump(
        self,
        local_path: Path,
        connection_string: str,
        on_dumped: Optional[Callable[[], None]] = None,
    ) -> ArchiveInfo:
        """Write the compressed dump to *local_path* and validate it.

        *on_dumped* is called once the toolchain exited cleanly, right before
        the archive is validated.
        """

        local_path = Path(local_path)
        ensure_directory(local_path.parent)
        secrets = connection_secrets(connection_string)

        self.logger.info(
            "Dumping '%s' to '%s'.", describe_connection(connection_string), local_path
        )
        command = self.build_command(connection_string)
        with local_path.open("wb") as target:
            try:
                dump_proc = subprocess.Popen(
                    command, stdout=subprocess.PIPE, stderr=subprocess.PIPE
                )
            except OSError as exc:
                raise DumpError(127, f"cannot start '{command[0]}': {exc}") from exc
            try:
                compress_proc = subprocess.Popen(
                    list(self.compress_command),
                    stdin=dump_proc.stdout,
                    stdout=target,
                    stderr=subprocess.PIPE,
                )
            except OSError as exc:
                dump_proc.kill()
                dump_proc.communicate()
                raise DumpError(127, f"cannot start '{self.compress_command[0]}': {exc}") from exc
            # compressor owns the read end now
            dump_proc.stdout.close()
            dump_stderr = dump_proc.stderr.read()
            dump_proc.stderr.close()
            dump_status = dump_proc.wait()
            _, compress_stderr = compress_proc.communicate()

        stderr = mask_sensitive(dump_stderr.decode("utf-8", "replace").strip(), secrets)
        if dump_status != 0:
            raise DumpError(dump_status, stderr)
        if compress_proc.returncode != 0:
            raise DumpError(
                compress_proc.returncode, compress_stderr.decode("utf-8", "replace").strip()
            )

        if stderr:
            self.logger.warning("Dump reported diagnostics: %s", stderr)
            self.logger.warning(
                "Potential warnings detected; make sure '%s' contains all needed data.",
                local_path.name,
            )
        if on_dumped is not None:
            on_dumped()
        size = validate_archive(local_path, logger=self.logger)
        self.logger.info("Database dumped to '%s'.", local_path)
        return ArchiveInfo(path=local_path, size_bytes=size)


# ---------------------------------------------------------------------------
def validate_archive(local_path: Path, logger: Optional[logging.Logger] = None) -> int:
    """Check that *local_path* decompresses to at least one byte.

    Returns the on-disk size of the archive.
    """

    logger = logger or LOGGER
    local_path = Path(local_path)
    try:
        with gzip.open(local_path, "rb") as archive:
            head = archive.read(1)
    except (OSError, EOFError, zlib.error) as exc:
        raise InvalidArchiveError(f"Archive '{local_path.name}' is corrupt: {exc}") from exc
    if len(head) != 1:
        raise InvalidArchiveError(
            f"Archive '{local_path.name}' is empty; check the dump output above."
        )

    size = local_path.stat().st_size
    logger.info("Archive '%s' is valid, size %s.", local_path.name, format_size(size))
    return size


def remove_archive(local_path: Path, logger: Optional[logging.Logger] = None) -> None:
    """Delete the local archive and its service directory if that is left empty."""

    logger = logger or LOGGER
    local_path = Path(local_path)
    logger.info("Removing local archive '%s'.", local_path)
    try:
        local_path.unlink()
    except OSError as exc:
        raise CleanupError(f"Cannot remove '{local_path}': {exc}") from exc
    try:
        local_path.parent.rmdir()
    except OSError:
        logger.debug("Directory '%s' kept.", local_path.parent)


__all__ = [
    "ArchiveInfo",
    "Archiver",
    "BackupError",
    "CleanupError",
    "DumpError",
    "InvalidArchiveError",
    "remove_archive",
    "validate_archive",
]
