"""Core backup pipeline: dump, validate, upload and clean up every service."""
from __future__ import annotations

import enum
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence

from .archive import Archiver, BackupError, CleanupError, remove_archive
from .config import AppConfig
from .storage import S3Uploader
from .utils import ARCHIVE_SUFFIX, describe_connection, destination_key, slugify

LOGGER = logging.getLogger(__name__)


class JobState(enum.Enum):
    PENDING = "pending"
    DUMPING = "dumping"
    VALIDATING = "validating"
    UPLOADING = "uploading"
    CLEANING_UP = "cleaning_up"
    DONE = "done"


class JobOutcome(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


_ORDER = list(JobState)


@dataclass
class BackupJob:
    """One service's backup task for a run."""

    index: int
    service_name: str
    connection_string: str = field(repr=False)
    destination_key: str
    local_path: Path
    state: JobState = JobState.PENDING
    history: List[JobState] = field(default_factory=lambda: [JobState.PENDING])
    outcome: Optional[JobOutcome] = None
    error: Optional[BaseException] = None
    cleanup_error: Optional[CleanupError] = None

    @property
    def masked_source(self) -> str:
        return describe_connection(self.connection_string)

    def advance(self, state: JobState) -> None:
        if _ORDER.index(state) <= _ORDER.index(self.state):
            raise RuntimeError(
                f"Job '{self.service_name}' cannot move from {self.state.value} to {state.value}."
            )
        self.state = state
        self.history.append(state)

    def fail(self, exc: BaseException) -> None:
        # the first failure decides the outcome
        if self.error is None:
            self.error = exc


@dataclass
class RunContext:
    run_date: date
    jobs: List[BackupJob]

    @classmethod
    def create(
        cls,
        config: AppConfig,
        work_dir: Path,
        run_date: Optional[date] = None,
        only: Optional[Sequence[str]] = None,
    ) -> "RunContext":
        run_date = run_date or date.today()
        names_filter = {name.lower() for name in only} if only else None
        jobs = []
        archive_name = f"{run_date.strftime('%Y%m%d')}{ARCHIVE_SUFFIX}"
        for index, service in enumerate(config.services):
            if names_filter and service.name.lower() not in names_filter:
                continue
            # one path segment per service, whatever the name contains
            local_path = Path(work_dir) / slugify(service.name) / archive_name
            jobs.append(
                BackupJob(
                    index=index,
                    service_name=service.name,
                    connection_string=service.connection_string,
                    destination_key=destination_key(
                        service.name, run_date, prefix=config.storage.subfolder
                    ),
                    local_path=local_path,
                )
            )
        return cls(run_date=run_date, jobs=jobs)


@dataclass
class RunSummary:
    run_date: date
    jobs: List[BackupJob]

    @property
    def succeeded(self) -> List[BackupJob]:
        return [job for job in self.jobs if job.outcome is JobOutcome.SUCCESS]

    @property
    def failed(self) -> List[BackupJob]:
        return [job for job in self.jobs if job.outcome is not JobOutcome.SUCCESS]

    @property
    def ok(self) -> bool:
        return bool(self.jobs) and not self.failed

    def render(self) -> str:
        lines = [f"Backup run {self.run_date.isoformat()}:"]
        for job in self.jobs:
            outcome = job.outcome.value if job.outcome else "not run"
            line = f"  {job.service_name}: {outcome}"
            reason = job.error or job.cleanup_error
            if reason is not None:
                line += f" ({reason})"
            lines.append(line)
        lines.append(f"{len(self.succeeded)} succeeded, {len(self.failed)} failed.")
        return "\n".join(lines)


@dataclass
class BackupRunner:
    config: AppConfig
    uploader: S3Uploader
    archiver: Optional[Archiver] = None
    work_dir: Optional[Path] = None
    logger: logging.Logger = LOGGER

    def __post_init__(self) -> None:
        if self.archiver is None:
            self.archiver = Archiver(dump_options=self.config.dump_options)
        if self.work_dir is None:
            self.work_dir = Path(tempfile.gettempdir())

    def run(self, only: Optional[Sequence[str]] = None, run_date: Optional[date] = None) -> RunSummary:
        """Back up every configured service, one after another.

        Parameters
        ----------
        only:
            Optional list of service names to process. When ``None`` all
            services from the configuration are processed.
        run_date:
            Date used for every destination key of the run; today by default.
        """

        context = RunContext.create(self.config, self.work_dir, run_date=run_date, only=only)
        self.logger.info("Starting backup of %d service(s).", len(context.jobs))
        for job in context.jobs:
            self.run_job(job)
        summary = RunSummary(run_date=context.run_date, jobs=context.jobs)
        self.logger.info(
            "Backup run finished: %d succeeded, %d failed.",
            len(summary.succeeded),
            len(summary.failed),
        )
        return summary

    # ------------------------------------------------------------------
    def run_job(self, job: BackupJob) -> BackupJob:
        self.logger.info("Starting backup of '%s' (%s).", job.service_name, job.masked_source)
        try:
            job.advance(JobState.DUMPING)
            self.archiver.dump(
                job.local_path,
                job.connection_string,
                on_dumped=lambda: job.advance(JobState.VALIDATING),
            )
            job.advance(JobState.UPLOADING)
            self.uploader.upload(job.destination_key, job.local_path)
        except BackupError as exc:
            self.logger.error(
                "Backup of '%s' failed while %s: %s", job.service_name, job.state.value, exc
            )
            job.fail(exc)
        except Exception as exc:  # pragma: no cover - runtime safety
            self.logger.exception("Unexpected error while backing up '%s': %s", job.service_name, exc)
            job.fail(exc)
        finally:
            self._clean_up(job)

        job.outcome = JobOutcome.FAILED if job.error or job.cleanup_error else JobOutcome.SUCCESS
        job.advance(JobState.DONE)
        if job.outcome is JobOutcome.SUCCESS:
            self.logger.info("Backup of '%s' complete.", job.service_name)
        return job

    # ------------------------------------------------------------------
    def _clean_up(self, job: BackupJob) -> None:
        job.advance(JobState.CLEANING_UP)
        try:
            remove_archive(job.local_path, logger=self.logger)
        except CleanupError as exc:
            job.cleanup_error = exc
            if job.error is None:
                self.logger.error("Local archive of '%s' was not removed: %s", job.service_name, exc)
            else:
                self.logger.warning(
                    "Local archive of '%s' was not removed after an earlier failure: %s",
                    job.service_name,
                    exc,
                )


__all__ = [
    "BackupJob",
    "BackupRunner",
    "JobOutcome",
    "JobState",
    "RunContext",
    "RunSummary",
]
