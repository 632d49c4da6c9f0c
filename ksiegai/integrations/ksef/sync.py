from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session

from ksiegai.business.profiles.models import BusinessProfile
from ksiegai.core.config import Settings, get_settings
from ksiegai.core.database import SessionLocal
from ksiegai.integrations.ksef.errors import KsefError
from ksiegai.integrations.ksef.models import KsefSyncRun
from ksiegai.integrations.ksef.schemas import SUBJECT_TYPES, KsefSyncStats, ProfileSyncResult, SubjectSyncResult
from ksiegai.integrations.ksef.service import KsefService, ksef_service
from ksiegai.metrics import observe_ksef_sync_run
from ksiegai.platform.security.context import AuthContext


logger = logging.getLogger("ksiegai.ksef")
tracer = trace.get_tracer("ksiegai.ksef")

BATCH_PAUSE_SECONDS = 2.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SyncJobConfig:
    interval_minutes: int = 15
    max_concurrent_profiles: int = 3
    retry_attempts: int = 3
    retry_delay_ms: int = 5000
    subject_types: tuple[str, ...] = SUBJECT_TYPES

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SyncJobConfig:
        settings = settings or get_settings()
        return cls(
            interval_minutes=settings.ksef_sync_interval_minutes,
            max_concurrent_profiles=settings.ksef_sync_max_concurrent_profiles,
            retry_attempts=settings.ksef_sync_retry_attempts,
            retry_delay_ms=settings.ksef_sync_retry_delay_ms,
        )


class KsefSyncJob:
    """Periodic pull of received invoices for every KSeF-enabled business profile.

    Profiles are processed in batches of ``max_concurrent_profiles`` on a
    thread pool, each worker with its own database session. A failing subject
    type is retried, then recorded; it never stops the rest of the run.
    """

    def __init__(
        self,
        *,
        config: SyncJobConfig | None = None,
        service: KsefService = ksef_service,
        session_factory: Callable[[], Session] = SessionLocal,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or SyncJobConfig()
        self._service = service
        self._session_factory = session_factory
        self._sleep = sleep
        self._clock = clock
        self._stats = KsefSyncStats()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def get_stats(self) -> KsefSyncStats:
        return self._stats.model_copy(update={"is_running": self.is_running})

    def start(self) -> None:
        if self.is_running:
            logger.info("ksef.sync.already_running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="ksef-sync", daemon=True)
        self._thread.start()
        logger.info("ksef.sync.started", extra={"count": self.config.interval_minutes})

    def stop(self, timeout: float | None = None) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        logger.info("ksef.sync.stopped")

    def run_once(self, *, trigger: str = "scheduled") -> list[ProfileSyncResult]:
        with self._run_lock, tracer.start_as_current_span("ksef.sync.run") as span:
            started_at = self._clock()
            profiles = self._active_profiles()
            span.set_attribute("profiles", len(profiles))

            results: list[ProfileSyncResult] = []
            batch_size = max(1, self.config.max_concurrent_profiles)
            with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="ksef-sync-profile") as pool:
                for start in range(0, len(profiles), batch_size):
                    batch = profiles[start : start + batch_size]
                    results.extend(pool.map(lambda item: self._sync_one(*item), batch))
                    if start + batch_size < len(profiles):
                        self._sleep(BATCH_PAUSE_SECONDS)

            completed_at = self._clock()
            self._update_stats(results, completed_at)
            self._record_run(results, trigger=trigger, started_at=started_at, completed_at=completed_at)

            total = sum(item.invoices_synced for item in results)
            span.set_attribute("invoices_synced", total)
            observe_ksef_sync_run("completed", total)
            logger.info(
                "ksef.sync.run_completed",
                extra={"count": len(results), "status": f"{self._stats.successful_profiles} successful"},
            )
            return results

    def sync_profile_now(self, business_profile_id: uuid.UUID) -> ProfileSyncResult:
        session = self._session_factory()
        try:
            profile = session.get(BusinessProfile, business_profile_id)
            if profile is None:
                raise HTTPException(status_code=404, detail="business profile not found")
            name = profile.name
        finally:
            session.close()

        started_at = self._clock()
        result = self._sync_one(business_profile_id, name)
        self._record_run([result], trigger="manual", started_at=started_at, completed_at=self._clock())
        observe_ksef_sync_run("manual", result.invoices_synced)
        return result

    def _loop(self) -> None:
        interval = self.config.interval_minutes * 60
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("ksef.sync.run_failed")
                observe_ksef_sync_run("failed")
            self._stop_event.wait(interval)

    def _active_profiles(self) -> list[tuple[uuid.UUID, str]]:
        session = self._session_factory()
        try:
            rows = session.execute(
                select(BusinessProfile.id, BusinessProfile.name)
                .where(BusinessProfile.ksef_enabled.is_(True))
                .order_by(BusinessProfile.created_at.asc())
            ).all()
            return [(row[0], row[1]) for row in rows]
        finally:
            session.close()

    def _sync_one(self, business_profile_id: uuid.UUID, profile_name: str) -> ProfileSyncResult:
        started_at = self._clock()
        subjects: list[SubjectSyncResult] = []
        session = self._session_factory()
        try:
            for subject_type in self.config.subject_types:
                subjects.append(self._sync_subject(session, business_profile_id, subject_type))
        except Exception as exc:
            logger.exception(
                "ksef.sync.profile_failed",
                extra={"business_profile_id": str(business_profile_id), "error": str(exc)},
            )
            completed_at = self._clock()
            return ProfileSyncResult(
                business_profile_id=business_profile_id,
                profile_name=profile_name,
                success=False,
                subjects=subjects,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                error=str(exc),
            )
        finally:
            session.close()

        completed_at = self._clock()
        return ProfileSyncResult(
            business_profile_id=business_profile_id,
            profile_name=profile_name,
            success=True,
            subjects=subjects,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
        )

    def _sync_subject(self, session: Session, business_profile_id: uuid.UUID, subject_type: str) -> SubjectSyncResult:
        errors: list[str] = []
        attempts = max(1, self.config.retry_attempts)
        ctx = AuthContext.system(business_profile_id=str(business_profile_id))
        for attempt in range(1, attempts + 1):
            try:
                result = self._service.sync_profile(session, ctx, business_profile_id, subject_type)
                result.errors = errors
                result.attempts = attempt
                return result
            except (KsefError, HTTPException) as exc:
                message = exc.message if isinstance(exc, KsefError) else str(exc.detail)
                errors.append(message)
                logger.warning(
                    "ksef.sync.subject_failed",
                    extra={
                        "business_profile_id": str(business_profile_id),
                        "subject_type": subject_type,
                        "attempt": attempt,
                        "error": message,
                    },
                )
                if not (isinstance(exc, KsefError) and exc.retryable):
                    break
                if attempt < attempts:
                    self._sleep(self.config.retry_delay_ms / 1000)
        return SubjectSyncResult(subject_type=subject_type, invoices_synced=0, errors=errors, attempts=attempt)

    def _update_stats(self, results: list[ProfileSyncResult], completed_at: datetime) -> None:
        self._stats = KsefSyncStats(
            total_profiles=len(results),
            successful_profiles=sum(1 for item in results if item.success),
            failed_profiles=sum(1 for item in results if not item.success),
            total_invoices_synced=sum(item.invoices_synced for item in results),
            last_run_at=completed_at,
            next_run_at=completed_at + timedelta(minutes=self.config.interval_minutes),
        )

    def _record_run(
        self,
        results: list[ProfileSyncResult],
        *,
        trigger: str,
        started_at: datetime,
        completed_at: datetime,
    ) -> None:
        session = self._session_factory()
        try:
            session.add(
                KsefSyncRun(
                    trigger=trigger,
                    started_at=started_at,
                    completed_at=completed_at,
                    duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                    profiles_synced=len(results),
                    profiles_successful=sum(1 for item in results if item.success),
                    profiles_failed=sum(1 for item in results if not item.success),
                    total_invoices_synced=sum(item.invoices_synced for item in results),
                    results=[item.model_dump(mode="json") for item in results],
                )
            )
            session.commit()
        finally:
            session.close()


_job: KsefSyncJob | None = None


def get_sync_job() -> KsefSyncJob:
    global _job
    if _job is None:
        _job = KsefSyncJob(config=SyncJobConfig.from_settings())
    return _job


def reset_sync_job() -> None:
    global _job
    if _job is not None:
        _job.stop()
    _job = None
