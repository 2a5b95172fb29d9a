"""
Scheduled scrape runs with persisted run state.

RunStateStore keeps the schedule state (last success, lock, last status), the
live progress snapshot, a cancel flag and a capped run history in one JSON file.
run_jobs_scrape_with_scheduling evaluates the schedule, takes the lock, runs the
scraper with a ScrapeProgressRecorder attached to the lifecycle callbacks, and
records the outcome.
"""

import os
import json
import uuid
import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from crawler.models import JobsScraperRuntimeOptions, RunJobsScraperResult, SourceConfig, SourceLifecycleEvent
from crawler.orchestrator import run_jobs_scraper
from crawler.schedule import (
    SKIP_LOCKED,
    TRIGGER_MANUAL,
    ScheduleSettings,
    create_scrape_lock_until,
    evaluate_jobs_scrape_schedule,
    get_next_jobs_scrape_due_at,
    parse_boolean,
    resolve_schedule_state,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE_PATH = "jobs-scrape-state.json"
HISTORY_MAX_ITEMS = 100
CANCEL_REQUESTED_REASON = "cancel_requested"

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"
STATUS_SKIPPED = "skipped"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _duration_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)


def compute_completion_percent(status: str, processed_sources: int, total_sources: int) -> int:
    """Successful runs are 100; otherwise the processed share, rounded and clamped to 0..100."""
    if status == STATUS_SUCCESS:
        return 100
    if total_sources <= 0:
        return 0 if status == STATUS_FAILED else 100
    return max(0, min(100, round(processed_sources / total_sources * 100)))


@dataclass
class ScrapeProgressSnapshot:
    run_id: str
    trigger: str
    state: str
    started_at: str
    updated_at: str
    finished_at: Optional[str] = None
    total_sources: int = 0
    processed_sources: int = 0
    current_source: Optional[str] = None
    last_completed_source: Optional[str] = None
    lookback_days: Optional[int] = None
    cancel_requested: bool = False
    inserted: Optional[int] = None
    updated: Optional[int] = None
    skipped_duplicates: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScrapeHistoryEntry:
    run_id: str
    trigger: str
    status: str
    started_at: str
    finished_at: str
    duration_ms: int
    completion_percent: int
    processed_sources: int = 0
    total_sources: int = 0
    inserted: int = 0
    updated: int = 0
    skipped_duplicates: int = 0
    skip_reason: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ScrapeHistoryEntry"]:
        """Entries missing an id, trigger, known status or timestamps are dropped."""
        if not isinstance(data, dict):
            return None
        required = ("run_id", "trigger", "status", "started_at", "finished_at")
        if any(not data.get(name) for name in required):
            return None
        if data["status"] not in (STATUS_SUCCESS, STATUS_FAILED, STATUS_CANCELLED, STATUS_SKIPPED):
            return None
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        known.setdefault("duration_ms", 0)
        known.setdefault("completion_percent", 0)
        return cls(**known)


@dataclass
class SchedulingResult:
    ok: bool
    trigger: str
    skipped: bool
    skip_reason: Optional[str]
    next_due_at: Optional[datetime]
    settings: ScheduleSettings
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    run_result: Optional[RunJobsScraperResult] = None
    error_message: Optional[str] = None


class RunStateStore:
    """JSON-file store for schedule state, progress, cancel flag and run history."""

    def __init__(self, path: Optional[str] = None):
        """
        Initialize the store.

        Args:
            path: State file (default: JOBS_SCRAPE_STATE_PATH or 'jobs-scrape-state.json')
        """
        self.path = Path(path or os.getenv("JOBS_SCRAPE_STATE_PATH", DEFAULT_STATE_PATH))

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"[run_state] Ignoring corrupt state file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def update(self, **values):
        """Merge values into the state file; a None value removes the key."""
        data = self.load()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, self.path)

    def get_schedule_state(self):
        data = self.load()
        return resolve_schedule_state(
            last_success_at=data.get("last_success_at"),
            lock_until=data.get("lock_until"),
            last_run_status=data.get("last_run_status"),
            last_skip_reason=data.get("last_skip_reason"),
        )

    def get_progress(self) -> Optional[ScrapeProgressSnapshot]:
        raw = self.load().get("progress")
        if not isinstance(raw, dict) or not raw.get("run_id"):
            return None
        known = {name: raw[name] for name in ScrapeProgressSnapshot.__dataclass_fields__ if name in raw}
        try:
            return ScrapeProgressSnapshot(**known)
        except TypeError:
            return None

    def set_progress(self, snapshot: ScrapeProgressSnapshot):
        self.update(progress=snapshot.to_dict())

    def get_history(self, limit: int = 20) -> List[ScrapeHistoryEntry]:
        raw = self.load().get("history")
        if not isinstance(raw, list):
            return []
        entries = [entry for entry in (ScrapeHistoryEntry.from_dict(item) for item in raw) if entry]
        return entries[:max(1, min(HISTORY_MAX_ITEMS, limit))]

    def append_history(self, entry: ScrapeHistoryEntry):
        """Newest first; an entry with the same run_id is replaced; capped at HISTORY_MAX_ITEMS."""
        current = [item for item in self.get_history(HISTORY_MAX_ITEMS) if item.run_id != entry.run_id]
        history = [entry] + current
        self.update(history=[item.to_dict() for item in history[:HISTORY_MAX_ITEMS]])

    def is_cancel_requested(self) -> bool:
        return parse_boolean(self.load().get("cancel_requested"), False)

    def request_cancel(self):
        self.update(cancel_requested=True)
        logger.info("[run_state] Cancellation requested")


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ScrapeProgressRecorder:
    """
    Mirrors a running scrape into the store's progress snapshot.

    Its on_source_start, on_source_complete and should_cancel plug into
    JobsScraperRuntimeOptions; the caller's own callbacks still run afterwards.
    """

    def __init__(
        self,
        store: RunStateStore,
        snapshot: ScrapeProgressSnapshot,
        clock: Callable[[], datetime] = _utcnow,
        base_options: Optional[JobsScraperRuntimeOptions] = None,
    ):
        self.store = store
        self.snapshot = snapshot
        self.clock = clock
        self.base_options = base_options or JobsScraperRuntimeOptions()

    async def update(self, **changes):
        self.snapshot = replace(self.snapshot, updated_at=_iso(self.clock()), **changes)
        try:
            await asyncio.to_thread(self.store.set_progress, self.snapshot)
        except OSError as e:
            logger.warning(f"[run_state] Could not write progress: {e}")

    async def on_source_start(self, event: SourceLifecycleEvent):
        await self.update(
            current_source=event.source.name,
            processed_sources=event.source_index,
            message=f"Processing {event.source.name} ({event.source_index + 1}/{event.total_sources})",
        )
        if self.base_options.on_source_start is not None:
            await _resolve(self.base_options.on_source_start(event))

    async def on_source_complete(self, event: SourceLifecycleEvent):
        await self.update(
            current_source=None,
            last_completed_source=event.source.name,
            processed_sources=event.source_index + 1,
            message=f"Completed {event.source.name} ({event.source_index + 1}/{event.total_sources})",
        )
        if self.base_options.on_source_complete is not None:
            await _resolve(self.base_options.on_source_complete(event))

    async def should_cancel(self) -> bool:
        cancel_requested = await asyncio.to_thread(self.store.is_cancel_requested)
        if self.base_options.should_cancel is not None:
            cancel_requested = cancel_requested or bool(await _resolve(self.base_options.should_cancel()))
        if cancel_requested != self.snapshot.cancel_requested:
            message = (
                "Cancellation requested. Waiting for current source to finish."
                if cancel_requested else self.snapshot.message
            )
            await self.update(cancel_requested=cancel_requested, message=message)
        return cancel_requested

    def runtime_options(self) -> JobsScraperRuntimeOptions:
        return JobsScraperRuntimeOptions(
            lookback_days=self.base_options.lookback_days,
            should_cancel=self.should_cancel,
            on_source_start=self.on_source_start,
            on_source_complete=self.on_source_complete,
        )


async def run_jobs_scrape_with_scheduling(
    sources: List[SourceConfig],
    trigger: str,
    *,
    store: Optional[RunStateStore] = None,
    schedule_settings: Optional[ScheduleSettings] = None,
    options: Optional[JobsScraperRuntimeOptions] = None,
    ignore_lock: bool = False,
    persist_skips: bool = True,
    run_id: Optional[str] = None,
    clock: Callable[[], datetime] = _utcnow,
    runner: Callable[..., Any] = run_jobs_scraper,
    **run_kwargs,
) -> SchedulingResult:
    """
    Run the scraper if the schedule allows it, recording progress and history.

    Args:
        sources: Sources to scrape
        trigger: "auto" or "manual"
        store: Run state store (default: RunStateStore())
        schedule_settings: Schedule (default: ScheduleSettings.from_env())
        options: Caller's runtime options; their callbacks run after the recorder's
        ignore_lock: Let a manual trigger run through an unexpired lock
        persist_skips: Record last_run_status/last_skip_reason for skipped triggers
        run_id: Identifier for progress and history (default: a new UUID)
        clock: Source of the current time
        runner: Coroutine function with run_jobs_scraper's signature
        **run_kwargs: Passed through to the runner

    Returns:
        SchedulingResult; ok is False when the run raised
    """
    store = store or RunStateStore()
    settings = schedule_settings or ScheduleSettings.from_env()
    options = options or JobsScraperRuntimeOptions()
    run_id = run_id or str(uuid.uuid4())
    started_at = clock()

    state = await asyncio.to_thread(store.get_schedule_state)
    decision = evaluate_jobs_scrape_schedule(trigger, settings, state, started_at)
    forced = trigger == TRIGGER_MANUAL and ignore_lock and decision.skip_reason == SKIP_LOCKED

    if not decision.should_run and not forced:
        finished_at = clock()
        duration_ms = _duration_ms(started_at, finished_at)
        logger.info(
            f"[jobs_scraper] run_skipped trigger={trigger} reason={decision.skip_reason} "
            f"next_due_at={_iso(decision.next_due_at)}"
        )
        if persist_skips:
            await asyncio.to_thread(
                store.update,
                last_run_status=STATUS_SKIPPED,
                last_skip_reason=decision.skip_reason,
                last_run_summary={
                    "trigger": trigger,
                    "skipped": True,
                    "skip_reason": decision.skip_reason,
                    "next_due_at": _iso(decision.next_due_at),
                    "started_at": _iso(started_at),
                    "finished_at": _iso(finished_at),
                    "duration_ms": duration_ms,
                },
            )
        await asyncio.to_thread(store.set_progress, ScrapeProgressSnapshot(
            run_id=run_id,
            trigger=trigger,
            state=STATUS_SKIPPED,
            started_at=_iso(started_at),
            updated_at=_iso(finished_at),
            finished_at=_iso(finished_at),
            lookback_days=options.lookback_days,
            message=decision.skip_reason or "Skipped",
        ))
        await asyncio.to_thread(store.append_history, ScrapeHistoryEntry(
            run_id=run_id,
            trigger=trigger,
            status=STATUS_SKIPPED,
            started_at=_iso(started_at),
            finished_at=_iso(finished_at),
            duration_ms=duration_ms,
            completion_percent=compute_completion_percent(STATUS_SKIPPED, 0, 0),
            skip_reason=decision.skip_reason,
        ))
        return SchedulingResult(
            ok=True,
            trigger=trigger,
            skipped=True,
            skip_reason=decision.skip_reason,
            next_due_at=decision.next_due_at,
            settings=settings,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
        )

    if forced:
        logger.warning(f"[jobs_scraper] Manual run {run_id} ignoring lock held until {_iso(state.lock_until)}")

    total_sources = len(sources)
    await asyncio.to_thread(
        store.update,
        lock_until=_iso(create_scrape_lock_until(started_at)),
        cancel_requested=False,
    )
    recorder = ScrapeProgressRecorder(
        store,
        ScrapeProgressSnapshot(
            run_id=run_id,
            trigger=trigger,
            state="running",
            started_at=_iso(started_at),
            updated_at=_iso(started_at),
            total_sources=total_sources,
            lookback_days=options.lookback_days,
            message="Scrape started",
        ),
        clock=clock,
        base_options=options,
    )
    await recorder.update()
    logger.info(f"[jobs_scraper] run_start run_id={run_id} trigger={trigger} sources={total_sources}")

    try:
        result = await runner(sources, recorder.runtime_options(), **run_kwargs)
    except Exception as e:
        finished_at = clock()
        duration_ms = _duration_ms(started_at, finished_at)
        message = str(e) or e.__class__.__name__
        logger.error(f"[jobs_scraper] run_failed run_id={run_id}: {message}", exc_info=True)
        await asyncio.to_thread(
            store.update,
            last_run_status=STATUS_FAILED,
            last_run_summary={
                "trigger": trigger,
                "skipped": False,
                "started_at": _iso(started_at),
                "finished_at": _iso(finished_at),
                "duration_ms": duration_ms,
                "error": message,
            },
            lock_until=None,
            cancel_requested=False,
        )
        await recorder.update(state=STATUS_FAILED, finished_at=_iso(finished_at), current_source=None, message=message)
        processed = recorder.snapshot.processed_sources
        await asyncio.to_thread(store.append_history, ScrapeHistoryEntry(
            run_id=run_id,
            trigger=trigger,
            status=STATUS_FAILED,
            started_at=_iso(started_at),
            finished_at=_iso(finished_at),
            duration_ms=duration_ms,
            completion_percent=compute_completion_percent(STATUS_FAILED, processed, total_sources),
            processed_sources=processed,
            total_sources=total_sources,
            error_message=message,
        ))
        return SchedulingResult(
            ok=False,
            trigger=trigger,
            skipped=False,
            skip_reason=None,
            next_due_at=None,
            settings=settings,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
            error_message=message,
        )

    finished_at = clock()
    duration_ms = _duration_ms(started_at, finished_at)
    summary = result.summary
    cancelled = summary.cancelled
    status = STATUS_CANCELLED if cancelled else STATUS_SUCCESS
    skip_reason = CANCEL_REQUESTED_REASON if cancelled else None
    skipped_duplicates = result.persisted.skipped_duplicate + summary.total_duplicates_in_run

    state_update = dict(
        last_run_status=status,
        last_skip_reason=skip_reason,
        last_run_summary={
            "trigger": trigger,
            "skipped": False,
            "started_at": _iso(started_at),
            "finished_at": _iso(finished_at),
            "duration_ms": duration_ms,
            "sources_processed": summary.sources_processed,
            "total_sources": summary.total_sources,
            "lookback_days": summary.lookback_days,
            "scraped_after_filters": len(result.jobs),
            "inserted": result.persisted.inserted,
            "updated": result.persisted.updated,
            "skipped_duplicates": skipped_duplicates,
            "cancelled": cancelled,
        },
        lock_until=None,
        cancel_requested=False,
    )
    if not cancelled:
        state_update["last_success_at"] = _iso(finished_at)
    await asyncio.to_thread(store.update, **state_update)

    await recorder.update(
        state=status,
        finished_at=_iso(finished_at),
        current_source=None,
        processed_sources=summary.sources_processed,
        total_sources=summary.total_sources,
        lookback_days=summary.lookback_days,
        inserted=result.persisted.inserted,
        updated=result.persisted.updated,
        skipped_duplicates=skipped_duplicates,
        message="Scrape cancelled" if cancelled else "Scrape completed",
    )
    await asyncio.to_thread(store.append_history, ScrapeHistoryEntry(
        run_id=run_id,
        trigger=trigger,
        status=status,
        started_at=_iso(started_at),
        finished_at=_iso(finished_at),
        duration_ms=duration_ms,
        completion_percent=compute_completion_percent(status, summary.sources_processed, summary.total_sources),
        processed_sources=summary.sources_processed,
        total_sources=summary.total_sources,
        inserted=result.persisted.inserted,
        updated=result.persisted.updated,
        skipped_duplicates=skipped_duplicates,
        skip_reason=skip_reason,
    ))

    next_due_at = get_next_jobs_scrape_due_at(settings, finished_at, finished_at)
    logger.info(
        f"[jobs_scraper] run_recorded run_id={run_id} status={status} duration_ms={duration_ms} "
        f"next_due_at={_iso(next_due_at)}"
    )
    return SchedulingResult(
        ok=True,
        trigger=trigger,
        skipped=False,
        skip_reason=skip_reason,
        next_due_at=next_due_at,
        settings=settings,
        started_at=started_at,
        finished_at=finished_at,
        duration_ms=duration_ms,
        run_result=result,
    )
