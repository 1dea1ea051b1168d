"""
Calendar import jobs.

One job pulls the import feed of one (accommodation, platform) pair through
``Idle -> Fetching -> Parsing -> Reconciling -> Done | Failed``. Jobs are
single-use: a new trigger creates a new job. A job never affects another
pair, and the store is not touched before the whole feed has parsed.
"""
import asyncio
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import ICAL_CANCEL_MISSING, ICAL_USER_AGENT, OBS_ON, SYNC_HISTORY_MAX
from ..context import RequestContext
from ..errors import Cancelled, ParseError, UpstreamError
from ..ical.parser import IcalEvent, parse_calendar
from ..repositories.accommodations_repo import AccommodationsRepo
from ..repositories.bookings_repo import BookingsRepo
from ..repositories.ical_config_repo import IcalConfigRepo
from ..utils.metrics import sync_jobs_total, sync_records_total
from ..utils.schemas import Platform
from ..utils.store import HISTORY_TTL_SECONDS, KeyValueStore

logger = structlog.get_logger(__name__)


class JobState(str, Enum):
    IDLE = "Idle"
    FETCHING = "Fetching"
    PARSING = "Parsing"
    RECONCILING = "Reconciling"
    DONE = "Done"
    FAILED = "Failed"


TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.IDLE: frozenset({JobState.FETCHING, JobState.FAILED}),
    JobState.FETCHING: frozenset({JobState.PARSING, JobState.FAILED}),
    JobState.PARSING: frozenset({JobState.RECONCILING, JobState.FAILED}),
    JobState.RECONCILING: frozenset({JobState.DONE, JobState.FAILED}),
    JobState.DONE: frozenset(),
    JobState.FAILED: frozenset(),
}


class IllegalTransition(RuntimeError):
    pass


@dataclass
class SyncStats:
    events: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    cancelled: int = 0
    skipped_cancelled: int = 0
    removed: int = 0
    duplicates: int = 0


def history_key(accommodation_id: str, platform: Platform) -> str:
    return f"ical:history:{accommodation_id}:{platform.value}"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def unique_by_uid(events: List[IcalEvent]) -> List[IcalEvent]:
    """
    One event per UID, in feed order of first appearance. When a feed
    repeats a UID the earliest stay (by start, then end) is kept.
    """
    kept: Dict[str, IcalEvent] = {}
    for ev in events:
        current = kept.get(ev.uid)
        if current is None or (ev.start_date, ev.end_date) < (current.start_date, current.end_date):
            kept[ev.uid] = ev
    return list(kept.values())


async def fetch_feed(http: httpx.AsyncClient, url: str, ctx: RequestContext) -> str:
    ctx.check()
    try:
        resp = await http.get(url, headers={"User-Agent": ICAL_USER_AGENT}, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise UpstreamError(
            f"calendar feed returned {e.response.status_code}", status_code=e.response.status_code
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"calendar feed unreachable: {e}") from e
    return resp.text


class SyncJob:
    def __init__(
        self,
        accommodation_id: str,
        platform: Platform,
        import_url: str,
        bookings: BookingsRepo,
        http: httpx.AsyncClient,
        store: Optional[KeyValueStore] = None,
        cancel_missing: bool = ICAL_CANCEL_MISSING,
        today: Optional[date] = None,
    ):
        self.accommodation_id = accommodation_id
        self.platform = platform
        self.import_url = import_url
        self.bookings = bookings
        self.http = http
        self.store = store
        self.cancel_missing = cancel_missing
        self.today = today
        self.state = JobState.IDLE
        self.stats = SyncStats()
        self.error: Optional[str] = None
        self.exc: Optional[BaseException] = None
        self.started_at: Optional[str] = None
        self.finished_at: Optional[str] = None

    def _move(self, new: JobState) -> None:
        if new not in TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {new.value}")
        self.state = new

    def result(self) -> Dict[str, Any]:
        return {
            "accommodationId": self.accommodation_id,
            "platform": self.platform.value,
            "state": self.state.value,
            "error": self.error,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            **asdict(self.stats),
        }

    async def run(self, ctx: RequestContext) -> Dict[str, Any]:
        """
        Run the job to a terminal state and return its result.

        Upstream and parse failures end in Failed and are reported in the
        result, not raised. Cancelled and unexpected errors also end in
        Failed, then propagate.
        """
        if self.state != JobState.IDLE:
            raise IllegalTransition(f"job already {self.state.value}")
        log = logger.bind(
            trace_id=ctx.trace_id, accommodation_id=self.accommodation_id, platform=self.platform.value
        )
        self.started_at = _utcnow()
        try:
            self._move(JobState.FETCHING)
            raw = await fetch_feed(self.http, self.import_url, ctx)

            self._move(JobState.PARSING)
            parsed = list(parse_calendar(raw))
            events = unique_by_uid(parsed)
            self.stats.events = len(parsed)
            self.stats.duplicates = len(parsed) - len(events)
            if self.stats.duplicates:
                log.warning("ical_duplicate_uids", dropped=self.stats.duplicates)

            self._move(JobState.RECONCILING)
            for ev in events:
                ctx.check()
                outcome = await asyncio.to_thread(
                    self.bookings.reconcile_imported, self.accommodation_id, self.platform, ev
                )
                setattr(self.stats, outcome, getattr(self.stats, outcome) + 1)
                if OBS_ON:
                    sync_records_total.labels(outcome=outcome).inc()

            if self.cancel_missing:
                ctx.check()
                removed = await asyncio.to_thread(
                    self.bookings.cancel_missing,
                    self.accommodation_id,
                    self.platform,
                    [ev.uid for ev in events],
                    self.today or date.today(),
                )
                self.stats.removed = len(removed)
                if OBS_ON and removed:
                    sync_records_total.labels(outcome="removed").inc(len(removed))

            self._move(JobState.DONE)
            log.info("ical_sync_done", **asdict(self.stats))
        except (UpstreamError, ParseError) as e:
            self._fail(e)
            log.warning("ical_sync_failed", error=self.error)
        except Cancelled as e:
            self._fail(e)
            log.info("ical_sync_cancelled", reason=str(e))
            raise
        except Exception as e:
            self._fail(e)
            log.exception("ical_sync_crashed")
            raise
        finally:
            self.finished_at = _utcnow()
            self._record()
        return self.result()

    def _fail(self, e: BaseException) -> None:
        self.exc = e
        self.error = f"{type(e).__name__}: {e}"
        self._move(JobState.FAILED)

    def _record(self) -> None:
        if OBS_ON:
            sync_jobs_total.labels(state=self.state.value).inc()
        if self.store is not None:
            self.store.append(
                history_key(self.accommodation_id, self.platform),
                self.result(),
                max_len=SYNC_HISTORY_MAX,
                ttl=HISTORY_TTL_SECONDS,
            )


def job_history(store: KeyValueStore, accommodation_id: str, platform: Platform) -> List[Dict[str, Any]]:
    """Finished jobs of one pair, newest first."""
    return store.list(history_key(accommodation_id, platform))


async def sync_all(
    accommodations: AccommodationsRepo,
    configs: IcalConfigRepo,
    bookings: BookingsRepo,
    http: httpx.AsyncClient,
    store: Optional[KeyValueStore],
    ctx: RequestContext,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Run one import job per configured feed. A failing feed never stops the others."""
    synced, errors = 0, 0
    jobs: List[Dict[str, Any]] = []
    for acc in await asyncio.to_thread(accommodations.list_all):
        for cfg in await asyncio.to_thread(configs.list_for_accommodation, acc.id):
            if not cfg.import_url:
                continue
            ctx.check()
            job = SyncJob(acc.id, cfg.platform, cfg.import_url, bookings, http, store, today=today)
            try:
                res = await job.run(ctx)
            except Cancelled:
                raise
            except Exception:
                # logged by the job; the next feed still runs
                res = job.result()
            jobs.append(res)
            if job.state == JobState.DONE:
                synced += 1
            else:
                errors += 1
    logger.info("ical_sync_all_done", trace_id=ctx.trace_id, synced=synced, errors=errors)
    return {"synced": synced, "errors": errors, "jobs": jobs}
