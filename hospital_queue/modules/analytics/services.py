"""
Wait-time and service-time analytics derived from the queue event log.

Durations are re-derived from events plus check-in creation time only, so
they stay correct after finished entries are deleted.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ...errors import ValidationError
from ..checkins.models import CheckIn
from ..queue.models import QueueEntry, QueueEvent, QueueStatus

SLA_OK = "ok"
SLA_WARN = "warn"
SLA_CRITICAL = "critical"

MAX_PAGE_SIZE = 500


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return round(max((end - start).total_seconds(), 0) / 60, 1)


def sla_level(minutes: Optional[float], warn: int, crit: int) -> Optional[str]:
    if minutes is None:
        return None
    if minutes >= crit:
        return SLA_CRITICAL
    if minutes >= warn:
        return SLA_WARN
    return SLA_OK


def _mean_minutes(series: pd.Series) -> Optional[float]:
    series = series.dropna()
    if series.empty:
        return None
    return round(float(series.mean()), 1)


def encode_cursor(created_at: datetime, event_id: int) -> str:
    return f"{created_at.isoformat()}_{event_id}"


def decode_cursor(cursor: str) -> Tuple[datetime, int]:
    try:
        stamp, _, event_id = cursor.rpartition("_")
        return datetime.fromisoformat(stamp), int(event_id)
    except ValueError as exc:
        raise ValidationError("Malformed cursor.", field="cursor") from exc


class QueueAnalytics:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _check_range(start: datetime, end: datetime) -> None:
        if start > end:
            raise ValidationError("Range start must not be after its end.", field="start")

    # --- frames ---

    def _service_starts(self, start: datetime, end: datetime, department: Optional[str]) -> pd.DataFrame:
        """in_service events in range with the check-in time of their arrival."""
        query = (
            self.db.query(
                QueueEvent.queue_entry_id,
                QueueEvent.department,
                QueueEvent.created_at,
                CheckIn.created_at.label("checkin_at"),
            )
            .join(CheckIn, CheckIn.id == QueueEvent.checkin_id)
            .filter(
                QueueEvent.to_status == QueueStatus.IN_SERVICE,
                QueueEvent.created_at >= start,
                QueueEvent.created_at <= end,
            )
        )
        if department is not None:
            query = query.filter(QueueEvent.department == department)
        data = [
            {"entry": r.queue_entry_id, "department": r.department, "started": r.created_at, "checkin": r.checkin_at}
            for r in query.all()
        ]
        df = pd.DataFrame(data, columns=["entry", "department", "started", "checkin"])
        for c in ["started", "checkin"]:
            df[c] = pd.to_datetime(df[c], errors="coerce")
        df["wait_min"] = (df["started"] - df["checkin"]).dt.total_seconds() / 60
        return df

    def _completions(self, start: datetime, end: datetime, department: Optional[str]) -> pd.DataFrame:
        """done events in range paired with the latest earlier in_service event of the same entry."""
        query = self.db.query(
            QueueEvent.queue_entry_id, QueueEvent.department, QueueEvent.created_at
        ).filter(
            QueueEvent.to_status == QueueStatus.DONE,
            QueueEvent.created_at >= start,
            QueueEvent.created_at <= end,
        )
        if department is not None:
            query = query.filter(QueueEvent.department == department)
        done = pd.DataFrame(
            [{"entry": r.queue_entry_id, "department": r.department, "done": r.created_at} for r in query.all()],
            columns=["entry", "department", "done"],
        )
        if done.empty:
            done["svc_min"] = pd.Series(dtype=float)
            return done

        starts_query = self.db.query(QueueEvent.queue_entry_id, QueueEvent.created_at).filter(
            QueueEvent.to_status == QueueStatus.IN_SERVICE,
            QueueEvent.queue_entry_id.in_(done["entry"].unique().tolist()),
            QueueEvent.created_at <= end,
        )
        starts = pd.DataFrame(
            [{"entry": r.queue_entry_id, "started": r.created_at} for r in starts_query.all()],
            columns=["entry", "started"],
        )
        done["done"] = pd.to_datetime(done["done"]).astype("datetime64[ns]")
        if starts.empty:
            # Finished straight from waiting; no service time to measure
            done["svc_min"] = float("nan")
            return done
        starts["started"] = pd.to_datetime(starts["started"]).astype("datetime64[ns]")
        starts["entry"] = starts["entry"].astype(done["entry"].dtype)
        # merge_asof needs both frames sorted on the time key
        paired = pd.merge_asof(
            done.sort_values("done"),
            starts.sort_values("started"),
            left_on="done",
            right_on="started",
            by="entry",
            direction="backward",
        )
        paired["svc_min"] = (paired["done"] - paired["started"]).dt.total_seconds() / 60
        return paired

    # --- public operations ---

    def lane_metrics(self, start: datetime, end: datetime, department: Optional[str] = None) -> Dict[str, Any]:
        self._check_range(start, end)
        waits = self._service_starts(start, end, department)
        completions = self._completions(start, end, department)
        return {
            "department": department,
            "start": start,
            "end": end,
            "arrivals": self.arrivals(start, end, department),
            "serviced": len(waits),
            "completed": len(completions),
            "avg_wait_minutes": _mean_minutes(waits["wait_min"]),
            "avg_service_minutes": _mean_minutes(completions["svc_min"]),
        }

    def arrivals(self, start: datetime, end: datetime, department: Optional[str] = None) -> int:
        if department is None:
            return (
                self.db.query(func.count(CheckIn.id))
                .filter(CheckIn.created_at >= start, CheckIn.created_at <= end)
                .scalar()
            )
        return (
            self.db.query(func.count(func.distinct(CheckIn.id)))
            .join(QueueEvent, QueueEvent.checkin_id == CheckIn.id)
            .filter(
                QueueEvent.department == department,
                CheckIn.created_at >= start,
                CheckIn.created_at <= end,
            )
            .scalar()
        )

    def department_overview(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Live lane sizes per department plus the range's completions and averages."""
        self._check_range(start, end)
        live = (
            self.db.query(
                QueueEntry.department,
                func.sum(case((QueueEntry.status == QueueStatus.WAITING, 1), else_=0)).label("waiting"),
                func.sum(case((QueueEntry.status == QueueStatus.IN_SERVICE, 1), else_=0)).label("in_service"),
            )
            .filter(QueueEntry.status.in_([QueueStatus.WAITING, QueueStatus.IN_SERVICE]))
            .group_by(QueueEntry.department)
            .all()
        )
        waits = self._service_starts(start, end, None)
        completions = self._completions(start, end, None)

        departments = sorted(
            {row.department for row in live}
            | set(waits["department"].dropna())
            | set(completions["department"].dropna())
        )
        counts = {row.department: row for row in live}
        results = []
        for dept in departments:
            row = counts.get(dept)
            dept_done = completions[completions["department"] == dept]
            results.append({
                "department": dept,
                "waiting": int(row.waiting) if row else 0,
                "in_service": int(row.in_service) if row else 0,
                "done": len(dept_done),
                "avg_wait_minutes": _mean_minutes(waits[waits["department"] == dept]["wait_min"]),
                "avg_service_minutes": _mean_minutes(dept_done["svc_min"]),
            })
        return results

    def list_events(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        department: Optional[str] = None,
        to_status: Optional[QueueStatus] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """Keyset page of the event log in (created_at, id) order."""
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}.", field="limit")
        if start is not None and end is not None:
            self._check_range(start, end)

        query = self.db.query(QueueEvent)
        if start is not None:
            query = query.filter(QueueEvent.created_at >= start)
        if end is not None:
            query = query.filter(QueueEvent.created_at <= end)
        if department is not None:
            query = query.filter(QueueEvent.department == department)
        if to_status is not None:
            query = query.filter(QueueEvent.to_status == to_status)
        if cursor:
            after_at, after_id = decode_cursor(cursor)
            query = query.filter(
                (QueueEvent.created_at > after_at)
                | ((QueueEvent.created_at == after_at) & (QueueEvent.id > after_id))
            )

        rows = query.order_by(QueueEvent.created_at.asc(), QueueEvent.id.asc()).limit(limit + 1).all()
        page = rows[:limit]
        next_cursor = None
        if len(rows) > limit:
            last = page[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return {"items": page, "next_cursor": next_cursor}
