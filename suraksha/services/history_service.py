"""
Result normalizer and history recorder.

Two histories exist side by side:
- a session-scoped, in-memory list of HistoryItems (most recent first)
- a persisted, per-user list of flattened verdict records (AnalysisResult rows)

Writes to the persisted store are best-effort; a failed write never stops the
verdict from reaching the user.
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from suraksha.config import settings
from suraksha.models.analysis import AnalysisResult
from suraksha.schemas.analyze_schemas import (
    AnalysisTimestamp,
    ContentVerdict,
    DashboardStats,
    HistoryItem,
    HistoryRecord,
    InformationStatus,
    PromptSummary,
    SafetyStatus,
    UrlVerdict,
)
from suraksha.utils.errors import StoreError
from suraksha.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger("suraksha.history")


# URL verdicts are stored in the content-verdict shape.
URL_STATUS_MAP = {
    SafetyStatus.UNSAFE: (InformationStatus.SCAM, 5.0, 95.0),
    SafetyStatus.SUSPICIOUS: (InformationStatus.SUSPICIOUS, 40.0, 60.0),
    SafetyStatus.SAFE: (InformationStatus.REAL, 95.0, 5.0),
}

THREAT_STATUSES = {InformationStatus.SCAM.value, InformationStatus.FAKE.value}


def build_history_item(prompt: PromptSummary, verdict) -> HistoryItem:
    return HistoryItem(
        id=uuid.uuid4().hex,
        prompt=prompt,
        result=verdict,
        created_at=datetime.now(timezone.utc),
    )


# ============== SESSION HISTORY ==============


class SessionHistory:
    """Most-recent-first list of HistoryItems for one session."""

    def __init__(self):
        self._items: List[HistoryItem] = []
        self._lock = threading.Lock()

    def add(self, item: HistoryItem) -> None:
        with self._lock:
            self._items.insert(0, item)

    def items(self) -> List[HistoryItem]:
        with self._lock:
            return list(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items = []

    def __len__(self) -> int:
        return len(self._items)


class SessionHistoryRegistry:
    """Holds one SessionHistory per session id for the lifetime of the session."""

    def __init__(self):
        self._sessions: Dict[str, SessionHistory] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> SessionHistory:
        with self._lock:
            history = self._sessions.get(session_id)
            if history is None:
                history = SessionHistory()
                self._sessions[session_id] = history
            return history

    def end(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)


# ============== FLATTENING ==============


def flatten_verdict(verdict) -> Dict[str, Any]:
    """Denormalize either verdict kind into the persisted record fields."""
    if isinstance(verdict, UrlVerdict):
        status, score_true, score_false = URL_STATUS_MAP[verdict.safety_status]
        return {
            "information_status": status.value,
            "probability_true": score_true,
            "probability_false_scam": score_false,
            "information_type": "URL Scan",
            "simple_explanation": verdict.reason,
            "warning_or_safety_advice": verdict.advice,
            "final_verdict": f"This URL is considered {verdict.safety_status.value}.",
        }
    if isinstance(verdict, ContentVerdict):
        return {
            "information_status": verdict.information_status.value,
            "probability_true": verdict.possibility_score.score_true,
            "probability_false_scam": verdict.possibility_score.score_false_or_scam,
            "information_type": ", ".join(verdict.information_type),
            "simple_explanation": verdict.simple_explanation,
            "warning_or_safety_advice": verdict.warning_or_safety_advice,
            "final_verdict": verdict.final_verdict,
        }
    raise TypeError(f"Unsupported verdict: {type(verdict).__name__}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_history_record(row: AnalysisResult) -> HistoryRecord:
    timestamp = None
    if row.analysis_timestamp is not None:
        timestamp = AnalysisTimestamp.from_datetime(row.analysis_timestamp)
    return HistoryRecord(
        id=str(row.id),
        final_verdict=row.final_verdict,
        content=row.content,
        information_status=row.information_status,
        analysis_timestamp=timestamp,
    )


# ============== PERSISTED STORE ==============


class AnalysisResultStore:
    """Append-only per-user verdict store backed by SQLAlchemy."""

    def __init__(self, db: Session):
        self.db = db

    def add(self, user_id: str, item: HistoryItem) -> AnalysisResult:
        row = AnalysisResult(
            user_id=user_id,
            history_item_id=item.id,
            content_type=item.prompt.type.value,
            content=item.prompt.content,
            **flatten_verdict(item.result),
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"Could not save analysis result: {type(e).__name__}") from e
        return row

    def recent(self, user_id: str, count: Optional[int] = None) -> List[AnalysisResult]:
        """Newest first. Rows without a timestamp sort last."""
        count = min(count or settings.history_default_count, settings.history_max_count)
        try:
            return (
                self.db.query(AnalysisResult)
                .filter(AnalysisResult.user_id == user_id)
                .order_by(
                    AnalysisResult.analysis_timestamp.is_(None),
                    AnalysisResult.analysis_timestamp.desc(),
                    AnalysisResult.id.desc(),
                )
                .limit(count)
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read analysis history: {type(e).__name__}") from e

    def all_for_user(self, user_id: str) -> List[AnalysisResult]:
        try:
            return (
                self.db.query(AnalysisResult)
                .filter(AnalysisResult.user_id == user_id)
                .order_by(AnalysisResult.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StoreError(f"Could not read analysis history: {type(e).__name__}") from e


def record_persisted(store: AnalysisResultStore, user_id: Optional[str], item: HistoryItem) -> bool:
    """Best-effort write. Returns False (and logs) instead of raising."""
    if not user_id:
        return False
    try:
        store.add(user_id, item)
    except StoreError as e:
        metrics.increment("history.persist.errors")
        logger.warning("History write failed; verdict still returned", error=e.message, item_id=item.id)
        return False
    metrics.increment("history.persist.ok")
    return True


def recent_records(store: AnalysisResultStore, user_id: str, count: Optional[int] = None) -> List[HistoryRecord]:
    """Read path for the API and chat tool: store failures degrade to an empty list."""
    try:
        rows = store.recent(user_id, count)
    except StoreError as e:
        metrics.increment("history.read.errors")
        logger.warning("History read failed", error=e.message)
        return []
    return [to_history_record(row) for row in rows]


# ============== DASHBOARD ==============


def _confidence(row: AnalysisResult) -> float:
    if row.information_status == InformationStatus.REAL.value:
        return row.probability_true or 0.0
    return row.probability_false_scam or 0.0


def dashboard_stats(rows: List[AnalysisResult], now: Optional[datetime] = None) -> DashboardStats:
    now = _as_utc(now or datetime.now(timezone.utc))
    week_ago = now - timedelta(days=7)

    threats = sum(
        1
        for row in rows
        if row.information_status in THREAT_STATUSES
        and row.analysis_timestamp is not None
        and _as_utc(row.analysis_timestamp) >= week_ago
    )
    confidence = round(sum(_confidence(row) for row in rows) / len(rows)) if rows else 0

    if threats > 10:
        level = "High"
    elif threats > 3:
        level = "Medium"
    else:
        level = "Low"

    return DashboardStats(
        total_analyzed=len(rows),
        threats_this_week=threats,
        accuracy_confidence=confidence,
        threat_level=level,
    )
