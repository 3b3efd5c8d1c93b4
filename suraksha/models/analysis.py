from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text

from suraksha.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisResult(Base):
    """Denormalized, append-only verdict record for one user (users/{user_id}/analysis_results)."""
    __tablename__ = "analysis_results"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    history_item_id = Column(String(64), nullable=False)  # id of the HistoryItem it was flattened from

    content_type = Column(String(10), nullable=False)     # text | url | image | qrcode | video
    content = Column(Text, nullable=False)                # text, URL, or "Image: name.png"
    information_status = Column(String(20), nullable=False)  # REAL / FAKE / SCAM / SUSPICIOUS

    probability_true = Column(Float, nullable=False)
    probability_false_scam = Column(Float, nullable=False)
    information_type = Column(Text, nullable=False)       # "Phishing, Job Scam"

    simple_explanation = Column(Text, nullable=False)
    warning_or_safety_advice = Column(Text, nullable=False)
    final_verdict = Column(Text, nullable=False)

    # Assigned by the store layer, never by the caller.
    analysis_timestamp = Column(DateTime(timezone=True), nullable=True, default=_utcnow)

    __table_args__ = (
        Index("ix_analysis_results_user_ts", "user_id", "analysis_timestamp"),
    )
