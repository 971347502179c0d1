"""
Report Builder
Pure functions turning a finished session and its event log into a Report
"""

import csv
import io
from typing import Dict, Sequence

from models.proctoring_models import EventKind, IntegrityEvent, Report, Session

SCORE_BANDS = [
    (80, "Excellent"),
    (60, "Good"),
    (40, "Fair"),
]


def format_duration(seconds: int) -> str:
    """125 -> '2:05'"""
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes}:{secs:02d}"


def score_band(score: int) -> str:
    for threshold, label in SCORE_BANDS:
        if score >= threshold:
            return label
    return "Poor"


def count_by_kind(events: Sequence[IntegrityEvent]) -> Dict[EventKind, int]:
    counts = {kind: 0 for kind in EventKind}
    for event in events:
        counts[event.kind] += 1
    return counts


def build_report(
    session: Session,
    event_log: Sequence[IntegrityEvent],
    score: int,
    score_source: str = "local",
) -> Report:
    """Build the immutable session report; never mutates its inputs"""
    events = tuple(event_log)
    return Report(
        candidate_name=session.candidate_name,
        session_id=session.session_id,
        started_at=session.started_at,
        ended_at=session.ended_at,
        duration_seconds=session.duration_seconds,
        duration=format_duration(session.duration_seconds),
        integrity_score=score,
        band=score_band(score),
        score_source=score_source,
        event_counts=count_by_kind(events),
        events=events,
    )


def report_to_csv(report: Report) -> str:
    """Event timeline as CSV"""
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(['Timestamp', 'Event Type', 'Severity', 'Message'])
    for event in report.events:
        writer.writerow([
            event.timestamp.isoformat(),
            event.kind.value,
            event.severity.value,
            event.message,
        ])

    return output.getvalue()
