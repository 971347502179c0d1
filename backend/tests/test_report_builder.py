"""
Tests for the report builder
"""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from models.proctoring_models import EventKind, IntegrityEvent, Session, SessionState
from services.report_builder import build_report, format_duration, report_to_csv, score_band

T0 = datetime(2024, 5, 1, 10, 0, 0)


def make_session(duration=125):
    session = Session(session_id="session_42", candidate_name="Alice")
    session.started_at = T0
    session.advance(SessionState.ACTIVE)
    session.duration_seconds = duration
    session.ended_at = T0 + timedelta(seconds=duration)
    session.advance(SessionState.ENDED)
    return session


def make_events():
    return [
        IntegrityEvent.create(1, EventKind.NO_FACE, T0 + timedelta(seconds=5)),
        IntegrityEvent.create(2, EventKind.LOOKING_AWAY, T0 + timedelta(seconds=9)),
        IntegrityEvent.create(3, EventKind.NO_FACE, T0 + timedelta(seconds=20)),
    ]


@pytest.mark.parametrize("seconds,expected", [
    (0, "0:00"),
    (7, "0:07"),
    (59, "0:59"),
    (60, "1:00"),
    (125, "2:05"),
    (3600, "60:00"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.mark.parametrize("score,band", [
    (100, "Excellent"),
    (85, "Excellent"),
    (80, "Excellent"),
    (79, "Good"),
    (60, "Good"),
    (59, "Fair"),
    (40, "Fair"),
    (39, "Poor"),
    (0, "Poor"),
])
def test_score_band(score, band):
    assert score_band(score) == band


def test_build_report_contents():
    session = make_session()
    events = make_events()

    report = build_report(session, events, 75)

    assert report.candidate_name == "Alice"
    assert report.session_id == "session_42"
    assert report.duration == "2:05"
    assert report.integrity_score == 75
    assert report.band == "Fair"
    assert report.score_source == "local"
    assert report.event_counts[EventKind.NO_FACE] == 2
    assert report.event_counts[EventKind.LOOKING_AWAY] == 1
    assert report.event_counts[EventKind.PHONE_DETECTED] == 0
    assert set(report.event_counts) == set(EventKind)
    assert [event.id for event in report.events] == [1, 2, 3]


def test_build_report_is_pure_and_repeatable():
    session = make_session()
    events = make_events()
    snapshot = list(events)

    first = build_report(session, events, 75)
    second = build_report(session, events, 75)

    assert first == second
    assert events == snapshot
    assert session.duration_seconds == 125


def test_report_is_frozen():
    report = build_report(make_session(), [], 100)

    with pytest.raises(ValidationError):
        report.integrity_score = 0


def test_empty_report():
    report = build_report(make_session(duration=0), [], 100)

    assert report.events == ()
    assert report.band == "Excellent"
    assert sum(report.event_counts.values()) == 0


def test_report_to_csv():
    report = build_report(make_session(), make_events(), 75)

    lines = report_to_csv(report).strip().splitlines()

    assert lines[0] == "Timestamp,Event Type,Severity,Message"
    assert len(lines) == 4
    assert lines[1] == f"{(T0 + timedelta(seconds=5)).isoformat()},NO_FACE,DANGER,No face detected in frame"
