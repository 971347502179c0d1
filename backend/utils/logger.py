import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from pathlib import Path
import aiofiles

from models.proctoring_models import IntegrityEvent, Report, Session, Severity

logger = logging.getLogger(__name__)


class ProctorLogger:
    """Local store for session records, event logs and final reports"""

    def __init__(self, base_dir: str = "logs"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

        (self.base_dir / "sessions").mkdir(exist_ok=True)
        (self.base_dir / "reports").mkdir(exist_ok=True)
        (self.base_dir / "events").mkdir(exist_ok=True)

        self.session_events: Dict[str, List[Dict[str, Any]]] = {}
        self.event_files: Dict[str, Path] = {}

    def _session_file(self, session_id: str) -> Path:
        return self.base_dir / "sessions" / f"{session_id}.json"

    def _event_file(self, session_id: str) -> Path:
        # Dated once per session so a run past midnight keeps a single file
        if session_id not in self.event_files:
            timestamp = datetime.now().strftime("%Y%m%d")
            self.event_files[session_id] = self.base_dir / "events" / f"{session_id}_{timestamp}.jsonl"
        return self.event_files[session_id]

    async def start_session(self, session: Session):
        """Start logging for a new session"""
        session_id = session.session_id
        self.session_events[session_id] = []
        self.event_files.pop(session_id, None)
        self._event_file(session_id)

        session_start_data = {
            "session_id": session_id,
            "candidate_name": session.candidate_name,
            "start_time": session.started_at.isoformat() if session.started_at else None,
            "status": "started"
        }

        try:
            async with aiofiles.open(self._session_file(session_id), 'w') as f:
                await f.write(json.dumps(session_start_data, indent=2))
            logger.info(f"📝 Started logging for session {session_id}")
        except OSError as e:
            logger.error(f"Error writing session start: {e}")

    def log_event(self, session_id: str, event: IntegrityEvent):
        """Record an event; danger events go to disk straight away"""
        record = event.model_dump(mode="json")
        self.session_events.setdefault(session_id, []).append(record)

        if event.severity == Severity.DANGER:
            try:
                with open(self._event_file(session_id), 'a') as f:
                    f.write(json.dumps(record) + '\n')
            except OSError as e:
                logger.error(f"Error writing event to disk: {e}")

    async def end_session(self, session: Session):
        """Close the session record and flush its full event log"""
        session_id = session.session_id
        session_file = self._session_file(session_id)

        try:
            session_info = {}
            if session_file.exists():
                async with aiofiles.open(session_file, 'r') as f:
                    session_info = json.loads(await f.read())

            session_info.update({
                "end_time": (session.ended_at or datetime.now()).isoformat(),
                "duration_seconds": session.duration_seconds,
                "total_events": len(self.session_events.get(session_id, [])),
                "status": "completed"
            })

            async with aiofiles.open(session_file, 'w') as f:
                await f.write(json.dumps(session_info, indent=2))

            await self._write_session_events(session_id)
            logger.info(f"📝 Ended logging for session {session_id}")

        except (OSError, ValueError) as e:
            logger.error(f"Error ending session log: {e}")

    async def _write_session_events(self, session_id: str):
        events = self.session_events.pop(session_id, None)
        if events is None:
            return

        # Rewrites the file, replacing the danger events appended during the session
        async with aiofiles.open(self._event_file(session_id), 'w') as f:
            for event in events:
                await f.write(json.dumps(event) + '\n')
        self.event_files.pop(session_id, None)

    async def load_session_events(self, session_id: str) -> List[Dict[str, Any]]:
        """Events for a session, from memory while it runs, from disk afterwards"""
        if session_id in self.session_events:
            return list(self.session_events[session_id])

        events = []
        try:
            for event_file in sorted((self.base_dir / "events").glob(f"{session_id}_*.jsonl")):
                async with aiofiles.open(event_file, 'r') as f:
                    content = await f.read()
                for line in content.strip().split('\n'):
                    if line.strip():
                        events.append(json.loads(line))
        except (OSError, ValueError) as e:
            logger.error(f"Error loading session events: {e}")

        return events

    async def save_report(self, report: Report) -> Optional[Path]:
        """Save report to disk"""
        try:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            report_file = self.base_dir / "reports" / f"{report.session_id}_{timestamp}.json"

            async with aiofiles.open(report_file, 'w') as f:
                await f.write(report.model_dump_json(indent=2))

            logger.info(f"📊 Saved report for session {report.session_id}")
            return report_file

        except OSError as e:
            logger.error(f"Error saving report: {e}")
            return None

    async def get_report(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Retrieve the latest report for a session"""
        try:
            report_files = list((self.base_dir / "reports").glob(f"{session_id}_*.json"))

            if not report_files:
                return None

            latest_report = sorted(report_files)[-1]

            async with aiofiles.open(latest_report, 'r') as f:
                content = await f.read()
                return json.loads(content)

        except (OSError, ValueError) as e:
            logger.error(f"Error retrieving report: {e}")
            return None
