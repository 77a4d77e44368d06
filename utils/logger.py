"""
logger.py - Logging utilities for the arbiter bot.

This module provides:
- setup_logging: one-call configuration of the stdlib logging tree
- SessionLogger: a per-run activity log of state transitions, task
  cycles and combat retaliations

Session logs are stored in both text format (for human reading) and
JSON-lines format (for analysis), plus a summary.json written on close.
"""

import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure root logging.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ...)
        log_file: Also write records to this file
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )


@dataclass
class LogEntry:
    """A single session log entry."""
    timestamp: float
    kind: str
    data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {'timestamp': self.timestamp, 'kind': self.kind, **self.data}


class SessionLogger:
    """
    Activity log for one bot run.

    Features:
    - State transitions, task cycles and retaliations as JSON lines
    - Running counters for a summary
    - Text log with a header and footer

    Usage:
        session = SessionLogger(log_dir="logs")
        engine.add_listener(session.log_transition)
        ...
        session.close()
    """

    def __init__(
        self,
        log_dir: str = "logs",
        session_name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        max_entries: int = 1000
    ):
        """
        Initialize the session logger.

        Args:
            log_dir: Directory to store session directories
            session_name: Name for this run; defaults to a timestamp
            clock: Time source for entry timestamps
            max_entries: Entries kept in memory for recent()
        """
        if session_name is None:
            session_name = datetime.now().strftime("session_%Y%m%d_%H%M%S")
        self.session_name = session_name
        self._clock = clock
        self._max_entries = max_entries

        self.run_dir = os.path.join(log_dir, session_name)
        Path(self.run_dir).mkdir(parents=True, exist_ok=True)
        self.events_path = os.path.join(self.run_dir, "events.jsonl")
        self.text_log_path = os.path.join(self.run_dir, "session.log")

        self.entries: List[LogEntry] = []
        self.stats = {
            'transitions': 0,
            'forced_transitions': 0,
            'cycles': 0,
            'backoffs': 0,
            'retaliations': 0,
            'start_time': clock()
        }
        self._closed = False
        self._write_header()

    def _write_header(self) -> None:
        with open(self.text_log_path, 'w') as f:
            f.write("=" * 60 + "\n")
            f.write("Arbiter Bot Session Log\n")
            f.write(f"Session: {self.session_name}\n")
            f.write(f"Started: {datetime.now().isoformat()}\n")
            f.write("=" * 60 + "\n\n")

    def log_event(self, kind: str, **data: Any) -> LogEntry:
        """Record an arbitrary event."""
        entry = LogEntry(timestamp=self._clock(), kind=kind, data=data)
        self.entries.append(entry)
        if len(self.entries) > self._max_entries:
            self.entries = self.entries[-self._max_entries // 2:]

        with open(self.events_path, 'a') as f:
            f.write(json.dumps(entry.to_dict()) + "\n")
        return entry

    def log_transition(self, previous: Optional[str], current: str, forced: bool) -> None:
        """Record a state change. Signature matches StateMachineEngine listeners."""
        self.stats['transitions'] += 1
        if forced:
            self.stats['forced_transitions'] += 1
        self.log_event('transition', previous=previous, current=current, forced=forced)

        with open(self.text_log_path, 'a') as f:
            mark = " (forced)" if forced else ""
            f.write(f"State {previous} -> {current}{mark}\n")

    def log_cycle(
        self,
        task: str,
        iterations: int,
        progress: int,
        backoff: bool,
        info: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Record the end of a policy task cycle.

        Args:
            task: Task name
            iterations: Iterations run in the cycle
            progress: Iterations that made progress
            backoff: Whether the cycle ended in a cooldown
            info: Additional information to log
        """
        self.stats['cycles'] += 1
        if backoff:
            self.stats['backoffs'] += 1
        data = {'task': task, 'iterations': iterations, 'progress': progress, 'backoff': backoff}
        if info:
            data.update(info)
        self.log_event('cycle', **data)

        with open(self.text_log_path, 'a') as f:
            f.write(f"Cycle {task:10s} | iterations: {iterations:3d} | "
                    f"progress: {progress:3d}{' | backoff' if backoff else ''}\n")

    def log_retaliation(self, attacker: str, source: str) -> None:
        """Record a retaliation and which signal identified the attacker."""
        self.stats['retaliations'] += 1
        self.log_event('retaliation', attacker=attacker, source=source)

    def recent(self, n: int = 10) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries[-n:]] if n > 0 else []

    def get_summary(self) -> Dict[str, Any]:
        summary = {k: v for k, v in self.stats.items() if k != 'start_time'}
        summary['elapsed_time'] = self._clock() - self.stats['start_time']
        return summary

    def save(self) -> None:
        """Write summary.json."""
        summary_path = os.path.join(self.run_dir, "summary.json")
        with open(summary_path, 'w') as f:
            json.dump(self.get_summary(), f, indent=2)

    def close(self) -> None:
        """Save the summary and write the text log footer."""
        if self._closed:
            return
        self._closed = True
        self.save()

        with open(self.text_log_path, 'a') as f:
            f.write("\n" + "=" * 60 + "\n")
            f.write(f"Session Complete: {datetime.now().isoformat()}\n")
            f.write(f"Transitions: {self.stats['transitions']}\n")
            f.write(f"Cycles: {self.stats['cycles']} (backoffs: {self.stats['backoffs']})\n")
            f.write(f"Retaliations: {self.stats['retaliations']}\n")
            f.write("=" * 60 + "\n")
