#!/usr/bin/env python3
"""
Run Reservations - single-flight guard per batch job kind.

A kind is reserved from the moment a run is requested until its terminal
state is recorded. Reservation is an atomic check-and-set.
"""

import threading
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class RunReservations:
    """In-process record of which job kinds have a run in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, str] = {}  # kind -> run_id

    def reserve(self, kind: str, run_id: str) -> bool:
        """Reserve `kind` for `run_id`. Returns False if already reserved."""
        with self._lock:
            if kind in self._active:
                return False
            self._active[kind] = run_id
        logger.debug(f"[Reservations] {kind} reserved by run {run_id}")
        return True

    def release(self, kind: str):
        with self._lock:
            run_id = self._active.pop(kind, None)
        if run_id:
            logger.debug(f"[Reservations] {kind} released by run {run_id}")

    def is_reserved(self, kind: str) -> bool:
        with self._lock:
            return kind in self._active

    def run_id_for(self, kind: str) -> Optional[str]:
        with self._lock:
            return self._active.get(kind)

    def active_kinds(self) -> List[str]:
        with self._lock:
            return sorted(self._active)
