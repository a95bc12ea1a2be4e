"""ConnectionBroker — routes each request to the primary or the local store.

The broker never raises connectivity problems of the primary to its
callers: a failed primary attempt demotes the mode to FALLBACK and the
caller gets a local connection instead. Promotion back to PRIMARY is left
to the sync engine, after a complete reconciliation.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from PySide6.QtCore import QObject, Signal

from shiftly_sync.database.connection import StoreConnection
from shiftly_sync.database.errors import ConnectivityError
from shiftly_sync.database.models import StoreMode, utc_now
from shiftly_sync.utils.formatters import format_fields

logger = logging.getLogger(__name__)


class ModeState(QObject):
    """Current StoreMode and last probe result, guarded by a lock.

    Owned by one broker instance; UI code can connect to
    ``mode_changed`` to show or hide its "offline mode" banner.
    """

    mode_changed = Signal(str)  # new StoreMode value

    def __init__(self, mode: StoreMode = StoreMode.PRIMARY, parent=None):
        super().__init__(parent)
        self._lock = threading.Lock()
        self._mode = StoreMode(mode)
        self._primary_reachable: Optional[bool] = None
        self._last_probe_at: Optional[datetime] = None

    @property
    def mode(self) -> StoreMode:
        with self._lock:
            return self._mode

    @property
    def primary_reachable(self) -> Optional[bool]:
        """Last probe result; None until the first probe."""
        with self._lock:
            return self._primary_reachable

    @property
    def last_probe_at(self) -> Optional[datetime]:
        with self._lock:
            return self._last_probe_at

    def set_mode(self, mode: StoreMode, reason: str = "") -> bool:
        """Switch mode; returns False when it was already *mode*."""
        mode = StoreMode(mode)
        with self._lock:
            previous = self._mode
            if previous is mode:
                return False
            self._mode = mode
        logger.info(format_fields(
            "mode_changed", previous=previous.value, mode=mode.value,
            reason=reason,
        ))
        self.mode_changed.emit(mode.value)
        return True

    def record_probe(self, reachable: bool):
        with self._lock:
            self._primary_reachable = reachable
            self._last_probe_at = utc_now()


class ConnectionBroker:
    """Chooses the backend for every connection request."""

    def __init__(self, primary, local, state: ModeState = None):
        self.primary = primary
        self.local = local
        self.state = state if state is not None else ModeState()

    # ── Mode ────────────────────────────────────────────────────

    def current_mode(self) -> StoreMode:
        return self.state.mode

    @property
    def is_offline(self) -> bool:
        return self.state.mode is StoreMode.FALLBACK

    def force_mode(self, mode: StoreMode):
        """Administrative override, used at startup and for recovery."""
        self.state.set_mode(mode, reason="forced")

    def demote(self, reason: str) -> bool:
        return self.state.set_mode(StoreMode.FALLBACK, reason=reason)

    def promote(self, reason: str) -> bool:
        return self.state.set_mode(StoreMode.PRIMARY, reason=reason)

    # ── Probing ─────────────────────────────────────────────────

    def _check_primary(self) -> Optional[str]:
        """Open and ping the primary; returns an error text or None."""
        try:
            conn = self.primary.acquire_connection()
        except ConnectivityError as exc:
            return str(exc)
        try:
            conn.scalar("SELECT 1")
        except Exception as exc:
            if not self.primary.is_disconnect(exc):
                raise
            return str(exc)
        finally:
            conn.close()
        return None

    def probe_primary(self, demote: bool = True) -> bool:
        """Check whether the primary answers within its login timeout.

        Updates the last-known reachability flag and, unless *demote* is
        False, demotes on failure. Never promotes.
        """
        error = self._check_primary()
        reachable = error is None
        self.state.record_probe(reachable)
        if reachable:
            logger.info(format_fields(
                "primary_probe", reachable=True, mode=self.current_mode().value,
            ))
        else:
            logger.warning(format_fields(
                "primary_probe", reachable=False, error=error,
            ))
            if demote:
                self.demote("probe failed")
        return reachable

    # ── Connections ─────────────────────────────────────────────

    def acquire_connection(self) -> StoreConnection:
        """Connection to the active store, falling back to the local one.

        Raises ConnectivityError only if the local store cannot be opened
        either.
        """
        if self.current_mode() is StoreMode.PRIMARY:
            try:
                conn = self.primary.acquire_connection()
            except ConnectivityError as exc:
                logger.warning(format_fields(
                    "primary_unavailable", store=self.primary.label,
                    error=exc,
                ))
                self.state.record_probe(False)
                self.demote("connection failed")
            else:
                conn.mode = StoreMode.PRIMARY
                return conn

        conn = self.local.acquire_connection()
        conn.mode = StoreMode.FALLBACK
        return conn

    def connectivity_report(self) -> dict:
        """Reachability of both stores, for diagnostics."""
        report = {"mode": self.current_mode().value}
        for name, store in (("primary", self.primary), ("local", self.local)):
            try:
                conn = store.acquire_connection()
            except ConnectivityError as exc:
                report[name] = {"store": store.label, "reachable": False,
                                "error": str(exc)}
                continue
            conn.close()
            report[name] = {"store": store.label, "reachable": True,
                            "error": ""}
        self.state.record_probe(report["primary"]["reachable"])
        return report
