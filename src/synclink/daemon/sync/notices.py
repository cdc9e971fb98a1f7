"""Connection status notices.

A plugin reload drops the connection for a moment. The disconnect notice is
therefore delayed, and cancelled if the plugin comes back in time. The
message printed after the next sync depends on whether the notice was shown.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

DISCONNECT_NOTICE_DELAY_S = 4.0


class ConnectionNotices:
    """Tracks what the user has been told about the connection."""

    def __init__(self, delay_s: float = DISCONNECT_NOTICE_DELAY_S) -> None:
        self._delay_s = delay_s
        self._timer: asyncio.TimerHandle | None = None
        self._recently_disconnected = False
        self._disconnect_shown = False

    @property
    def recently_disconnected(self) -> bool:
        return self._recently_disconnected

    @property
    def disconnect_shown(self) -> bool:
        return self._disconnect_shown

    @property
    def notice_pending(self) -> bool:
        return self._timer is not None

    def schedule_disconnect(self) -> None:
        """Show the disconnect notice unless the plugin reconnects first.

        Must be called on the running event loop.
        """
        self.cancel_disconnect()
        self._recently_disconnected = True
        self._disconnect_shown = False
        self._timer = asyncio.get_running_loop().call_later(self._delay_s, self._show_disconnect)

    def cancel_disconnect(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def connected(self, project_name: str) -> None:
        """Record a handshake, greeting the user unless this is a reconnect."""
        self.cancel_disconnect()
        if not self._recently_disconnected and not self._disconnect_shown:
            logger.info("Connected to %s", project_name)

    def reset(self) -> None:
        self._recently_disconnected = False
        self._disconnect_shown = False

    def _show_disconnect(self) -> None:
        self._timer = None
        self._disconnect_shown = True
        logger.info("Disconnected, waiting to reconnect...")
