"""User prompts shown in the plugin UI.

This module provides:
- UserPromptCoordinator: sends questions to the plugin and awaits the
  answers, which arrive later as separate messages

Pending answers are asyncio futures keyed by an action id such as
``delete:<file name>``. ``cleanup`` fails them all with
PeerDisconnectedError when the peer goes away.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from synclink.daemon.sync.types import Conflict, PeerDisconnectedError

logger = logging.getLogger(__name__)

Sender = Callable[[Any, dict[str, Any]], Awaitable[bool]]


def delete_action_id(file_name: str) -> str:
    return f"delete:{file_name}"


class UserPromptCoordinator:
    """Awaitable API for confirmations answered in the plugin."""

    def __init__(self, send: Sender) -> None:
        """Initialize the coordinator.

        Args:
            send: Coroutine sending a message to a peer, returning success.
        """
        self._send = send
        self._pending: dict[str, asyncio.Future[bool]] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _await_action(self, action_id: str, description: str) -> asyncio.Future[bool]:
        existing = self._pending.get(action_id)
        if existing is not None and not existing.done():
            return existing
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[action_id] = future
        logger.debug("Awaiting %s: %s", description, action_id)
        return future

    async def request_delete_decision(
        self,
        peer: Any,
        file_names: Sequence[str],
        require_confirmation: bool,
    ) -> list[str]:
        """Ask the plugin to delete files and return the ones it confirmed.

        All files go out in one ``file-delete`` message. Without
        confirmation every file counts as confirmed once the message is sent.
        With confirmation, the first answer message settles the whole batch:
        names it leaves out count as not confirmed.

        Args:
            peer: Active peer connection.
            file_names: Files deleted locally.
            require_confirmation: Whether the user has to approve.

        Returns:
            Names whose deletion was confirmed; empty if the peer went away.

        Raises:
            PeerDisconnectedError: If there is no peer to ask.
        """
        if peer is None:
            raise PeerDisconnectedError("Cannot request delete decision: plugin not connected")

        names = list(file_names)
        if not require_confirmation:
            sent = await self._send(
                peer,
                {"type": "file-delete", "fileNames": names, "requireConfirmation": False},
            )
            return names if sent else []

        futures = {
            name: self._await_action(delete_action_id(name), "delete confirmation")
            for name in names
        }
        sent = await self._send(
            peer,
            {"type": "file-delete", "fileNames": names, "requireConfirmation": True},
        )
        if not sent:
            for name in names:
                self._discard(delete_action_id(name))
            return []

        await asyncio.wait(set(futures.values()), return_when=asyncio.FIRST_COMPLETED)
        if any(
            f.done() and not f.cancelled() and isinstance(f.exception(), PeerDisconnectedError)
            for f in futures.values()
        ):
            logger.debug("Plugin disconnected while waiting for delete confirmation")
            return []

        # Answers are resolved synchronously per message, so by now every
        # name the answering message covered is done. The plugin never
        # answers for files it does not have.
        confirmed = []
        for name, future in futures.items():
            if not future.done():
                logger.debug("No answer for %s, keeping its metadata", name)
                self._discard(delete_action_id(name))
            elif not future.cancelled() and future.exception() is None and future.result():
                confirmed.append(name)
        return confirmed

    async def request_conflict_decisions(self, peer: Any, conflicts: Sequence[Conflict]) -> bool:
        """Show conflicts to the user.

        The answer arrives as a ``conflicts-resolved`` message handled by the
        state machine, so nothing is awaited here.

        Raises:
            PeerDisconnectedError: If there is no peer to ask.
        """
        if peer is None:
            raise PeerDisconnectedError("Cannot request conflict decision: plugin not connected")
        if not conflicts:
            return True
        return await self._send(
            peer,
            {"type": "conflicts-detected", "conflicts": [c.to_wire() for c in conflicts]},
        )

    def handle_confirmation(self, action_id: str, value: bool) -> bool:
        """Resolve a pending action.

        Returns:
            False if no action with this id was waiting.
        """
        future = self._pending.pop(action_id, None)
        if future is None or future.done():
            logger.debug("Unexpected confirmation for %s", action_id)
            return False
        future.set_result(value)
        logger.debug("Confirmed: %s", action_id)
        return True

    def cleanup(self) -> None:
        """Fail every pending action, e.g. on disconnect."""
        for action_id, future in self._pending.items():
            if not future.done():
                future.set_exception(PeerDisconnectedError("Plugin disconnected"))
            logger.debug("Cancelled pending action: %s", action_id)
        self._pending.clear()

    def _discard(self, action_id: str) -> None:
        future = self._pending.pop(action_id, None)
        if future is not None and not future.done():
            future.cancel()
