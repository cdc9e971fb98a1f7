"""WebSocket transport to the plugin peer.

This module provides:
- PeerServer: accepts plugin connections and keeps exactly one active peer
- send_message: best-effort JSON send that reports failure instead of raising

Architecture:
    plugin ──ws──► PeerServer ──callbacks──► SyncController

A connection becomes the active peer when it sends an accepted handshake;
a previous active peer is then closed and reported as disconnected first.
Messages sent before the handshake, or by a replaced peer, are ignored.
"""

from __future__ import annotations

import contextlib
import errno
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import WebSocketException

from synclink.daemon.sync.types import TransportError

logger = logging.getLogger(__name__)

AuthorizeCallback = Callable[[dict[str, Any]], bool]
HandshakeCallback = Callable[[ServerConnection, dict[str, Any]], None]
MessageCallback = Callable[[dict[str, Any]], None]
DisconnectCallback = Callable[[], None]


async def send_message(peer: ServerConnection | None, message: dict[str, Any]) -> bool:
    """Send a JSON message to the peer.

    Args:
        peer: Connection to send on.
        message: JSON-serializable message with a ``type`` key.

    Returns:
        True if the message was handed to the socket, False otherwise.
    """
    message_type = message.get("type")
    if peer is None:
        logger.debug("Cannot send %s: no peer", message_type)
        return False
    try:
        await peer.send(json.dumps(message))
    except (WebSocketException, OSError) as e:
        logger.debug("Send error for %s: %s", message_type, e)
        return False
    return True


class PeerServer:
    """WebSocket server tracking a single active plugin connection."""

    def __init__(
        self,
        host: str,
        port: int,
        on_handshake: HandshakeCallback,
        on_message: MessageCallback,
        on_disconnect: DisconnectCallback,
        authorize: AuthorizeCallback | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            host: Interface to bind.
            port: Port to listen on; 0 picks a free port.
            on_handshake: Called when a connection becomes the active peer.
            on_message: Called with every message from the active peer.
            on_disconnect: Called when the active peer goes away.
            authorize: Inspects a handshake; returning False refuses and
                closes the connection.
        """
        self._host = host
        self._port = port
        self._on_handshake = on_handshake
        self._on_message = on_message
        self._on_disconnect = on_disconnect
        self._authorize = authorize
        self._server: Server | None = None
        self._active: ServerConnection | None = None
        self._connection_count = 0

    @property
    def port(self) -> int:
        """Port the server is bound to."""
        if self._server is None:
            return self._port
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return self._port

    @property
    def active_peer(self) -> ServerConnection | None:
        return self._active

    async def start(self) -> None:
        """Start listening.

        Raises:
            TransportError: If the port cannot be bound.
        """
        try:
            self._server = await serve(self._handle_connection, self._host, self._port)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                logger.error("Port %d is already in use.", self._port)
                logger.error("Another synclink daemon is probably running for this project.")
                raise TransportError(f"Port {self._port} is already in use") from e
            logger.error("Failed to start WebSocket server: %s", e)
            raise TransportError(str(e)) from e
        logger.debug("WebSocket server listening on port %d", self.port)

    async def close(self) -> None:
        """Stop the server and close all connections."""
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    async def _handle_connection(self, ws: ServerConnection) -> None:
        self._connection_count += 1
        conn_id = self._connection_count
        handshake_received = False
        logger.debug("Client connected (conn %d)", conn_id)

        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except ValueError as e:
                    logger.error("Failed to parse message (conn %d): %s", conn_id, e)
                    continue
                if not isinstance(message, dict):
                    logger.error("Ignoring non-object message (conn %d)", conn_id)
                    continue

                message_type = message.get("type")
                if message_type == "handshake":
                    handshake_received = await self._promote(ws, message, conn_id)
                elif handshake_received and ws is self._active:
                    self._on_message(message)
                elif handshake_received:
                    logger.debug("Ignoring %s from stale client (conn %d)", message_type, conn_id)
                else:
                    logger.debug("Ignoring %s before handshake (conn %d)", message_type, conn_id)
        except websockets.ConnectionClosed as e:
            logger.debug("Connection closed with error (conn %d): %s", conn_id, e)
        finally:
            logger.debug("Client disconnected (conn %d)", conn_id)
            if ws is self._active:
                self._active = None
                self._on_disconnect()

    async def _promote(self, ws: ServerConnection, message: dict[str, Any], conn_id: int) -> bool:
        if self._authorize is not None and not self._authorize(message):
            await ws.close(code=1008, reason="project mismatch")
            return False

        previous = self._active
        self._active = ws
        if previous is not None and previous is not ws:
            logger.debug("Replacing active client with conn %d", conn_id)
            self._on_disconnect()
        self._on_handshake(ws, message)

        if previous is not None and previous is not ws:
            with contextlib.suppress(WebSocketException, OSError):
                await previous.close()
        return True
