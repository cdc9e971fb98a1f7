"""Tests for daemon/sync/controller.py."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from websockets.asyncio.client import connect

from synclink.core.config import DaemonConfig
from synclink.core.hashing import short_project_hash
from synclink.daemon.sync.controller import SyncController
from synclink.daemon.sync.prompts import delete_action_id
from synclink.daemon.sync.types import (
    ConflictsResolved,
    ConflictVersion,
    ConflictVersionResponse,
    Disconnect,
    Effect,
    FileSyncedConfirmation,
    Handshake,
    InitWorkspace,
    LocalDeleteApproved,
    LocalDeleteRejected,
    RemoteFileChange,
    RemoteFileDelete,
    RequestFiles,
    Resolution,
    SyncMode,
    SyncState,
    TransportError,
)

PROJECT_HASH = "4f0c2a9e8d7b6a5f4e3d2c1b0a9f8e7d"
PEER = object()


def handshake_message(project_id: str = PROJECT_HASH) -> dict[str, str]:
    return {"type": "handshake", "projectId": project_id, "projectName": "Site"}


@pytest.fixture
def config(tmp_path: Path) -> DaemonConfig:
    return DaemonConfig(
        project_hash=PROJECT_HASH,
        host="127.0.0.1",
        port=0,
        explicit_dir=tmp_path / "proj",
    )


@pytest.fixture
def send() -> AsyncMock:
    return AsyncMock(return_value=True)


@pytest.fixture
def controller(config: DaemonConfig, send: AsyncMock, tmp_path: Path) -> SyncController:
    return SyncController(config, send=send, cwd=tmp_path, watch=False)


def sent_types(send: AsyncMock) -> list[str]:
    return [call.args[1]["type"] for call in send.await_args_list]


class TestSyncFlow:
    """Test complete exchanges through the queue."""

    @pytest.mark.asyncio
    async def test_handshake_then_file_list(
        self, controller: SyncController, config: DaemonConfig, send: AsyncMock
    ) -> None:
        controller.start()
        try:
            controller.handle_handshake(PEER, handshake_message())
            await controller.drain()

            assert controller.state.mode == SyncMode.HANDSHAKING
            assert controller.state.peer is PEER
            assert sent_types(send) == ["request-files"]
            assert config.files_dir is not None and config.files_dir.is_dir()

            controller.handle_message(
                {
                    "type": "file-list",
                    "files": [{"name": "Home.tsx", "content": "home", "modifiedAt": 5}],
                }
            )
            await controller.drain()

            assert controller.state.mode == SyncMode.WATCHING
            assert (config.files_dir / "Home.tsx").read_text(encoding="utf-8") == "home"
            assert sent_types(send) == ["request-files", "sync-complete"]
            meta = controller.metadata.get("Home.tsx")
            assert meta is not None
            assert meta.last_remote_timestamp == 5.0
        finally:
            await controller.close()

        assert config.state_file is not None
        assert config.state_file.exists()

    @pytest.mark.asyncio
    async def test_local_only_file_is_pushed(
        self, controller: SyncController, config: DaemonConfig, send: AsyncMock
    ) -> None:
        files_dir = config.explicit_dir / "files"  # type: ignore[operator]
        files_dir.mkdir(parents=True)
        (files_dir / "Local.tsx").write_text("mine", encoding="utf-8")

        controller.start()
        try:
            controller.handle_handshake(PEER, handshake_message())
            controller.handle_message({"type": "file-list", "files": []})
            await controller.drain()
        finally:
            await controller.close()

        send.assert_any_await(
            PEER, {"type": "file-change", "fileName": "Local.tsx", "content": "mine"}
        )
        assert controller.state.mode == SyncMode.WATCHING

    @pytest.mark.asyncio
    async def test_disconnect_returns_to_disconnected(self, controller: SyncController) -> None:
        controller.start()
        try:
            controller.handle_handshake(PEER, handshake_message())
            controller.handle_disconnect()
            await controller.drain()
        finally:
            await controller.close()

        assert controller.state == SyncState()


class TestDispatch:
    """Test the single-consumer processing loop."""

    @pytest.mark.asyncio
    async def test_follow_ups_run_before_next_effect(
        self, controller: SyncController, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Events returned by an effect are processed depth-first."""
        order: list[str] = []

        async def fake_execute(effect: Effect, state: SyncState) -> list:
            order.append(type(effect).__name__)
            if isinstance(effect, InitWorkspace):
                return [RequestFiles()]
            return []

        monkeypatch.setattr(controller.executor, "execute", fake_execute)

        await controller.process(
            Handshake(peer=PEER, project_id=PROJECT_HASH, project_name="Site")
        )

        assert order == [
            "InitWorkspace",
            "Log",
            "ListLocalFiles",
            "LoadPersistedState",
            "SendMessage",
        ]

    @pytest.mark.asyncio
    async def test_failing_event_does_not_stop_the_loop(
        self,
        controller: SyncController,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        calls = 0

        async def flaky_execute(effect: Effect, state: SyncState) -> list:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("boom")
            return []

        monkeypatch.setattr(controller.executor, "execute", flaky_execute)
        controller.start()
        try:
            with caplog.at_level(logging.ERROR):
                controller.handle_handshake(PEER, handshake_message())
                await controller.drain()
            controller.handle_disconnect()
            await controller.drain()
        finally:
            await controller.close()

        assert "Failed to process handshake" in caplog.text
        assert controller.state.mode == SyncMode.DISCONNECTED

    @pytest.mark.asyncio
    async def test_submit_threadsafe(
        self, controller: SyncController, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        submit = MagicMock()
        monkeypatch.setattr(controller, "submit", submit)
        controller.start()
        try:
            thread = threading.Thread(target=controller.submit_threadsafe, args=(Disconnect(),))
            thread.start()
            thread.join()
            for _ in range(10):
                if submit.called:
                    break
                await asyncio.sleep(0.01)
        finally:
            await controller.close()

        submit.assert_called_once_with(Disconnect())

    def test_submit_threadsafe_without_loop(self, controller: SyncController) -> None:
        controller.submit_threadsafe(Disconnect())


class TestAuthorize:
    """Test handshake authorization."""

    def test_full_hash(self, controller: SyncController) -> None:
        assert controller.authorize(handshake_message())

    def test_short_hash(self, controller: SyncController) -> None:
        assert controller.authorize(handshake_message(short_project_hash(PROJECT_HASH)))

    def test_other_project(
        self, controller: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING):
            assert not controller.authorize(handshake_message("ffffffffffffffff"))
        assert "Refusing plugin" in caplog.text

    def test_missing_project_id(self, controller: SyncController) -> None:
        assert not controller.authorize({"type": "handshake"})


class TestMessageTranslation:
    """Test translation of peer messages into events."""

    @pytest.fixture
    def submit(self, controller: SyncController, monkeypatch: pytest.MonkeyPatch) -> MagicMock:
        mock = MagicMock()
        monkeypatch.setattr(controller, "submit", mock)
        return mock

    def test_file_change(self, controller: SyncController, submit: MagicMock) -> None:
        controller.metadata.record_synced_snapshot("A.tsx", "h", 1.0)

        controller.handle_message({"type": "file-change", "fileName": "A.tsx", "content": "x"})

        [event] = [call.args[0] for call in submit.call_args_list]
        assert isinstance(event, RemoteFileChange)
        assert event.file.name == "A.tsx"
        assert event.file.content == "x"
        assert event.file.modified_at is not None
        assert event.file_meta == controller.metadata.get("A.tsx")

    def test_file_delete(self, controller: SyncController, submit: MagicMock) -> None:
        controller.handle_message({"type": "file-delete", "fileNames": ["A.tsx", "B.tsx"]})
        assert [call.args[0] for call in submit.call_args_list] == [
            RemoteFileDelete("A.tsx"),
            RemoteFileDelete("B.tsx"),
        ]

    def test_request_files(self, controller: SyncController, submit: MagicMock) -> None:
        controller.handle_message({"type": "request-files"})
        submit.assert_called_once_with(RequestFiles())

    def test_file_synced(self, controller: SyncController, submit: MagicMock) -> None:
        controller.handle_message(
            {"type": "file-synced", "fileName": "A.tsx", "remoteModifiedAt": 12}
        )
        submit.assert_called_once_with(FileSyncedConfirmation("A.tsx", 12.0))

    def test_conflicts_resolved(self, controller: SyncController, submit: MagicMock) -> None:
        controller.handle_message({"type": "conflicts-resolved", "resolution": "remote"})
        submit.assert_called_once_with(ConflictsResolved(Resolution.REMOTE))

    def test_conflict_version_response(
        self, controller: SyncController, submit: MagicMock
    ) -> None:
        controller.handle_message(
            {
                "type": "conflict-version-response",
                "versions": [{"fileName": "A.tsx", "latestRemoteVersionMs": 7}],
            }
        )
        submit.assert_called_once_with(
            ConflictVersionResponse((ConflictVersion("A.tsx", 7.0),))
        )

    @pytest.mark.asyncio
    async def test_delete_confirmed_resolves_prompt(
        self, controller: SyncController, submit: MagicMock, send: AsyncMock
    ) -> None:
        prompt = asyncio.create_task(
            controller.prompts.request_delete_decision(PEER, ["A.tsx"], require_confirmation=True)
        )
        for _ in range(5):
            await asyncio.sleep(0)

        controller.handle_message(
            {"type": "delete-confirmed", "fileNames": ["A.tsx", "Other.tsx"]}
        )

        assert await prompt == ["A.tsx"]
        submit.assert_called_once_with(LocalDeleteApproved("Other.tsx"))

    @pytest.mark.asyncio
    async def test_delete_cancelled(self, controller: SyncController, submit: MagicMock) -> None:
        prompt = asyncio.create_task(
            controller.prompts.request_delete_decision(PEER, ["A.tsx"], require_confirmation=True)
        )
        for _ in range(5):
            await asyncio.sleep(0)

        controller.handle_message(
            {"type": "delete-cancelled", "files": [{"fileName": "A.tsx", "content": "keep"}]}
        )

        assert await prompt == []
        submit.assert_called_once_with(LocalDeleteRejected("A.tsx", "keep"))

    @pytest.mark.asyncio
    async def test_delete_confirmed_settles_whole_batch(
        self, controller: SyncController, submit: MagicMock
    ) -> None:
        """Files the plugin does not have are never answered for."""
        prompt = asyncio.create_task(
            controller.prompts.request_delete_decision(
                PEER, ["A.tsx", "Unsynced.tsx"], require_confirmation=True
            )
        )
        for _ in range(5):
            await asyncio.sleep(0)

        controller.handle_message({"type": "delete-confirmed", "fileNames": ["A.tsx"]})

        assert await asyncio.wait_for(prompt, timeout=1.0) == ["A.tsx"]
        assert controller.prompts.pending_count == 0
        submit.assert_not_called()

    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_prompts(
        self, controller: SyncController, submit: MagicMock
    ) -> None:
        prompt = asyncio.create_task(
            controller.prompts.request_delete_decision(PEER, ["A.tsx"], require_confirmation=True)
        )
        for _ in range(5):
            await asyncio.sleep(0)

        controller.handle_disconnect()

        assert await prompt == []
        assert controller.prompts.pending_count == 0
        submit.assert_called_once_with(Disconnect())

    def test_unknown_type(
        self,
        controller: SyncController,
        submit: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING):
            controller.handle_message({"type": "mystery"})
        submit.assert_not_called()
        assert "Unknown message type: mystery" in caplog.text

    def test_invalid_payload(
        self,
        controller: SyncController,
        submit: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING):
            controller.handle_message({"type": "file-change", "fileName": "A.tsx"})
        submit.assert_not_called()
        assert "Dropping invalid message" in caplog.text


class TestServe:
    """Test the controller behind a real WebSocket server."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, config: DaemonConfig, tmp_path: Path) -> None:
        controller = SyncController(config, cwd=tmp_path, watch=False)
        await controller.serve()
        try:
            async with connect(f"ws://127.0.0.1:{controller.port}") as ws:
                await ws.send(json.dumps(handshake_message()))
                request = json.loads(await asyncio.wait_for(ws.recv(), timeout=5))
                assert request == {"type": "request-files"}

                await ws.send(
                    json.dumps(
                        {"type": "file-list", "files": [{"name": "A.tsx", "content": "a"}]}
                    )
                )
                done = json.loads(await asyncio.wait_for(ws.recv(), timeout=5))
                assert done == {"type": "sync-complete"}

            assert config.files_dir is not None
            assert (config.files_dir / "A.tsx").read_text(encoding="utf-8") == "a"
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_refuses_other_project(self, config: DaemonConfig, tmp_path: Path) -> None:
        controller = SyncController(config, cwd=tmp_path, watch=False)
        await controller.serve()
        try:
            async with connect(f"ws://127.0.0.1:{controller.port}") as ws:
                await ws.send(json.dumps(handshake_message("ffffffffffffffff")))
                await asyncio.wait_for(ws.wait_closed(), timeout=5)
                assert ws.close_code == 1008
            assert controller.state.mode == SyncMode.DISCONNECTED
        finally:
            await controller.close()

    @pytest.mark.asyncio
    async def test_serve_without_port(self, config: DaemonConfig, tmp_path: Path) -> None:
        config.port = None
        controller = SyncController(config, cwd=tmp_path, watch=False)
        with pytest.raises(TransportError, match="No port configured"):
            await controller.serve()
        assert controller.port is None


class TestConnectionNotices:
    """Test the status messages around connects and disconnects."""

    @pytest.fixture
    def quick(self, config: DaemonConfig, send: AsyncMock, tmp_path: Path) -> SyncController:
        return SyncController(
            config, send=send, cwd=tmp_path, watch=False, disconnect_notice_delay_s=0.01
        )

    @pytest.mark.asyncio
    async def test_first_handshake_greets(
        self, controller: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO):
            controller.handle_handshake(PEER, handshake_message())
        assert "Connected to Site" in caplog.text

    @pytest.mark.asyncio
    async def test_disconnect_notice_is_delayed(
        self, quick: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO):
            quick.handle_disconnect()
            assert "Disconnected, waiting to reconnect..." not in caplog.text
            await asyncio.sleep(0.05)

        assert "Disconnected, waiting to reconnect..." in caplog.text
        assert quick.notices.disconnect_shown

    @pytest.mark.asyncio
    async def test_reconnect_does_not_greet_again(
        self, quick: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        quick.handle_handshake(PEER, handshake_message())
        quick.handle_disconnect()
        await asyncio.sleep(0.05)

        caplog.clear()
        with caplog.at_level(logging.INFO):
            quick.handle_handshake(PEER, handshake_message())
        assert "Connected to" not in caplog.text

    @pytest.mark.asyncio
    async def test_quick_reconnect_cancels_notice(
        self, controller: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO):
            controller.handle_disconnect()
            assert controller.notices.notice_pending
            controller.handle_handshake(PEER, handshake_message())

        assert not controller.notices.notice_pending
        assert controller.notices.recently_disconnected
        assert not controller.notices.disconnect_shown
        assert "Connected to" not in caplog.text
        assert "Disconnected" not in caplog.text

    @pytest.mark.asyncio
    async def test_close_cancels_pending_notice(
        self, quick: SyncController, caplog: pytest.LogCaptureFixture
    ) -> None:
        quick.handle_disconnect()
        await quick.close()
        with caplog.at_level(logging.INFO):
            await asyncio.sleep(0.05)
        assert "Disconnected, waiting to reconnect..." not in caplog.text
