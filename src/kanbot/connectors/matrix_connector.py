# src/kanbot/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import contextlib
import html
import logging
import time
from typing import Any, Optional, Set

from nio import AsyncClient, MatrixRoom, RoomMessageText, RoomSendError, SyncError, exceptions

from ..bot.router import BotRouter
from ..cli.bootstrap import build_reminder_pipeline, build_router
from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..reminders.dispatcher import ReminderNotice
from ..reminders.scheduler import run_reminder_scheduler
from .background import BackgroundRunner, start_in_background

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_MS = 30_000
RETRY_DELAY_SECONDS = 5.0


def _ms_now() -> int:
    return int(time.time() * 1000)


def _room_allowlist(settings_rooms: list[str]) -> Optional[Set[str]]:
    rooms = [r.strip() for r in (settings_rooms or []) if str(r).strip()]
    return set(rooms) if rooms else None


def render_notice_html(notice: ReminderNotice) -> str:
    """Matrix formatted_body for a reminder: header, title, fields, due line, link."""
    esc = html.escape
    parts = [
        f"<h4>{esc(notice.header)}</h4>",
        f"<p><b>{esc(notice.title)}</b></p>",
        "<p>" + "<br/>".join(f"<b>{esc(k)}:</b> {esc(v)}" for k, v in notice.fields) + "</p>",
        f"<p>{esc(notice.due_line)}</p>",
        f'<p><a href="{esc(notice.action_url, quote=True)}">{esc(notice.action_label)}</a></p>',
    ]
    return "".join(parts)


def _raise_on_send_error(resp: Any, room_id: str) -> None:
    if isinstance(resp, RoomSendError):
        raise RuntimeError(f"Matrix send to {room_id} failed: {resp.message}")


class MatrixMessenger:
    """
    OutboundMessenger over a nio AsyncClient.

    Reminders go to the explicit target room, else the configured reminder
    room, else the first allowed room, else any joined room. Failures raise
    so the dispatcher leaves the task unlatched.
    """

    def __init__(
            self,
            client: AsyncClient,
            *,
            default_room_id: str = "",
            allowed_rooms: Optional[Set[str]] = None,
    ) -> None:
        self._client = client
        self._default_room_id = (default_room_id or "").strip()
        self._allowed_rooms = allowed_rooms

    def resolve_room(self, target: str | None = None) -> str | None:
        room_id = (target or "").strip() or self._default_room_id
        if room_id:
            return room_id
        if self._allowed_rooms:
            return sorted(self._allowed_rooms)[0]
        if self._client.rooms:
            return next(iter(self._client.rooms.keys()))
        return None

    async def post_message(self, *, target: str | None, notice: ReminderNotice) -> None:
        room_id = self.resolve_room(target)
        if not room_id:
            raise RuntimeError("No Matrix room to post reminders to")

        resp = await self._client.room_send(
            room_id=room_id,
            message_type="m.room.message",
            content={
                "msgtype": "m.text",
                "body": notice.as_plain_text(),
                "format": "org.matrix.custom.html",
                "formatted_body": render_notice_html(notice),
            },
            ignore_unverified_devices=True,
        )
        _raise_on_send_error(resp, room_id)

    async def send_text(
            self,
            *,
            text: str,
            room_id: str | None = None,
            to_user_id: str | None = None,
    ) -> None:
        target = self.resolve_room(room_id)
        if not target:
            raise RuntimeError("No Matrix room to send text to")
        resp = await self._client.room_send(
            room_id=target,
            message_type="m.room.message",
            content={"msgtype": "m.text", "body": text},
            ignore_unverified_devices=True,
        )
        _raise_on_send_error(resp, target)


async def _sync_forever(client: AsyncClient, state: AppState, stop_event: asyncio.Event) -> None:
    """Long-poll sync; every successful sync is a heartbeat, failures degrade health."""
    first = True
    while not stop_event.is_set():
        try:
            resp = await client.sync(timeout=SYNC_TIMEOUT_MS, full_state=first)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.health.mark_degraded(f"Matrix sync failed: {e.__class__.__name__}")
            logger.warning("Matrix sync failed: %r", e)
        else:
            if isinstance(resp, SyncError):
                state.health.mark_degraded(f"Matrix sync error: {resp.message}")
                logger.warning("Matrix sync error: %s", resp.message)
            else:
                if first:
                    logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))
                    first = False
                state.health.heartbeat()
                continue

        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=RETRY_DELAY_SECONDS)


async def _run_matrix_bot(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Matrix connector (async):

    client -> reminder scheduler -> message callback -> sync loop

    main thread sets stop_event via loop.call_soon_threadsafe(stop_event.set);
    the sync loop checks it between long polls.
    """
    from .matrix_client import create_matrix_client

    settings = state.settings
    if not settings.matrix_homeserver or not settings.matrix_user_id:
        logger.error("Matrix is enabled but not configured (homeserver/user_id).")
        state.health.mark_degraded("Matrix is not configured")
        return

    startup_ts = _ms_now()
    allowed_rooms = _room_allowlist(getattr(settings, "matrix_rooms", []) or [])
    logger.info("Matrix allowed_rooms=%s", allowed_rooms if allowed_rooms is not None else "ALL")

    client = await create_matrix_client(settings)
    if client is None:
        logger.error("Matrix client creation failed; connector will stop.")
        state.health.mark_degraded("Matrix login failed")
        return

    logger.info(
        "Matrix client started (user=%s, homeserver=%s).",
        settings.matrix_user_id,
        settings.matrix_homeserver,
    )

    messenger = MatrixMessenger(
        client,
        default_room_id=getattr(settings, "reminder_room_id", ""),
        allowed_rooms=allowed_rooms,
    )
    router: BotRouter = build_router(state)

    # ---- Reminder scheduler ----

    scanner, dispatcher = build_reminder_pipeline(state, messenger, target=None)
    scheduler_task = asyncio.create_task(
        run_reminder_scheduler(
            scanner,
            dispatcher,
            interval_seconds=float(getattr(settings, "reminder_interval_seconds", 60.0)),
        )
    )

    # ---- Message callback ----

    async def reply(room_id: str, text: str) -> None:
        try:
            await messenger.send_text(text=text, room_id=room_id)
        except exceptions.OlmUnverifiedDeviceError:
            logger.warning("Cannot send reply: unverified device.")
        except Exception:
            logger.exception("Failed to send reply to %s.", room_id)

    async def message_callback(room: MatrixRoom, event: RoomMessageText) -> None:
        ts = getattr(event, "server_timestamp", None)
        if ts is not None and ts <= startup_ts:
            return
        if event.sender == client.user_id:
            return
        if allowed_rooms is not None and room.room_id not in allowed_rooms:
            return

        body = (event.body or "").strip()
        if not body:
            return

        logger.info("Matrix <%s> %s: %r", room.display_name, event.sender, body)

        if body.startswith("/"):
            try:
                resp = await asyncio.to_thread(
                    command_registry.handle, state, body, event.sender, room.room_id
                )
            except Exception:
                logger.exception("Command handler crashed.")
                resp = "Internal error while handling a command."
            if resp:
                await reply(room.room_id, resp)
            return

        with contextlib.suppress(Exception):
            await client.room_typing(room.room_id, typing_state=True, timeout=SYNC_TIMEOUT_MS)

        # Router calls are blocking (sqlite + LLM); each message gets its own worker thread.
        try:
            text = await asyncio.to_thread(router.handle, body)
        except Exception as e:
            logger.exception("Failed to handle Matrix message.")
            text = f"Sorry, I encountered an error: {e}"
        finally:
            with contextlib.suppress(Exception):
                await client.room_typing(room.room_id, typing_state=False, timeout=SYNC_TIMEOUT_MS)

        if text:
            await reply(room.room_id, text)

    client.add_event_callback(message_callback, RoomMessageText)

    # ---- Sync loop ----

    try:
        logger.info("Matrix sync loop started.")
        await _sync_forever(client, state, stop_event)
    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
    except Exception as e:
        logger.exception("Matrix connector crashed.")
        state.health.mark_degraded(f"Matrix connector crashed: {e}")
    finally:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task

        with contextlib.suppress(Exception):
            await client.close()

        logger.info("Matrix connector stopped.")


def start_matrix_in_background(state: AppState) -> BackgroundRunner | None:
    """Start the Matrix connector in its own thread so the console REPL can run in parallel."""
    if not state.settings.matrix_enabled:
        logger.info("Matrix connector disabled, not starting.")
        return None

    async def main(stop_event: asyncio.Event) -> None:
        await _run_matrix_bot(state, stop_event)

    return start_in_background("matrix", main)
