"""
Tolerance Tracker — Telegram Bot.

The caregiver-facing client. Each Telegram chat is one device: it has its
own session (current user + room), its own join saga and its own daily
dose reminders, all persisted so a restart picks them back up.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from src.config import settings
from src.core.join_saga import JoinError, JoinErrorKind, JoinSaga
from src.core.reminders import ReminderReconciler, SettingsWriteError
from src.core.rooms import RoomAccessDenied, leave_room, sign_out, switch_room
from src.core.session import SessionContext, restore_session
from src.data.models import Category, format_reminder_time, parse_reminder_time
from src.ports.remote_store_port import RemoteStoreError
from src.ports.reminder_scheduler_port import SchedulerError

if TYPE_CHECKING:
    from telegram.ext import JobQueue

    from src.data.db import SettingsDB
    from src.ports.notification_port import NotificationPort
    from src.ports.remote_store_port import RemoteStorePort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Per-chat client
# ---------------------------------------------------------------------------


@dataclass
class ChatClient:
    """Everything one chat (device) needs: session, join saga, reminders."""

    session: SessionContext
    saga: JoinSaga
    reconciler: ReminderReconciler


def _get_client(bot_data: dict, job_queue: JobQueue, chat_id: int) -> ChatClient:
    """Return the chat's client, creating it on first use."""
    clients: dict[int, ChatClient] = bot_data.setdefault("clients", {})
    client = clients.get(chat_id)
    if client is not None:
        return client

    from src.adapters.telegram_scheduler import TelegramReminderScheduler

    remote: RemoteStorePort = bot_data["remote"]
    settings_db: SettingsDB = bot_data["settings_db"]
    notifier: NotificationPort = bot_data["notifier"]

    session = SessionContext(settings_db, scope=str(chat_id))
    scheduler = TelegramReminderScheduler(job_queue, notifier, chat_id)
    client = ChatClient(
        session=session,
        saga=JoinSaga(remote, session),
        reconciler=ReminderReconciler(remote, scheduler, session),
    )
    clients[chat_id] = client
    return client


def _client_for(update: Update, context: ContextTypes.DEFAULT_TYPE) -> ChatClient:
    return _get_client(context.bot_data, context.job_queue, update.effective_chat.id)


async def _safe_reply(update: Update, text: str, **kwargs: Any) -> None:
    """Reply, dropping the message if the chat is no longer reachable."""
    try:
        await update.message.reply_text(text, **kwargs)
    except TelegramError as exc:
        logger.warning("Dropping reply to chat %s: %s", update.effective_chat.id, exc)


_NOT_JOINED = "You haven't joined a room yet. Use /join with your invitation code."


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message."""
    client = _client_for(update, context)
    if client.session.is_active:
        user = client.session.current_user
        status = f"You're in room {client.session.current_room_id} as {user.name}."
    else:
        status = "Use /join to enter a room with your invitation code."

    await update.message.reply_text(
        "Welcome to Tolerance Tracker!\n\n"
        "I keep every caregiver in sync on the patient's program and send "
        "daily dose reminders.\n\n"
        f"{status}\n\n"
        "Type /help for the full command list.",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    categories = ", ".join(c.label.lower() for c in Category)
    await update.message.reply_text(
        "Available commands:\n"
        "/join — Join a room with an invitation code\n"
        "/reminders — Show your dose reminders for this room\n"
        "/remind <category> on|off — Turn a daily reminder on or off\n"
        "/remindtime <category> HH:MM — Set a reminder's time\n"
        "/switchroom <room id> — Switch to another room you've joined\n"
        "/leave — Leave the current room\n"
        "/signout — Forget this chat's user and cancel its reminders\n"
        "/help — Show this message\n\n"
        f"Categories: {categories}",
    )


# ---------------------------------------------------------------------------
# /join conversation
# ---------------------------------------------------------------------------

JOIN_CODE, JOIN_NAME = range(2)

_JOIN_ERROR_MESSAGES = {
    JoinErrorKind.INVALID_INVITATION: "Invalid or expired invitation code.",
    JoinErrorKind.ROOM_GONE: "The room associated with this invitation no longer exists.",
    JoinErrorKind.USER_WRITE_FAILED: "Error creating user account. Please try again.",
    JoinErrorKind.ACCESS_GRANT_FAILED: "Error granting room access. Please try again.",
    JoinErrorKind.CONNECTION_ERROR: "Error connecting to the server. Please try again.",
    JoinErrorKind.SESSION_SAVE_FAILED: (
        "You were added to the room, but this chat couldn't save it. "
        "Please try again later."
    ),
    JoinErrorKind.ALREADY_IN_PROGRESS: "That invitation is already being processed, please wait.",
}


@authorized_only
async def cmd_join(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Handle /join [code] — start the join conversation."""
    if context.args:
        return await _accept_code(update, context, context.args[0])
    await update.message.reply_text("Enter your invitation code:")
    return JOIN_CODE


async def join_code(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the invitation code, ask for the caregiver's name."""
    return await _accept_code(update, context, update.message.text)


async def _accept_code(
    update: Update, context: ContextTypes.DEFAULT_TYPE, raw_code: str,
) -> int:
    # Codes are case-sensitive; only surrounding whitespace is dropped
    code = raw_code.strip()
    if not code:
        await update.message.reply_text("The invitation code can't be empty. Try again:")
        return JOIN_CODE
    context.user_data["join_code"] = code
    _client_for(update, context).session.set_draft_room_code(code)
    await update.message.reply_text("What's your name?")
    return JOIN_NAME


async def join_name(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive the display name and run the join."""
    name = update.message.text.strip()
    if not name:
        await update.message.reply_text("Your name can't be empty. What's your name?")
        return JOIN_NAME

    code = context.user_data.pop("join_code", "")
    client = _client_for(update, context)
    await update.message.reply_text("Joining room…")

    # Shielded: if this handler is cancelled the join still runs to the end
    # and commits; only the reply below is lost.
    try:
        result = await asyncio.shield(client.saga.join(code, name))
    except JoinError as exc:
        logger.error("Join with code %r failed at %s: %s", code, exc.stage.value, exc)
        await _safe_reply(update, _JOIN_ERROR_MESSAGES[exc.kind])
        return ConversationHandler.END

    await _safe_reply(
        update,
        f"Welcome, {result.user.name}! You've joined room {result.room_id}.\n"
        "Use /reminders to set up daily dose reminders.",
    )
    await _refresh_reminders(update, client)
    return ConversationHandler.END


async def join_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancel the join conversation."""
    context.user_data.pop("join_code", None)
    _client_for(update, context).session.set_draft_room_code(None)
    await update.message.reply_text("Join cancelled.")
    return ConversationHandler.END


async def _refresh_reminders(update: Update, client: ChatClient) -> None:
    """Load the room's reminder settings after a session change."""
    user = client.session.current_user
    room_id = client.session.current_room_id
    if user is None or room_id is None:
        return
    try:
        await client.reconciler.load_room_settings(user.id, room_id)
    except (RemoteStoreError, SchedulerError) as exc:
        logger.error("Reminder load for room %s failed: %s", room_id, exc)
        await _safe_reply(update, "Couldn't load reminder settings right now. Try /reminders later.")


# ---------------------------------------------------------------------------
# Reminders
# ---------------------------------------------------------------------------


def _format_reminders(client: ChatClient) -> str:
    lines = [f"Dose reminders for room {client.session.current_room_id}:"]
    for category, setting in client.reconciler.current_settings().items():
        if setting.enabled and setting.time is not None:
            lines.append(f"• {category.label}: on at {format_reminder_time(setting.time)}")
        elif setting.enabled:
            lines.append(f"• {category.label}: on")
        else:
            lines.append(f"• {category.label}: off")
    return "\n".join(lines)


@authorized_only
async def cmd_reminders(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reminders — load room settings, reconcile, and list them."""
    client = _client_for(update, context)
    if not client.session.is_active:
        await update.message.reply_text(_NOT_JOINED)
        return

    user, room_id = client.session.require_active()
    try:
        await client.reconciler.load_room_settings(user.id, room_id)
    except (RemoteStoreError, SchedulerError) as exc:
        logger.error("/reminders failed for room %s: %s", room_id, exc)
        await update.message.reply_text(
            "Couldn't refresh from the server, showing saved settings.\n\n"
            + _format_reminders(client)
        )
        return
    await update.message.reply_text(_format_reminders(client))


@authorized_only
async def cmd_remind(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remind <category> on|off."""
    client = _client_for(update, context)
    if not client.session.is_active:
        await update.message.reply_text(_NOT_JOINED)
        return

    args = context.args or []
    category = Category.from_user_text(args[0]) if args else None
    switch = args[1].lower() if len(args) > 1 else ""
    if category is None or switch not in ("on", "off"):
        await update.message.reply_text("Usage: /remind <category> on|off")
        return

    enabled = switch == "on"
    try:
        await client.reconciler.set_enabled(category, enabled)
    except SettingsWriteError as exc:
        await update.message.reply_text(f"{exc} Your change is kept on this device.")
        return
    except SchedulerError as exc:
        logger.error("/remind scheduling failed: %s", exc)
        await update.message.reply_text("Saved, but the local reminder couldn't be updated.")
        return

    if enabled:
        when = client.session.current_user.reminder_times[category]
        await update.message.reply_text(
            f"{category.label} reminder on, daily at {format_reminder_time(when)}."
        )
    else:
        await update.message.reply_text(f"{category.label} reminder off.")


@authorized_only
async def cmd_remindtime(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /remindtime <category> HH:MM."""
    client = _client_for(update, context)
    if not client.session.is_active:
        await update.message.reply_text(_NOT_JOINED)
        return

    args = context.args or []
    category = Category.from_user_text(args[0]) if args else None
    try:
        when = parse_reminder_time(args[1]) if len(args) > 1 and ":" in args[1] else None
    except ValueError:
        when = None
    if category is None or when is None:
        await update.message.reply_text("Usage: /remindtime <category> HH:MM")
        return

    try:
        await client.reconciler.set_time(category, when)
    except SettingsWriteError as exc:
        await update.message.reply_text(f"{exc} Your change is kept on this device.")
        return
    except SchedulerError as exc:
        logger.error("/remindtime scheduling failed: %s", exc)
        await update.message.reply_text("Saved, but the local reminder couldn't be updated.")
        return

    await update.message.reply_text(
        f"{category.label} reminder time set to {format_reminder_time(when)}."
    )


# ---------------------------------------------------------------------------
# Room session commands
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_switchroom(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /switchroom <room id>."""
    client = _client_for(update, context)
    if not client.session.is_active:
        await update.message.reply_text(_NOT_JOINED)
        return
    if not context.args:
        await update.message.reply_text("Usage: /switchroom <room id>")
        return

    room_id = context.args[0].strip()
    try:
        await switch_room(client.session, context.bot_data["remote"], client.reconciler, room_id)
    except RoomAccessDenied as exc:
        await update.message.reply_text(str(exc))
        return
    except (RemoteStoreError, SchedulerError) as exc:
        logger.error("/switchroom %s failed: %s", room_id, exc)
        await update.message.reply_text("Error connecting to the server. Please try again.")
        return
    await update.message.reply_text(f"Switched to room {room_id}.")


@authorized_only
async def cmd_leave(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /leave [room id] — leave the current (or given) room."""
    client = _client_for(update, context)
    if not client.session.is_active:
        await update.message.reply_text(_NOT_JOINED)
        return

    room_id = context.args[0].strip() if context.args else client.session.current_room_id
    try:
        active = await leave_room(
            client.session, context.bot_data["remote"], client.reconciler, room_id,
        )
    except (RemoteStoreError, SchedulerError) as exc:
        logger.error("/leave %s failed: %s", room_id, exc)
        await update.message.reply_text("Error leaving room. Please try again.")
        return

    if active is None:
        await update.message.reply_text(
            f"You left room {room_id}. You have no other rooms; use /join to enter one."
        )
    else:
        await update.message.reply_text(f"You left room {room_id}. Active room: {active}.")


@authorized_only
async def cmd_signout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /signout — cancel reminders and forget this chat's session."""
    client = _client_for(update, context)
    try:
        await sign_out(client.session, client.reconciler)
    except SchedulerError as exc:
        logger.error("/signout failed: %s", exc)
        await update.message.reply_text("Couldn't cancel reminders. Please try again.")
        return
    await update.message.reply_text("Signed out. Use /join to enter a room again.")


# ---------------------------------------------------------------------------
# Startup: restore persisted sessions and reconcile their reminders
# ---------------------------------------------------------------------------


async def _restore_sessions(app: Application) -> None:
    """Bring every persisted chat session back and reconcile its reminders."""
    settings_db: SettingsDB = app.bot_data["settings_db"]
    restored = 0
    for scope in settings_db.list_scopes():
        try:
            chat_id = int(scope)
        except ValueError:
            logger.warning("Skipping settings scope %r: not a chat id", scope)
            continue

        client = _get_client(app.bot_data, app.job_queue, chat_id)
        try:
            if not await restore_session(client.session, app.bot_data["remote"], settings.TIMEZONE):
                continue
            user, room_id = client.session.require_active()
            await client.reconciler.load_room_settings(user.id, room_id)
            restored += 1
        except (RemoteStoreError, SchedulerError) as exc:
            logger.error("Failed to restore session for chat %d: %s", chat_id, exc)

    logger.info("Restored %d chat session(s)", restored)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    remote: RemoteStorePort | None = None,
    notifier: NotificationPort | None = None,
    settings_db: SettingsDB | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        remote: Remote store implementation. Defaults to the configured provider.
        notifier: Notification port implementation. Defaults to TelegramNotifier
                  (created from the bot instance after app is built).
        settings_db: Local settings store. Defaults to DATABASE_PATH.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_restore_sessions)
        .build()
    )

    # Wire default adapters if not provided
    if remote is None:
        from src.adapters.remote_store_factory import create_remote_store
        remote = create_remote_store()

    if notifier is None:
        from src.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    if settings_db is None:
        from src.data.db import SettingsDB
        settings_db = SettingsDB()

    # Store ports in bot_data for handler access
    app.bot_data["remote"] = remote
    app.bot_data["notifier"] = notifier
    app.bot_data["settings_db"] = settings_db

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("reminders", cmd_reminders))
    app.add_handler(CommandHandler("remind", cmd_remind))
    app.add_handler(CommandHandler("remindtime", cmd_remindtime))
    app.add_handler(CommandHandler("switchroom", cmd_switchroom))
    app.add_handler(CommandHandler("leave", cmd_leave))
    app.add_handler(CommandHandler("signout", cmd_signout))

    # /join conversation handler
    _text = filters.TEXT & ~filters.COMMAND
    join_conv = ConversationHandler(
        entry_points=[CommandHandler("join", cmd_join)],
        states={
            JOIN_CODE: [MessageHandler(_text, join_code)],
            JOIN_NAME: [MessageHandler(_text, join_name)],
        },
        fallbacks=[CommandHandler("cancel", join_cancel)],
    )
    app.add_handler(join_conv)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Tolerance Tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
