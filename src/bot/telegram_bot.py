"""
Overlay Plans — Telegram Bot.

Chat front end for the planner: users register, pick a project, and tell
the bot in plain words (text or voice) when they are available or busy.
Every decision is made by ChatService; this module only renders its
responses and turns button presses back into service calls.

Access can be restricted with ALLOWED_USER_IDS; unauthorized users are
silently ignored.
"""

from __future__ import annotations

import logging
import tempfile
from functools import wraps
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update, WebAppInfo
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from src.bot.translations import LANGUAGE_NAMES, SUPPORTED_LANGUAGES, translate
from src.config import settings
from src.core.chat_service import (
    ErrorResponse,
    ProposalResponse,
    ResponseKind,
    StatusChangedResponse,
    SuccessResponse,
    ToolAppliedResponse,
)
from src.core.errors import ErrorKind
from src.core.tools import ToolName
from src.data.models import SlotStatus

if TYPE_CHECKING:
    from src.core.chat_service import ChatService, ServiceResponse
    from src.core.directory import Directory
    from src.data.models import Project, User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    An empty ALLOWED_USER_IDS opens the bot to everyone. Strangers never get
    a reply, so the bot does not reveal its existence to them.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        allowed = settings.ALLOWED_USER_IDS
        if user is None or (allowed and user.id not in allowed):
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chat(context: ContextTypes.DEFAULT_TYPE) -> ChatService:
    return context.bot_data["chat"]


def _resolve(update: Update, context: ContextTypes.DEFAULT_TYPE) -> User:
    """Map the Telegram sender to an internal user, registering on first contact."""
    tg_user = update.effective_user
    user, _ = _chat(context).register(
        tg_user.id,
        first_name=tg_user.first_name or "",
        last_name=tg_user.last_name or "",
        username=tg_user.username or "",
    )
    return user


def _reply_target(update: Update):
    return update.callback_query.message if update.callback_query else update.message


def _format_slot(slot: Any, lang: str) -> str:
    """One line per slot; works for stored slots and pending candidates."""
    start = slot.start_time.date().isoformat()
    end = slot.end_time.date().isoformat()
    span = start if start == end else f"{start} → {end}"
    icon = "🟢" if slot.status == SlotStatus.AVAILABLE else "🔴"
    line = f"{icon} {span} ({translate(lang, slot.status.value)})"
    if getattr(slot, "label", None):
        line += f" [{slot.label}]"
    if getattr(slot, "notes", None):
        line += f' "{slot.notes}"'
    if getattr(slot, "is_locked", False):
        line += " 🔒"
    return line


def _format_slots(slots: list[Any], lang: str) -> str:
    return "\n".join(_format_slot(s, lang) for s in slots)


def _projects_keyboard(projects: list[Project]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(p.name, callback_data=f"project:{p.id}")] for p in projects]
    )


def _language_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(LANGUAGE_NAMES[code], callback_data=f"lang:{code}")]
         for code in SUPPORTED_LANGUAGES]
    )


def _approval_keyboard(lang: str, allow_lock: bool) -> InlineKeyboardMarkup:
    row = [InlineKeyboardButton(translate(lang, "approve_all"), callback_data="slots:approve")]
    if allow_lock:
        row.append(InlineKeyboardButton(translate(lang, "approve_and_lock"), callback_data="slots:lock"))
    return InlineKeyboardMarkup([
        row,
        [InlineKeyboardButton(translate(lang, "reject_all"), callback_data="slots:reject")],
    ])


async def _send_projects(update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    projects = _chat(context).list_projects(user)
    await _reply_target(update).reply_text(
        translate(user.language, "your_projects"),
        reply_markup=_projects_keyboard(projects),
    )


async def _send_project_view(
    update: Update, context: ContextTypes.DEFAULT_TYPE, user: User, project: Project,
) -> None:
    lang = user.language
    slots = _chat(context).user_timeslots(user)
    lines = [f"📁 {translate(lang, 'project')}: {project.name}"]
    if project.description:
        lines.append(f"{translate(lang, 'description')}: {project.description}")
    lines.append("")
    if slots:
        lines.append(f"{translate(lang, 'existing_slots')}:")
        lines.append(_format_slots(slots, lang))
    else:
        lines.append(translate(lang, "no_slots"))
    lines.append("")
    lines.append(translate(lang, "send_availability"))

    markup = None
    if settings.WEBAPP_URL:
        markup = InlineKeyboardMarkup([[
            InlineKeyboardButton(
                translate(lang, "open_mini_app"),
                web_app=WebAppInfo(url=f"{settings.WEBAPP_URL}/projects/{project.id}"),
            )
        ]])
    await _reply_target(update).reply_text("\n".join(lines), reply_markup=markup)


def _error_text(response: ErrorResponse, lang: str, fallback_key: str) -> str:
    if response.error_kind in (None, ErrorKind.INTERNAL_ERROR):
        return translate(lang, fallback_key)
    if response.error_kind is ErrorKind.FORBIDDEN:
        return translate(lang, "cannot_edit_locked")
    return f"⚠️ {response.message}"


# ---------------------------------------------------------------------------
# Rendering service responses
# ---------------------------------------------------------------------------


async def _render(update: Update, user: User, response: ServiceResponse) -> None:
    lang = user.language
    target = _reply_target(update)

    if response.kind is ResponseKind.NEEDS_PROJECT:
        await target.reply_text(translate(lang, "select_project"))
        return

    if isinstance(response, ProposalResponse):
        available = [c for c in response.candidates if c.status == SlotStatus.AVAILABLE]
        busy = [c for c in response.candidates if c.status == SlotStatus.BUSY]
        listing = _format_slots(response.candidates, lang)
        if available and busy:
            text = translate(lang, "found_both", listing)
        elif busy:
            text = translate(lang, "found_busy", listing)
        else:
            text = translate(lang, "found_available", listing)
        if response.for_user is not None:
            text = f"👤 {translate(lang, 'creating_for')} {response.for_user.display_name}\n\n{text}"
        if response.message:
            text = f"{response.message}\n\n{text}"
        await target.reply_text(
            text, reply_markup=_approval_keyboard(lang, allow_lock=response.for_user is None),
        )
        return

    if isinstance(response, StatusChangedResponse):
        await target.reply_text(
            translate(lang, "status_changed", len(response.slots), _format_slots(response.slots, lang))
        )
        return

    if isinstance(response, ToolAppliedResponse):
        if response.tool is ToolName.DELETE:
            text = translate(lang, "slots_deleted", response.deleted_count)
        elif response.tool is ToolName.MERGE:
            text = translate(lang, "slots_merged", _format_slots(response.slots, lang))
        else:
            text = translate(lang, "status_changed", len(response.slots), _format_slots(response.slots, lang))
        await target.reply_text(text)
        return

    if isinstance(response, SuccessResponse):
        count = len(response.slots)
        if response.for_user is not None:
            text = translate(lang, "slots_added_for_user", count, response.for_user.display_name)
        elif response.locked:
            text = translate(lang, "slots_added_locked", count)
        else:
            text = translate(lang, "slots_added", count)
        await target.reply_text(text)
        return

    if isinstance(response, ErrorResponse):
        await target.reply_text(_error_text(response, lang, "error_processing_message"))
        return

    if response.kind is ResponseKind.REJECTED:
        await target.reply_text(translate(lang, "slots_rejected"))
        return

    # NO_ACTION: the LLM's own reply when it had one
    await target.reply_text(response.message or translate(lang, "no_slots_identified"))


async def _process_text(text: str, update: Update, context: ContextTypes.DEFAULT_TYPE, user: User) -> None:
    """Shared logic for typed and transcribed messages."""
    response = await _chat(context).process_text(user, text)
    await _render(update, user, response)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register, offer languages; `/start project_<id>` opens a project."""
    user = _resolve(update, context)

    if context.args and context.args[0].startswith("project_"):
        try:
            project_id = int(context.args[0].removeprefix("project_"))
        except ValueError:
            project_id = None
        project = _chat(context).select_project(user, project_id) if project_id else None
        if project is None:
            await update.message.reply_text(translate(user.language, "project_not_found"))
            return
        await _send_project_view(update, context, user, project)
        return

    await update.message.reply_text(
        translate(user.language, "welcome"), reply_markup=_language_keyboard(),
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    user = _resolve(update, context)
    await update.message.reply_text(translate(user.language, "help"))


@authorized_only
async def cmd_lang(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /lang — show the language picker."""
    user = _resolve(update, context)
    await update.message.reply_text(
        translate(user.language, "welcome"), reply_markup=_language_keyboard(),
    )


@authorized_only
async def cmd_projects(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /projects — list the user's projects as buttons."""
    user = _resolve(update, context)
    await _send_projects(update, context, user)


@authorized_only
async def cmd_slots(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /slots — show the current project with its time slots."""
    user = _resolve(update, context)
    project = _chat(context).current_project(user)
    if project is None:
        await update.message.reply_text(translate(user.language, "no_project_selected"))
        return
    await _send_project_view(update, context, user, project)


@authorized_only
async def cmd_for(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /for <name> — schedule on behalf of another project member."""
    chat = _chat(context)
    user = _resolve(update, context)
    lang = user.language

    if chat.current_project(user) is None:
        await update.message.reply_text(translate(lang, "no_project_selected"))
        return

    query = " ".join(context.args or []).strip()
    if not query:
        await update.message.reply_text(translate(lang, "user_search_help"))
        return

    if query.lower() in ("me", "myself", "moi", "я"):
        chat.act_for(user, None)
        await update.message.reply_text(translate(lang, "back_to_self"))
        return

    matches = chat.find_members(user, query)
    if not matches:
        await update.message.reply_text(translate(lang, "no_users_found", query))
        return

    buttons = [
        [InlineKeyboardButton(
            translate(lang, "create_slots_for", m.display_name), callback_data=f"for:{m.id}",
        )]
        for m in matches
    ]
    await update.message.reply_text(
        translate(lang, "users_found", len(matches), query),
        reply_markup=InlineKeyboardMarkup(buttons),
    )


# ---------------------------------------------------------------------------
# Callback handlers
# ---------------------------------------------------------------------------


@authorized_only
async def _handle_lang_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    code = query.data.split(":", 1)[1]
    if code not in SUPPORTED_LANGUAGES:
        return

    user = _resolve(update, context)
    context.bot_data["directory"].set_language(user.id, code)
    user.language = code
    await query.edit_message_text(translate(code, "language_set"))
    await _send_projects(update, context, user)


@authorized_only
async def _handle_project_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    user = _resolve(update, context)
    project = _chat(context).select_project(user, int(query.data.split(":", 1)[1]))
    if project is None:
        await query.message.reply_text(translate(user.language, "project_not_found"))
        return
    await _send_project_view(update, context, user, project)


@authorized_only
async def _handle_for_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    await query.answer()
    user = _resolve(update, context)
    target = _chat(context).act_for(user, int(query.data.split(":", 1)[1]))
    if target is None:
        await query.message.reply_text(translate(user.language, "no_users_found", ""))
        return
    await query.edit_message_text(
        translate(user.language, "create_slots_instructions", target.display_name)
    )


@authorized_only
async def _handle_approval_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Approve, approve & lock, or reject the pending proposal."""
    query = update.callback_query
    await query.answer()
    user = _resolve(update, context)
    chat = _chat(context)
    action = query.data.split(":", 1)[1]

    try:
        await query.edit_message_reply_markup(reply_markup=None)
    except Exception as exc:
        logger.debug("Could not remove approval keyboard: %s", exc)

    if action == "reject":
        await _render(update, user, chat.reject(user))
        return

    response = await chat.approve(user, lock=(action == "lock"))
    if response.kind is ResponseKind.NO_ACTION:
        await query.message.reply_text(translate(user.language, "no_slots_to_approve"))
        return
    if isinstance(response, ErrorResponse):
        await query.message.reply_text(_error_text(response, user.language, "error_adding_slots"))
        return
    await _render(update, user, response)


# ---------------------------------------------------------------------------
# Message handlers
# ---------------------------------------------------------------------------


@authorized_only
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle plain text messages — extract and reconcile time slots."""
    user = _resolve(update, context)
    processing_msg = await update.message.reply_text(translate(user.language, "processing"))
    await _process_text(update.message.text, update, context, user)
    try:
        await processing_msg.delete()
    except Exception as exc:
        logger.debug("Could not delete processing message: %s", exc)


@authorized_only
async def handle_voice(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle voice messages — transcribe via Whisper, then process as text."""
    from src.core.transcriber import transcribe_audio

    user = _resolve(update, context)
    lang = user.language
    voice = update.message.voice
    tmp_path: str | None = None

    try:
        voice_file = await context.bot.get_file(voice.file_id)
        with tempfile.NamedTemporaryFile(suffix=".ogg", delete=False) as tmp:
            tmp_path = tmp.name
        await voice_file.download_to_drive(tmp_path)

        try:
            text = await transcribe_audio(tmp_path, language=lang)
        except Exception as exc:
            logger.error("Transcription error: %s", exc)
            await update.message.reply_text(translate(lang, "cannot_transcribe"))
            return

        if not text:
            await update.message.reply_text(translate(lang, "cannot_transcribe"))
            return

        logger.info("Voice transcribed: %s", text[:80])
        await update.message.reply_text(f"🎤 {translate(lang, 'transcription_heard', text)}")
        await _process_text(text, update, context, user)

    except Exception as exc:
        logger.error("Voice handling error: %s", exc)
        await update.message.reply_text(translate(lang, "error_processing_voice"))
    finally:
        if tmp_path:
            Path(tmp_path).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(chat: ChatService, directory: Directory) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        chat: Chat service shared with every handler.
        directory: Identity & project directory (language changes).
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    app.bot_data["chat"] = chat
    app.bot_data["directory"] = directory

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("lang", cmd_lang))
    app.add_handler(CommandHandler("projects", cmd_projects))
    app.add_handler(CommandHandler("slots", cmd_slots))
    app.add_handler(CommandHandler("for", cmd_for))

    # Inline buttons
    app.add_handler(CallbackQueryHandler(_handle_lang_callback, pattern=r"^lang:"))
    app.add_handler(CallbackQueryHandler(_handle_project_callback, pattern=r"^project:\d+$"))
    app.add_handler(CallbackQueryHandler(_handle_for_callback, pattern=r"^for:\d+$"))
    app.add_handler(CallbackQueryHandler(_handle_approval_callback, pattern=r"^slots:(approve|lock|reject)$"))

    # Text messages (non-command)
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    # Voice messages
    app.add_handler(MessageHandler(filters.VOICE, handle_voice))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app
