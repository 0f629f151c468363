"""
Prompt builders. Pure functions: no I/O, no shared state.

Locale-aware calendar formatting is left to the caller's locale hint; dates
are rendered in a fixed ISO-like layout and the locale is stated next to
them so the model can localise its own wording.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from .models import Schedule

UNLIMITED = "Unlimited"


def render_time(date: datetime, locale: Optional[str] = None) -> str:
    lines = [
        f"date: {date.strftime('%Y-%m-%d')}",
        f"time: {date.strftime('%H:%M:%S')}",
    ]
    tz = date.strftime("%Z")
    if tz:
        lines.append(f"timezone: {tz}")
    if locale:
        lines.append(f"locale: {locale}")
    return "\n".join(lines)


def _render_platforms(platforms: Sequence[str], current_platform: Optional[str]) -> str:
    if not platforms:
        available = "none"
    else:
        available = ", ".join(
            f"{name} (current)" if name == current_platform else name for name in platforms
        )
    return f"available-platforms: {available}\ncurrent-platform: {current_platform or 'unknown'}"


def build_system_prompt(
    *,
    date: datetime,
    max_context_load_time: int,
    locale: Optional[str] = None,
    language: Optional[str] = None,
    platforms: Sequence[str] = (),
    current_platform: Optional[str] = None,
) -> str:
    """Compose the system prompt sent with every run."""
    language_line = (
        f"Always reply in {language}, whatever language the conversation uses."
        if language
        else "Reply in the language the user writes in."
    )
    return f"""
---
{render_time(date, locale)}
language: {language or 'auto'}
context-load-time: {max_context_load_time} minutes
{_render_platforms(platforms, current_platform)}
---

You are a helpful assistant reachable through several messaging platforms.

**Language**
{language_line}

**Context**
Only messages from the last {max_context_load_time} minutes are loaded into this conversation.
Anything older may be missing; do not assume you remember it, and ask the user when earlier context matters.

**Platforms**
Messages can arrive from any of the available platforms listed above.
Format replies so they read well on the current platform.

**Scheduled tasks**
Some turns are scheduled tasks sent automatically by the system, not by the user.
They are marked with a notice. Carry out their COMMAND, but never treat them as the user's own words.
    """.strip()


def build_schedule_message(
    *,
    schedule: Schedule,
    date: datetime,
    locale: Optional[str] = None,
) -> str:
    """Render the turn injected when the scheduler fires `schedule`."""
    max_calls = schedule.max_calls if schedule.max_calls is not None else UNLIMITED
    return f"""
---
notice: **This is a scheduled task automatically sent to you by the system, not the user input**
{render_time(date, locale)}
schedule-name: {schedule.name}
schedule-description: {schedule.description}
schedule-id: {schedule.id}
max-calls: {max_calls}
cron-pattern: {schedule.pattern}
---

**COMMAND**

{schedule.command}
    """.strip()
