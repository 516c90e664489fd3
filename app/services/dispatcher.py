"""
Tick handler: deliver every due scheduled item through the chat session.

Flow per tick:
1. Guard – if the chat session is not ready the whole tick is skipped and
   every item stays pending.
2. For each kind (links first, then status changes) fetch the due set with a
   fresh ``now`` and dispatch items one by one.
3. A dispatched item is marked executed; a failing item is logged and left
   pending so the next tick picks it up again (no backoff, no cap).

A failure of one item never stops the others, and a store failure only aborts
the kind it happened in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import db
from app.errors import DispatchError, StoreError
from app.services.chat_session import ChatSession, SessionState
from app.types.schedule_contract import ItemKind, TickSummary
from db.models import LinkPost, StatusChange

_LOGGER = logging.getLogger(__name__)


def compose_link_text(link: str, description: Optional[str] = None) -> str:
    if description:
        return f"*{description}*\n\n{link}"
    return link


async def dispatch_link_post(session: ChatSession, item: LinkPost) -> None:
    await session.send_message(item.chat_id, compose_link_text(item.link, item.description))


async def dispatch_status_change(session: ChatSession, item: StatusChange) -> None:
    # the announcement only goes out once the toggle went through
    await session.set_admins_only(item.chat_id, item.action == "close")
    if item.message:
        await session.send_message(item.chat_id, item.message)


_DISPATCHERS: Dict[ItemKind, Callable[[ChatSession, object], Awaitable[None]]] = {
    ItemKind.LINK: dispatch_link_post,
    ItemKind.STATUS: dispatch_status_change,
}


@dataclass
class TickReport:
    started_at: datetime
    skipped: Optional[str] = None
    executed: List[Tuple[ItemKind, int]] = field(default_factory=list)
    failed: List[Tuple[ItemKind, int, str]] = field(default_factory=list)
    aborted_kinds: List[ItemKind] = field(default_factory=list)

    def summary(self) -> dict:
        return TickSummary(
            started_at=self.started_at,
            skipped=self.skipped,
            executed=[f"{k.value}:{i}" for k, i in self.executed],
            failed=[f"{k.value}:{i}: {err}" for k, i, err in self.failed],
            aborted_kinds=self.aborted_kinds,
        ).model_dump(mode="json")


async def _session_ready(session: ChatSession) -> Optional[str]:
    """None when dispatch is possible, otherwise the reason to skip."""
    try:
        state = await session.get_state()
    except DispatchError as exc:
        return f"session state unavailable: {exc}"
    if state is not SessionState.READY:
        return f"session {state.value}"
    return None


async def _run_kind(
    session: ChatSession, kind: ItemKind, now: Optional[datetime], report: TickReport
) -> None:
    as_of = now or datetime.now(timezone.utc)
    try:
        due = await db.list_due(kind, as_of)
    except StoreError as exc:
        _LOGGER.error("Could not load due %s items, skipping them this tick: %s", kind.value, exc)
        report.aborted_kinds.append(kind)
        return
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Unexpected error loading due %s items, skipping them this tick", kind.value)
        report.aborted_kinds.append(kind)
        return

    dispatch = _DISPATCHERS[kind]
    for item in due:
        try:
            await dispatch(session, item)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Dispatch of %s %s to %s failed; will retry next tick", kind.value, item.id, item.chat_id)
            report.failed.append((kind, item.id, str(exc)))
            continue

        try:
            await db.mark_executed(kind, item.id)
        except StoreError as exc:
            # delivered but not recorded: it will be sent again next tick
            _LOGGER.error("Delivered %s %s but could not mark it executed: %s", kind.value, item.id, exc)
            report.failed.append((kind, item.id, str(exc)))
            continue
        except Exception as exc:  # noqa: BLE001
            _LOGGER.exception("Delivered %s %s but marking it executed failed", kind.value, item.id)
            report.failed.append((kind, item.id, str(exc)))
            continue
        report.executed.append((kind, item.id))
        _LOGGER.info("Executed %s %s for %s", kind.value, item.id, item.chat_id)


async def run_tick(session: ChatSession, now: Optional[datetime] = None) -> TickReport:
    """Run one sweep over both item kinds. Never raises for item or store failures."""
    report = TickReport(started_at=now or datetime.now(timezone.utc))

    reason = await _session_ready(session)
    if reason:
        _LOGGER.warning("Tick skipped: %s", reason)
        report.skipped = reason
        return report

    for kind in (ItemKind.LINK, ItemKind.STATUS):
        await _run_kind(session, kind, now, report)

    if report.executed or report.failed or report.aborted_kinds:
        _LOGGER.info(
            "Tick done: %d executed, %d failed, aborted=%s",
            len(report.executed), len(report.failed), [k.value for k in report.aborted_kinds],
        )
    return report
