"""
Operator notifications for execution outcomes.

Builds the batch summary text ("Executed 3 buy orders for TCS. 1 failed.")
and hands it to the configured sender (Telegram by default). Investors are
never notified of engine failures from here.
"""

import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, Tuple

from pledge_engine.domain.models import BatchResult, PledgeSession
from pledge_engine.utils.notifications import send_tiered_telegram_message

logger = logging.getLogger(__name__)

Sender = Callable[[str, str, str], Awaitable[bool]]


async def _telegram_sender(tier: str, title: str, body: str) -> bool:
    return await send_tiered_telegram_message(tier=tier, title=title, body=body)


def format_batch_summary(session: PledgeSession, result: BatchResult) -> str:
    side = result.phase.value
    text = f"Executed {result.success_count} {side} orders for {session.stock_symbol}."
    if result.fail_count > 0:
        text += f" {result.fail_count} failed."
    if result.skipped_count > 0:
        text += f" {result.skipped_count} skipped (no matching buy execution)."
    if result.eligible_count == 0:
        text = f"No pledges ready for {side.upper()} execution in session {session.stock_symbol}."
    return text


class NotificationService:
    """Operator-facing notifications"""

    def __init__(self, sender: Optional[Sender] = None):
        self._sender = sender or _telegram_sender
        self.history: Deque[Tuple[str, str]] = deque(maxlen=200)

    async def batch_summary(self, session: PledgeSession, result: BatchResult) -> str:
        text = format_batch_summary(session, result)
        tier = "WARNING" if result.fail_count or result.skipped_count else "SUCCESS"
        await self._send(tier, f"{result.phase.value.upper()} execution: {session.stock_symbol}", text)
        return text

    async def execution_failed(self, session_id: int, stock_symbol: str, error: str) -> str:
        text = f"Failed to execute session {stock_symbol} (#{session_id}): {error}"
        await self._send("ERROR", "Execution failed", text)
        return text

    async def engine_error(self, error: str) -> str:
        text = f"Automated execution engine encountered an error: {error}"
        await self._send("ERROR", "Automated execution", text)
        return text

    async def _send(self, tier: str, title: str, body: str) -> None:
        self.history.append((tier, body))
        if tier == "ERROR":
            logger.error(body)
        else:
            logger.info(body)
        try:
            await self._sender(tier, title, body)
        except Exception as exc:
            # Notification delivery never affects execution outcome
            logger.error(f"Notification delivery failed: {exc}")
