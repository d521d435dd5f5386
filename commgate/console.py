"""
Approval Console
================

Line-oriented operator loop over pending and flagged queue entries
(``gateway approve``). Flagged entries are listed first and marked ``!``.

The console has no authority of its own: approve and deny go through
ApprovalService, the same claim primitive the HTTP local endpoints use, so
racing the HTTP endpoint on one entry yields exactly one send.
"""

import logging
import sys
from typing import Callable, List, Optional, TextIO, Tuple

from commgate.core.errors import AlreadyResolved, GatewayError, NotFound
from commgate.core.timeutil import isoformat_utc
from commgate.models.queue import ActionStatus, QueueEntry
from commgate.services import queue_store
from commgate.services.approval_service import ApprovalOutcome, ApprovalService

logger = logging.getLogger(__name__)

BODY_PREVIEW_LINES = 15


def _one_line(text: Optional[str], width: int) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= width else text[: width - 3] + "..."


class ApprovalConsole:
    def __init__(
        self,
        service: ApprovalService,
        input_fn: Callable[[str], str] = input,
        output: Optional[TextIO] = None,
    ):
        self.service = service
        self.input_fn = input_fn
        self.output = output or sys.stdout

    def _print(self, line: str = "") -> None:
        self.output.write(line + "\n")
        self.output.flush()

    def _ask(self, prompt: str) -> Optional[str]:
        try:
            return self.input_fn(prompt).strip().lower()
        except (EOFError, KeyboardInterrupt):
            self._print()
            return None

    # -- rendering -----------------------------------------------------------

    def render_list(self, rows: List[Tuple[QueueEntry, str]]) -> None:
        if not rows:
            self._print("No pending messages.")
            return
        self._print(f"Pending approvals ({len(rows)}):")
        for idx, (entry, agent) in enumerate(rows, start=1):
            marker = "!" if entry.status == ActionStatus.FLAGGED.value else " "
            headline = entry.subject if entry.subject else entry.body
            self._print(
                f" {marker}{idx:>3}. [{entry.channel:<8}] {entry.recipient_address:<28} "
                f"{_one_line(headline, 40):<40}  {agent} ({entry.priority})"
            )

    def render_detail(self, entry: QueueEntry, agent: str) -> None:
        self._print()
        if entry.status == ActionStatus.FLAGGED.value:
            self._print("!! FLAGGED by content filter: review carefully !!")
        self._print(f"Agent:    {agent}")
        self._print(f"Channel:  {entry.channel}")
        self._print(f"Priority: {entry.priority}")
        self._print(f"Status:   {entry.status}")
        self._print(f"Queued:   {isoformat_utc(entry.created_at)}")
        recipient = entry.recipient_address
        if entry.recipient_name:
            recipient = f"{entry.recipient_name} <{entry.recipient_address}>"
        self._print(f"To:       {recipient}")
        if entry.subject:
            self._print(f"Subject:  {entry.subject}")
        self._print("-" * 60)
        lines = entry.body.splitlines() or [""]
        for line in lines[:BODY_PREVIEW_LINES]:
            self._print(line)
        if len(lines) > BODY_PREVIEW_LINES:
            self._print(f"... ({len(lines) - BODY_PREVIEW_LINES} more lines)")
        self._print("-" * 60)
        context = entry.context
        if context:
            self._print(f"Context:  {', '.join(sorted(context))}")

    def render_outcome(self, outcome: ApprovalOutcome) -> None:
        if outcome.status == ActionStatus.SENT.value:
            self._print("Sent.")
        elif outcome.status == ActionStatus.FAILED.value:
            self._print(f"Send failed: {outcome.error_message or 'unknown error'}")
        elif outcome.status == ActionStatus.DENIED.value:
            self._print("Denied.")
        else:
            self._print(f"Status: {outcome.status}")

    # -- actions -------------------------------------------------------------

    def act(self, action_id: str, approve: bool) -> Optional[ApprovalOutcome]:
        try:
            outcome = self.service.approve(action_id) if approve else self.service.deny(action_id)
        except AlreadyResolved as exc:
            self._print(f"Already resolved ({exc.status}).")
            return None
        except NotFound:
            self._print("Error: message no longer exists.")
            return None
        except GatewayError as exc:
            self._print(f"Error: {exc.message or exc.code}")
            return None
        self.render_outcome(outcome)
        return outcome

    def review(self, entry: QueueEntry, agent: str) -> bool:
        """Detail view for one entry. Returns False when the operator quits."""
        self.render_detail(entry, agent)
        while True:
            choice = self._ask("[a]pprove  [d]eny  [b]ack  [q]uit: ")
            if choice is None or choice in ("q", "quit"):
                return False
            if choice in ("b", "back", ""):
                return True
            if choice in ("a", "approve"):
                self.act(entry.id, approve=True)
                return True
            if choice in ("d", "deny"):
                self.act(entry.id, approve=False)
                return True
            self._print("Unknown choice.")

    def run(self) -> None:
        while True:
            rows = queue_store.list_pending()
            self._print()
            self.render_list(rows)
            if not rows:
                return
            choice = self._ask("Select # to review, [r]efresh, [q]uit: ")
            if choice is None or choice in ("q", "quit"):
                return
            if choice in ("r", "refresh", ""):
                continue
            if not choice.isdigit() or not 1 <= int(choice) <= len(rows):
                self._print(f"Enter a number between 1 and {len(rows)}.")
                continue
            entry, agent = rows[int(choice) - 1]
            if not self.review(entry, agent):
                return
