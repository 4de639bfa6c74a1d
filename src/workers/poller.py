"""
Status Reconciliation Poller
============================

One asyncio task per in-flight payment transaction.

Each task asks the provider for the transaction's status every
``PAYMENT_POLL_INTERVAL_SECONDS`` (default 5 s), at most
``PAYMENT_POLL_MAX_ATTEMPTS`` times (default 36).  It stops as soon as

* the transaction is already terminal in storage (a webhook won), or
* the provider reports a terminal status -> ``reconcile``.

When the bound is reached the transaction is reconciled as ``EXPIRED``, so
seats held by an abandoned payment always come back.  Provider timeouts and
unknown answers during a query count as an attempt.

Tasks are cancellable per transaction (rider abandons) and all at once
(shutdown).  ``resume_orphans`` re-attaches polling to transactions whose
task was lost, e.g. after a restart.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from src.config import settings
from src.domain.enums import TERMINAL_TRANSACTION_STATUSES, TransactionStatus
from src.domain.exceptions import PaymentError
from src.infrastructure.database import utcnow
from src.infrastructure.repositories import PaymentTransactionRepository
from src.services.payment import PaymentOrchestrator

logger = logging.getLogger(__name__)


class ReconciliationPoller:
    def __init__(
        self,
        orchestrator: PaymentOrchestrator,
        interval_seconds: float = settings.payment_poll_interval_seconds,
        max_attempts: int = settings.payment_poll_max_attempts,
    ):
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._tasks: dict[int, asyncio.Task] = {}

    # ── Public API ────────────────────────────────────────────────────

    def track(self, transaction_id: int) -> bool:
        """Start polling *transaction_id*.  False if it is already tracked."""
        if self.is_tracking(transaction_id):
            return False
        task = asyncio.create_task(
            self._run(transaction_id), name=f"payment-poll-{transaction_id}"
        )
        self._tasks[transaction_id] = task
        task.add_done_callback(lambda t: self._forget(transaction_id, t))
        logger.info("Polling transaction %d", transaction_id)
        return True

    def is_tracking(self, transaction_id: int) -> bool:
        task = self._tasks.get(transaction_id)
        return task is not None and not task.done()

    @property
    def tracked(self) -> list[int]:
        return [tid for tid in self._tasks if self.is_tracking(tid)]

    async def cancel(self, transaction_id: int) -> bool:
        task = self._tasks.pop(transaction_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped polling transaction %d", transaction_id)
        return True

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Reconciliation poller stopped (%d task(s) cancelled)", len(tasks))

    async def resume_orphans(self, older_than: timedelta = timedelta(0)) -> int:
        """Track active transactions that have no live task."""
        cutoff = utcnow() - older_than
        async with self.orchestrator.session_factory() as session:
            active = await PaymentTransactionRepository(session).get_active(
                created_before=cutoff
            )
        resumed = sum(1 for txn in active if self.track(txn.id))
        if resumed:
            logger.info("Resumed polling for %d orphaned transaction(s)", resumed)
        return resumed

    async def poll_once(self, transaction_id: int) -> bool:
        """One status query.  Returns True when nothing is left to poll."""
        async with self.orchestrator.session_factory() as session:
            attempt = await PaymentTransactionRepository(session).get_by_id(
                transaction_id
            )
        if attempt is None or attempt.status in TERMINAL_TRANSACTION_STATUSES:
            return True
        if attempt.external_ref is None:
            # Initiation outcome unknown; wait for a webhook or the bound
            return False

        gateway = self.orchestrator.gateway_for(attempt.provider)
        try:
            status = await gateway.query_status(attempt.external_ref)
        except PaymentError as exc:
            logger.warning(
                "Status query for transaction %d failed: %s", transaction_id, exc.message
            )
            return False

        if not status.is_terminal:
            return False
        await self.orchestrator.reconcile(transaction_id, status.to_transaction_status())
        return True

    # ── Internals ─────────────────────────────────────────────────────

    async def _run(self, transaction_id: int) -> None:
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.interval_seconds)
            try:
                if await self.poll_once(transaction_id):
                    return
            except Exception:
                logger.exception(
                    "Error polling transaction %d (attempt %d)", transaction_id, attempt
                )

        logger.info(
            "Transaction %d unresolved after %d polls, expiring",
            transaction_id,
            self.max_attempts,
        )
        try:
            await self.orchestrator.reconcile(
                transaction_id,
                TransactionStatus.EXPIRED,
                "No final answer from the provider",
            )
        except Exception:
            logger.exception("Could not expire transaction %d", transaction_id)

    def _forget(self, transaction_id: int, task: asyncio.Task) -> None:
        if self._tasks.get(transaction_id) is task:
            del self._tasks[transaction_id]
