"""
NotificationOutbox -- durable, best-effort notification queue.

Responsibility:
    Persists the ``NotificationIntent`` records the dispatcher produces and
    later hands them to a delivery sink (email, push, in-app).

Architecture position:
    Kernel > Services.  Called by the WorkflowEngine after a state change
    has been written; delivery runs independently (worker, cron, test).

Invariants enforced:
    - ``enqueue`` NEVER raises.  Each batch is written inside its own
      SAVEPOINT; on failure the savepoint is rolled back, the failure is
      logged, and the caller's request state is untouched.
    - A notification is delivered at most once per successful sink call;
      failures increment ``attempts`` and the row turns ``failed`` after
      ``max_attempts``.

Failure modes:
    - Sink exceptions are recorded on the row (``last_error``), never
      propagated.
"""

from typing import Protocol, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from workflow_config.schema import WorkflowSettings
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.request import NotificationIntent
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.notification import NotificationModel, NotificationStatus
from workflow_kernel.services.base import BaseService

logger = get_logger("services.notification_outbox")


class NotificationSink(Protocol):
    """Delivery channel.  Raise to signal a failed delivery."""

    def send(
        self,
        recipient_id: UUID,
        template_kind: str,
        context: dict,
    ) -> None:
        ...


class NotificationOutbox(BaseService[NotificationModel]):
    """Writes and drains the ``notifications`` table."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: WorkflowSettings | None = None,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.settings = settings or WorkflowSettings()

    def enqueue(
        self,
        intents: Sequence[NotificationIntent],
        request_id: UUID | None = None,
    ) -> int:
        """Persist intents; return how many were stored (0 on failure)."""
        if not intents:
            return 0
        now = self.clock.now()
        try:
            with self.session.begin_nested():
                for intent in intents:
                    self.session.add(
                        NotificationModel(
                            recipient_id=intent.recipient_id,
                            request_id=request_id,
                            template_kind=intent.template_kind,
                            context=dict(intent.context_data),
                            status=NotificationStatus.PENDING.value,
                            attempts=0,
                            created_at=now,
                        )
                    )
                self.session.flush()
        except (SQLAlchemyError, TypeError, ValueError):
            logger.warning(
                "notification_enqueue_failed",
                extra={
                    "request_id": str(request_id) if request_id else None,
                    "intent_count": len(intents),
                },
                exc_info=True,
            )
            return 0
        logger.info(
            "notifications_enqueued",
            extra={
                "request_id": str(request_id) if request_id else None,
                "intent_count": len(intents),
                "templates": sorted({i.template_kind for i in intents}),
            },
        )
        return len(intents)

    def pending(self, limit: int = 100) -> list[NotificationModel]:
        return list(
            self.session.execute(
                select(NotificationModel)
                .where(NotificationModel.status == NotificationStatus.PENDING.value)
                .order_by(NotificationModel.created_at, NotificationModel.id)
                .limit(limit)
            ).scalars()
        )

    def for_recipient(self, recipient_id: UUID) -> list[NotificationModel]:
        return list(
            self.session.execute(
                select(NotificationModel)
                .where(NotificationModel.recipient_id == recipient_id)
                .order_by(NotificationModel.created_at, NotificationModel.id)
            ).scalars()
        )

    def deliver_pending(self, sink: NotificationSink, limit: int = 100) -> dict[str, int]:
        """
        Hand pending notifications to ``sink``.

        Returns:
            Counts: ``delivered``, ``retrying`` and ``failed``.
        """
        max_attempts = self.settings.notifications.max_attempts
        counts = {"delivered": 0, "retrying": 0, "failed": 0}

        for row in self.pending(limit):
            row.attempts += 1
            try:
                sink.send(row.recipient_id, row.template_kind, dict(row.context))
            except Exception as exc:
                row.last_error = f"{type(exc).__name__}: {exc}"
                if row.attempts >= max_attempts:
                    row.status = NotificationStatus.FAILED.value
                    counts["failed"] += 1
                else:
                    counts["retrying"] += 1
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "notification_id": str(row.id),
                        "attempts": row.attempts,
                        "max_attempts": max_attempts,
                        "error": row.last_error,
                    },
                )
                continue
            row.status = NotificationStatus.DELIVERED.value
            row.delivered_at = self.clock.now()
            row.last_error = None
            counts["delivered"] += 1

        self.session.flush()
        logger.info("notifications_delivered", extra=counts)
        return counts
