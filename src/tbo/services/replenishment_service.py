from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from tbo.domain.errors import NotFoundError, ValidationError
from tbo.domain.lifecycle import require_replenishment_transition
from tbo.domain.models import ReplenishmentPriority, ReplenishmentRequest, ReplenishmentStatus
from tbo.repositories.sqlite_repo import iso_date, iso_dt
from tbo.repositories.unit_of_work import SqliteUnitOfWork, UnitOfWork
from tbo.services.lot_store import LotStore
from tbo.services.periods import DateLike, as_date

log = logging.getLogger("tbo.stock")


class ReplenishmentService:
    """
    Restocking requests raised by stock management and handled by purchasing:
    draft -> sent -> in_progress -> processed / rejected, cancellable until closed.
    Each line snapshots the product's available stock and reorder threshold at creation.
    """

    def __init__(self, repo, lots: LotStore, clock, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.lots = lots
        self.clock = clock
        self.uow_factory = uow_factory or (lambda: SqliteUnitOfWork(repo))

    def _load(self, cur, request_id: int) -> ReplenishmentRequest:
        request = self.repo.fetch_replenishment_request(cur, request_id)
        if request is None:
            raise NotFoundError("Replenishment request not found.", request_id=int(request_id))
        return request

    def create_request(
        self,
        requester_id: int,
        items: Iterable[dict],
        priority: str = ReplenishmentPriority.NORMAL,
        reason: Optional[str] = None,
        request_date: Optional[DateLike] = None,
    ) -> ReplenishmentRequest:
        """
        items: [{product_id, qty, justification?}]
        """
        items = list(items)
        if not items:
            raise ValidationError("Replenishment request has no lines.")
        if priority not in ReplenishmentPriority.ALL:
            raise ValidationError(f"Unknown priority: {priority}", priority=priority)
        day = as_date(request_date) or self.clock.today()

        with self.uow_factory() as uow:
            lines: list[dict] = []
            for it in items:
                qty = int(it["qty"])
                if qty <= 0:
                    raise ValidationError("Qty must be >= 1.", qty=qty)
                product = self.repo.fetch_product(uow.cur, int(it["product_id"]))
                if product is None:
                    raise NotFoundError("Product not found.", product_id=int(it["product_id"]))
                lines.append(
                    {
                        "product_id": product.id,
                        "qty": qty,
                        "current_stock": self.lots.total_available(product.id, uow=uow),
                        "reorder_threshold": product.reorder_threshold,
                        "justification": it.get("justification"),
                    }
                )

            request_id = self.repo.insert_replenishment_request(
                uow.cur, int(requester_id), iso_date(day), reason, priority, iso_dt(self.clock.now()), lines
            )
            request = self._load(uow.cur, request_id)

        log.info(
            "replenishment_created request_id=%s number=%s lines=%s priority=%s",
            request.id,
            request.number,
            len(lines),
            priority,
        )
        return request

    def _transition(
        self,
        request_id: int,
        target: str,
        assignee_id: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> ReplenishmentRequest:
        with self.uow_factory() as uow:
            request = self._load(uow.cur, request_id)
            require_replenishment_transition(request.status, target)

            closes = target in (ReplenishmentStatus.PROCESSED, ReplenishmentStatus.REJECTED)
            self.repo.update_replenishment_request(
                uow.cur,
                request.id,
                target,
                request.assignee_id if assignee_id is None else int(assignee_id),
                iso_dt(self.clock.now()) if closes else None,
                comment if closes else request.processing_comment,
                iso_dt(self.clock.now()),
            )
            updated = self._load(uow.cur, request.id)

        log.info("replenishment_status request_id=%s from=%s to=%s", request.id, request.status, target)
        return updated

    def send(self, request_id: int, assignee_id: Optional[int] = None) -> ReplenishmentRequest:
        return self._transition(request_id, ReplenishmentStatus.SENT, assignee_id=assignee_id)

    def take_charge(self, request_id: int, assignee_id: int) -> ReplenishmentRequest:
        return self._transition(request_id, ReplenishmentStatus.IN_PROGRESS, assignee_id=assignee_id)

    def process(self, request_id: int, comment: Optional[str] = None) -> ReplenishmentRequest:
        return self._transition(request_id, ReplenishmentStatus.PROCESSED, comment=comment)

    def reject(self, request_id: int, comment: str) -> ReplenishmentRequest:
        if not (comment or "").strip():
            raise ValidationError("A rejection needs a comment.", request_id=int(request_id))
        return self._transition(request_id, ReplenishmentStatus.REJECTED, comment=comment.strip())

    def cancel(self, request_id: int) -> ReplenishmentRequest:
        return self._transition(request_id, ReplenishmentStatus.CANCELLED)

    def get_request(self, request_id: int) -> ReplenishmentRequest:
        request = self.repo.get_replenishment_request(int(request_id))
        if request is None:
            raise NotFoundError("Replenishment request not found.", request_id=int(request_id))
        return request

    def list_requests(
        self,
        requester_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> list[ReplenishmentRequest]:
        return self.repo.list_replenishment_requests(requester_id, assignee_id, status, priority)

    def statistics(self, requester_id: Optional[int] = None, assignee_id: Optional[int] = None) -> dict:
        """Counts for a requester's own requests, or for an assignee's queue when ``assignee_id`` is given."""
        if assignee_id is not None:
            mine = self.repo.replenishment_status_counts(assignee_id=assignee_id)
            everyone = self.repo.replenishment_status_counts()
            return {
                "total": sum(mine.values()),
                "waiting": everyone.get(ReplenishmentStatus.SENT, 0),
                "in_progress": mine.get(ReplenishmentStatus.IN_PROGRESS, 0),
                "processed": mine.get(ReplenishmentStatus.PROCESSED, 0),
            }

        counts = self.repo.replenishment_status_counts(requester_id=requester_id)
        return {
            "total": sum(counts.values()),
            "draft": counts.get(ReplenishmentStatus.DRAFT, 0),
            "in_progress": counts.get(ReplenishmentStatus.SENT, 0) + counts.get(ReplenishmentStatus.IN_PROGRESS, 0),
            "processed": counts.get(ReplenishmentStatus.PROCESSED, 0),
        }
