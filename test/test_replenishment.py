from datetime import datetime
from pathlib import Path

import pytest
from conftest import add_product, add_warehouse, build_app

from tbo.domain.errors import InvalidTransitionError, NotFoundError, ValidationError
from tbo.domain.models import ReplenishmentStatus


def test_create_request_snapshots_stock_and_threshold(tmp_path: Path):
    app = build_app(tmp_path)
    wh = add_warehouse(app)
    rice = add_product(app, reorder_threshold=20)
    oil = add_product(app, name="Oil 5L", reorder_threshold=5)
    app.lots.create_lot(rice.id, wh, 8)

    request = app.replenishments.create_request(
        requester_id=3,
        items=[{"product_id": rice.id, "qty": 50, "justification": "Ramadan"}, {"product_id": oil.id, "qty": 10}],
        priority="urgent",
        reason="Low shelves",
    )

    assert request.number == f"DA2024{request.id:06d}"
    assert request.status == ReplenishmentStatus.DRAFT
    assert (request.requester_id, request.assignee_id, request.priority) == (3, None, "urgent")
    assert [(ln.product_id, ln.qty_requested, ln.current_stock, ln.reorder_threshold) for ln in request.lines] == [
        (rice.id, 50, 8, 20),
        (oil.id, 10, 0, 5),
    ]
    assert request.lines[0].justification == "Ramadan"

    # later stock changes do not touch the snapshot
    app.lots.create_lot(rice.id, wh, 30)
    assert app.replenishments.get_request(request.id).lines[0].current_stock == 8


def test_create_request_validates_lines_and_priority(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)

    with pytest.raises(ValidationError):
        app.replenishments.create_request(1, [])
    with pytest.raises(ValidationError):
        app.replenishments.create_request(1, [{"product_id": p.id, "qty": 5}], priority="whenever")
    with pytest.raises(ValidationError):
        app.replenishments.create_request(1, [{"product_id": p.id, "qty": 0}])
    with pytest.raises(NotFoundError):
        app.replenishments.create_request(1, [{"product_id": 999, "qty": 5}])

    assert app.replenishments.list_requests() == []


def test_send_take_charge_and_process(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)
    request = app.replenishments.create_request(1, [{"product_id": p.id, "qty": 5}])

    sent = app.replenishments.send(request.id)
    assert (sent.status, sent.assignee_id) == (ReplenishmentStatus.SENT, None)

    taken = app.replenishments.take_charge(request.id, assignee_id=7)
    assert (taken.status, taken.assignee_id) == (ReplenishmentStatus.IN_PROGRESS, 7)
    assert taken.processed_at is None

    app.clock.set(datetime(2024, 3, 2, 14, 30, 0))
    done = app.replenishments.process(request.id, comment="PO issued")

    assert done.status == ReplenishmentStatus.PROCESSED
    assert done.assignee_id == 7
    assert done.processed_at == datetime(2024, 3, 2, 14, 30, 0)
    assert done.processing_comment == "PO issued"


def test_sent_request_can_be_rejected_directly_with_a_comment(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)
    request = app.replenishments.create_request(1, [{"product_id": p.id, "qty": 5}])
    app.replenishments.send(request.id, assignee_id=7)

    with pytest.raises(ValidationError):
        app.replenishments.reject(request.id, "   ")
    assert app.replenishments.get_request(request.id).status == ReplenishmentStatus.SENT

    rejected = app.replenishments.reject(request.id, " Budget frozen ")

    assert rejected.status == ReplenishmentStatus.REJECTED
    assert rejected.processing_comment == "Budget frozen"
    assert rejected.processed_at == datetime(2024, 3, 1, 9, 0, 0)


def test_closed_requests_refuse_further_transitions(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)
    request = app.replenishments.create_request(1, [{"product_id": p.id, "qty": 5}])

    with pytest.raises(InvalidTransitionError):
        app.replenishments.take_charge(request.id, assignee_id=7)
    with pytest.raises(InvalidTransitionError):
        app.replenishments.process(request.id)

    cancelled = app.replenishments.cancel(request.id)
    assert cancelled.status == ReplenishmentStatus.CANCELLED
    with pytest.raises(InvalidTransitionError) as exc:
        app.replenishments.send(request.id)
    assert exc.value.details["current"] == ReplenishmentStatus.CANCELLED

    with pytest.raises(NotFoundError):
        app.replenishments.cancel(999)


def test_list_filters_and_statistics(tmp_path: Path):
    app = build_app(tmp_path)
    p = add_product(app)
    handled = app.replenishments.create_request(1, [{"product_id": p.id, "qty": 5}])
    waiting = app.replenishments.create_request(1, [{"product_id": p.id, "qty": 6}], priority="critical")
    draft = app.replenishments.create_request(2, [{"product_id": p.id, "qty": 7}])
    app.replenishments.send(handled.id)
    app.replenishments.take_charge(handled.id, assignee_id=7)
    app.replenishments.process(handled.id)
    app.replenishments.send(waiting.id)

    assert [r.id for r in app.replenishments.list_requests(requester_id=1)] == [waiting.id, handled.id]
    assert [r.id for r in app.replenishments.list_requests(assignee_id=7)] == [waiting.id, handled.id]
    assert [r.id for r in app.replenishments.list_requests(status=ReplenishmentStatus.DRAFT)] == [draft.id]
    assert [r.id for r in app.replenishments.list_requests(priority="critical")] == [waiting.id]

    assert app.replenishments.statistics(requester_id=1) == {"total": 2, "draft": 0, "in_progress": 1, "processed": 1}
    assert app.replenishments.statistics(requester_id=2) == {"total": 1, "draft": 1, "in_progress": 0, "processed": 0}
    assert app.replenishments.statistics(assignee_id=7) == {"total": 1, "waiting": 1, "in_progress": 0, "processed": 1}
