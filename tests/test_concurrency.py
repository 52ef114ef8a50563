"""
Claim races against a file-backed SQLite store.

Every worker thread opens its own session; the claim engine has to admit
exactly as many claims as the slot and capacity rules allow, however the
threads interleave.
"""
import threading
from collections import Counter

import pytest

from fieldhub.errors import DispatchError
from fieldhub.services import orders as order_service
from fieldhub.services import subcontractors as subcontractor_service
from fieldhub.services import time_slots as slot_service
from fieldhub.services.dispatch_conflict import count_daily_jobs


pytestmark = pytest.mark.concurrency

WORKERS = 8


def _race(store, attempts):
    """Run ``(slot_id, subcontractor_id)`` claims at once; return outcome codes."""
    barrier = threading.Barrier(len(attempts))
    outcomes = []
    lock = threading.Lock()

    def _worker(slot_id, subcontractor_id):
        session = store.session()
        try:
            barrier.wait()
            slot_service.claim_slot(session, slot_id, subcontractor_id)
            result = "OK"
        except DispatchError as e:
            session.rollback()
            result = e.code
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_worker, args=attempt) for attempt in attempts]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return Counter(outcomes)


def test_one_slot_many_claimants(file_store, order_payload, subcontractor_payload, slot_payload):
    session = file_store.session()
    try:
        order = order_service.create_order(session, order_payload())
        slot = slot_service.create_time_slot(session, slot_payload(order.id))
        subs = [
            subcontractor_service.create_subcontractor(
                session, subcontractor_payload(email=f"racer{i}@fieldcrew.com")
            )
            for i in range(WORKERS)
        ]
        slot_id, sub_ids = slot.id, [s.id for s in subs]
    finally:
        session.close()

    outcomes = _race(file_store, [(slot_id, sub_id) for sub_id in sub_ids])

    assert outcomes["OK"] == 1
    assert outcomes["SLOT_ALREADY_CLAIMED"] == WORKERS - 1

    session = file_store.session()
    try:
        claimed = slot_service.get_time_slot(session, slot_id)
        assert claimed.status == "claimed"
        assert claimed.subcontractor_id in sub_ids
        assert order_service.get_order(session, order.id).status == "claimed"
    finally:
        session.close()


def test_capacity_holds_under_parallel_claims(file_store, order_payload, subcontractor_payload, slot_payload):
    session = file_store.session()
    try:
        sub = subcontractor_service.create_subcontractor(session, subcontractor_payload(max_daily_jobs=2))
        slot_ids = []
        for _ in range(WORKERS):
            order = order_service.create_order(session, order_payload())
            slot_ids.append(slot_service.create_time_slot(session, slot_payload(order.id)).id)
        sub_id, day = sub.id, slot_service.get_time_slot(session, slot_ids[0]).slot_date
    finally:
        session.close()

    outcomes = _race(file_store, [(slot_id, sub_id) for slot_id in slot_ids])

    assert outcomes["OK"] == 2
    assert outcomes["MAX_DAILY_JOBS_REACHED"] == WORKERS - 2

    session = file_store.session()
    try:
        assert count_daily_jobs(session, sub_id, day) == 2
    finally:
        session.close()
