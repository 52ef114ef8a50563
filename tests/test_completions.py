import pytest

from fieldhub.models.models import AnalyticsEvent, JobCompletion
from fieldhub.services import completions as completion_service
from fieldhub.services import orders as order_service
from fieldhub.services import subcontractors as subcontractor_service
from fieldhub.services import time_slots as slot_service


@pytest.fixture
def claimed_job(make_order, make_subcontractor, make_slot, claim):
    order = make_order()
    sub = make_subcontractor()
    slot = make_slot(order["id"])
    assert claim(slot["id"], sub["id"]).status_code == 200
    return order, sub, slot


@pytest.mark.api
def test_record_completion_cascades(client, claimed_job, completion_payload):
    order, sub, slot = claimed_job

    resp = client.post("/job-completions", json=completion_payload(order["id"], sub["id"], slot["id"]))
    assert resp.status_code == 201
    body = resp.json()
    assert body["order_id"] == order["id"]
    assert body["time_slot_id"] == slot["id"]
    assert body["customer_satisfaction"] == 5
    assert body["completed_at"]
    assert body["gps_timestamp"]

    assert client.get(f"/orders/{order['id']}").json()["status"] == "completed"
    slot_after = client.get(f"/time-slots/{slot['id']}").json()
    assert slot_after["status"] == "completed"
    assert slot_after["is_available"] is False

    assert client.get(f"/job-completions/{body['id']}").json()["id"] == body["id"]
    listed = client.get("/job-completions", params={"subcontractor_id": sub["id"]}).json()
    assert [c["id"] for c in listed] == [body["id"]]


@pytest.mark.api
def test_second_completion_is_rejected(client, claimed_job, completion_payload):
    order, sub, slot = claimed_job
    payload = completion_payload(order["id"], sub["id"], slot["id"])
    assert client.post("/job-completions", json=payload).status_code == 201

    resp = client.post("/job-completions", json=payload)
    assert resp.status_code == 400
    assert resp.json()["code"] == "TIME_SLOT_ALREADY_COMPLETED"
    assert len(client.get("/job-completions").json()) == 1


@pytest.mark.api
@pytest.mark.parametrize(
    "overrides,code",
    [
        ({"order_id": None}, "MISSING_ORDER_ID"),
        ({"subcontractor_id": None}, "MISSING_SUBCONTRACTOR_ID"),
        ({"time_slot_id": None}, "MISSING_TIME_SLOT_ID"),
        ({"completion_photos": []}, "INVALID_COMPLETION_PHOTOS"),
        ({"completion_photos": "photo.jpg"}, "INVALID_COMPLETION_PHOTOS"),
        ({"signature_data": "   "}, "MISSING_SIGNATURE_DATA"),
        ({"gps_lat": "47.6"}, "INVALID_GPS_LAT"),
        ({"gps_lng": None}, "INVALID_GPS_LNG"),
        ({"customer_satisfaction": 6}, "INVALID_CUSTOMER_SATISFACTION"),
        ({"customer_satisfaction": 4.5}, "INVALID_CUSTOMER_SATISFACTION"),
    ],
)
def test_completion_validation(client, claimed_job, completion_payload, overrides, code):
    order, sub, slot = claimed_job
    resp = client.post("/job-completions", json=completion_payload(order["id"], sub["id"], slot["id"], **overrides))
    assert resp.status_code == 400
    assert resp.json()["code"] == code
    assert client.get(f"/time-slots/{slot['id']}").json()["status"] == "claimed"


@pytest.mark.api
def test_completion_missing_references(client, claimed_job, completion_payload):
    order, sub, slot = claimed_job
    cases = [
        (completion_payload(999, sub["id"], slot["id"]), "ORDER_NOT_FOUND"),
        (completion_payload(order["id"], 999, slot["id"]), "SUBCONTRACTOR_NOT_FOUND"),
        (completion_payload(order["id"], sub["id"], 999), "TIME_SLOT_NOT_FOUND"),
    ]
    for payload, code in cases:
        resp = client.post("/job-completions", json=payload)
        assert resp.status_code == 404
        assert resp.json()["code"] == code


@pytest.mark.api
def test_completion_relationship_mismatch(client, claimed_job, make_order, make_subcontractor, completion_payload):
    order, sub, slot = claimed_job
    other_order = make_order()
    other_sub = make_subcontractor()

    resp = client.post("/job-completions", json=completion_payload(other_order["id"], sub["id"], slot["id"]))
    assert resp.status_code == 400
    assert resp.json()["code"] == "TIME_SLOT_ORDER_MISMATCH"

    resp = client.post("/job-completions", json=completion_payload(order["id"], other_sub["id"], slot["id"]))
    assert resp.status_code == 400
    assert resp.json()["code"] == "TIME_SLOT_SUBCONTRACTOR_MISMATCH"

    assert client.get(f"/orders/{order['id']}").json()["status"] == "claimed"


@pytest.mark.api
def test_completion_requires_claimed_slot(client, claimed_job, completion_payload):
    order, sub, slot = claimed_job
    assert client.delete(f"/time-slots/{slot['id']}").status_code == 200

    resp = client.post("/job-completions", json=completion_payload(order["id"], sub["id"], slot["id"]))
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "INVALID_TIME_SLOT_STATUS"
    assert body["current_status"] == "cancelled"


@pytest.mark.api
def test_completion_on_closed_order(client, claimed_job, completion_payload):
    order, sub, slot = claimed_job
    client.patch(f"/orders/{order['id']}", json={"status": "cancelled"})

    resp = client.post("/job-completions", json=completion_payload(order["id"], sub["id"], slot["id"]))
    assert resp.status_code == 400
    assert resp.json()["code"] == "ORDER_NOT_COMPLETABLE"
    assert client.get(f"/time-slots/{slot['id']}").json()["status"] == "claimed"
    assert client.get("/job-completions").json() == []


@pytest.mark.api
def test_get_missing_completion(client):
    resp = client.get("/job-completions/77")
    assert resp.status_code == 404
    assert resp.json()["code"] == "JOB_COMPLETION_NOT_FOUND"


@pytest.mark.unit
def test_completion_cascade_is_all_or_nothing(
    db, monkeypatch, order_payload, subcontractor_payload, slot_payload, completion_payload
):
    order = order_service.create_order(db, order_payload())
    sub = subcontractor_service.create_subcontractor(db, subcontractor_payload())
    slot = slot_service.create_time_slot(db, slot_payload(order.id))
    slot_service.claim_slot(db, slot.id, sub.id)

    def _boom(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(completion_service, "create_audit_log", _boom)

    with pytest.raises(RuntimeError):
        completion_service.record_completion(db, completion_payload(order.id, sub.id, slot.id))
    db.rollback()

    assert db.query(JobCompletion).count() == 0
    assert db.query(AnalyticsEvent).filter(AnalyticsEvent.event_type == "completion").count() == 0
    assert order_service.get_order(db, order.id).status == "claimed"
    assert slot_service.get_time_slot(db, slot.id).status == "claimed"


@pytest.mark.unit
def test_completion_records_event(db, order_payload, subcontractor_payload, slot_payload, completion_payload):
    order = order_service.create_order(db, order_payload())
    sub = subcontractor_service.create_subcontractor(db, subcontractor_payload())
    slot = slot_service.create_time_slot(db, slot_payload(order.id))
    slot_service.claim_slot(db, slot.id, sub.id)

    completion = completion_service.record_completion(
        db, completion_payload(order.id, sub.id, slot.id, customer_satisfaction=None, completion_notes="  ")
    )
    assert completion.customer_satisfaction is None
    assert completion.completion_notes is None

    event = db.query(AnalyticsEvent).filter(AnalyticsEvent.event_type == "completion").one()
    assert event.order_id == order.id
    assert event.event_metadata["job_completion_id"] == completion.id
