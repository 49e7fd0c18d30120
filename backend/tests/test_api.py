from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from flask import Flask

from splitbuddy import create_app
from splitbuddy.api.routes import api_bp
from splitbuddy.domain.assembler import assemble_bill
from splitbuddy.domain.errors import Result
from splitbuddy.domain.models import Bill, Item, Participant, SplitMode
from splitbuddy.services.exchange_rates import ExchangeRateError

NOW = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def app():
    app = Flask(__name__)
    app.register_blueprint(api_bp)
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _payload(**overrides):
    payload = {
        "title": "Dinner",
        "tax_rate_percent": "10",
        "split_mode": "equal",
        "items": [
            {"id": "pizza", "name": "Pizza", "price": "20.00"},
            {"id": "soda", "name": "Soda", "price": "5.00"},
        ],
        "participants": [
            {"id": "a", "name": "Lucy", "avatar": "head1"},
            {"id": "b", "name": "Sam", "avatar": "head2"},
        ],
    }
    payload.update(overrides)
    return payload


def _stored_bill(title="Dinner", created_at=NOW):
    people = [Participant(id="a", name="Lucy"), Participant(id="b", name="Sam")]
    items = [Item(id="pizza", name="Pizza", price=Decimal("20.00"))]
    return assemble_bill(
        title, items, people, Decimal("10"), SplitMode.EQUAL, bill_id=title.lower(), clock=lambda: created_at
    ).unwrap()


def _corrupt(bill):
    first = replace(bill.participants[0], owed_amount=Decimal("99.00"))
    return replace(bill, participants=(first,) + bill.participants[1:])


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.get_json() == {"status": "ok"}


def test_create_app_wires_blueprint_and_config():
    class TestConfig:
        DATABASE_URL = ""
        LOG_LEVEL = "DEBUG"

    app = create_app(TestConfig)
    assert app.config["LOG_LEVEL"] == "DEBUG"
    assert app.test_client().get("/api/health").status_code == 200


def test_preview_equal_split(client):
    r = client.post("/api/bills/preview", json=_payload())

    assert r.status_code == 200
    body = r.get_json()
    assert body["grand_total"] == "27.50"
    assert body["tax_amount"] == "2.50"
    assert body["split_mode"] == "equal"
    assert [(p["name"], p["amount"]) for p in body["participants"]] == [("Lucy", "13.75"), ("Sam", "13.75")]


def test_preview_itemized_split(client):
    payload = _payload(
        split_mode="itemized",
        participants=[
            {"id": "a", "name": "Lucy", "selected_item_ids": ["pizza"]},
            {"id": "b", "name": "Sam", "selected_item_ids": ["pizza", "soda"]},
        ],
    )
    r = client.post("/api/bills/preview", json=payload)

    assert r.status_code == 200
    body = r.get_json()
    assert [p["amount"] for p in body["participants"]] == ["11.00", "16.50"]
    assert body["participants"][0]["items"] == [
        {"id": "pizza", "name": "Pizza", "price": "20.00", "share": "10.00"}
    ]


def test_preview_skips_blank_items(client):
    items = _payload()["items"] + [{"name": "", "price": "4.00"}, {"name": "Water", "price": ""}]
    r = client.post("/api/bills/preview", json=_payload(items=items))
    assert r.status_code == 200
    assert r.get_json()["grand_total"] == "27.50"


def test_preview_unassigned_item_is_422(client):
    payload = _payload(
        split_mode="itemized",
        participants=[{"id": "a", "name": "Lucy", "selected_item_ids": ["pizza"]}],
    )
    r = client.post("/api/bills/preview", json=payload)

    assert r.status_code == 422
    error = r.get_json()["error"]
    assert error["code"] == "unassigned_item"
    assert "Soda" in error["message"]


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"participants": []}, "empty_participant_set"),
        ({"participants": [{"name": "Lucy"}, {"name": "Lucy"}]}, "duplicate_participant_name"),
        ({"items": [{"name": "Pizza", "price": "0"}]}, "no_valid_items"),
        ({"tax_rate_percent": "100"}, "invalid_tax_rate"),
        ({"tax_rate_percent": -5}, "invalid_tax_rate"),
    ],
)
def test_preview_assembly_errors(client, overrides, code):
    r = client.post("/api/bills/preview", json=_payload(**overrides))
    assert r.status_code == 422
    assert r.get_json()["error"]["code"] == code


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"title": "  "}, "title"),
        ({"split_mode": "halves"}, "split_mode"),
        ({"items": [{"name": "Pizza", "price": "1,234.00"}]}, "price"),
        ({"tax_rate_percent": "ten"}, "tax_rate_percent"),
        ({"participants": [{"name": "Lucy", "selected_item_ids": ["ghost"]}]}, "unknown item"),
        ({"participants": [{"avatar": "head1"}]}, "name"),
    ],
)
def test_preview_rejects_malformed_payload(client, overrides, fragment):
    r = client.post("/api/bills/preview", json=_payload(**overrides))
    assert r.status_code == 400
    assert fragment in r.get_json()["error"]["message"].lower()


def test_preview_requires_json(client):
    r = client.post("/api/bills/preview", data="nope", content_type="text/plain")
    assert r.status_code == 400


def test_create_bill_requires_db(client):
    r = client.post("/api/bills", json=_payload())
    assert r.status_code == 503
    assert r.get_json()["error"]["code"] == "db_unavailable"


def test_create_bill_persists_assembled_bill(client, monkeypatch):
    captured = {}

    class FakeRepo:
        enabled = True

        def insert_bill(self, bill):
            captured["bill"] = bill
            return bill.id

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.post("/api/bills", json=_payload())

    assert r.status_code == 201
    bill = captured["bill"]
    assert isinstance(bill, Bill)
    assert r.get_json()["id"] == bill.id
    assert [p.owed_amount for p in bill.participants] == [Decimal("13.75"), Decimal("13.75")]


def test_create_bill_does_not_persist_invalid_bill(client, monkeypatch):
    class FakeRepo:
        enabled = True

        def insert_bill(self, bill):
            raise AssertionError("must not be called")

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.post("/api/bills", json=_payload(participants=[]))
    assert r.status_code == 422


def test_create_bill_db_failure(client, monkeypatch):
    class FakeRepo:
        enabled = True

        def insert_bill(self, bill):
            raise RuntimeError("connection refused")

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.post("/api/bills", json=_payload())
    assert r.status_code == 500
    assert r.get_json()["error"]["code"] == "db_error"


def test_list_bills_newest_first_and_flags_corrupt_rows(client, monkeypatch):
    older = _stored_bill("Older", NOW - timedelta(days=3))
    newer = _stored_bill("Newer", NOW)
    broken = _corrupt(_stored_bill("Broken", NOW - timedelta(days=1)))

    class FakeRepo:
        enabled = True

        def list_bills(self):
            return [Result.success(b) for b in (older, broken, newer)]

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.get("/api/bills")
    assert r.status_code == 200
    bills = r.get_json()["bills"]
    assert [b["title"] for b in bills] == ["Newer", "Broken", "Older"]
    assert bills[0]["grand_total"] == "22.00"
    assert bills[1]["error"]["code"] == "inconsistent_bill_data"


def test_latest_bill(client, monkeypatch):
    class FakeRepo:
        enabled = True

        def __init__(self, bill):
            self.bill = bill

        def get_latest_bill(self):
            return self.bill

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo(None))
    assert client.get("/api/bills/latest").status_code == 404

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo(Result.success(_stored_bill())))
    r = client.get("/api/bills/latest")
    assert r.status_code == 200
    assert r.get_json()["title"] == "Dinner"


def test_get_bill_returns_summary_and_record(client, monkeypatch):
    bill = _stored_bill()

    class FakeRepo:
        enabled = True

        def get_bill(self, *, bill_id):
            return Result.success(bill) if bill_id == bill.id else None

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.get(f"/api/bills/{bill.id}")
    assert r.status_code == 200
    body = r.get_json()
    assert body["summary"]["grand_total"] == "22.00"
    assert body["record"]["isEqually"] is True
    assert [p["price"] for p in body["record"]["participants"]] == ["11.00", "11.00"]

    assert client.get("/api/bills/missing").status_code == 404


def test_get_corrupt_bill_is_409(client, monkeypatch):
    class FakeRepo:
        enabled = True

        def get_bill(self, *, bill_id):
            return Result.success(_corrupt(_stored_bill()))

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    r = client.get("/api/bills/dinner")
    assert r.status_code == 409
    assert r.get_json()["error"]["code"] == "inconsistent_bill_data"


def test_delete_bill(client, monkeypatch):
    deleted = []

    class FakeRepo:
        enabled = True

        def delete_bill(self, *, bill_id):
            if bill_id != "dinner":
                return False
            deleted.append(bill_id)
            return True

    monkeypatch.setattr("splitbuddy.api.routes._repo", lambda: FakeRepo())

    assert client.delete("/api/bills/dinner").status_code == 204
    assert deleted == ["dinner"]
    assert client.delete("/api/bills/other").status_code == 404


class FakeRates:
    def __init__(self, fail=False):
        self.fail = fail
        self.bases = []

    def get_rates(self, base):
        self.bases.append(base)
        if self.fail:
            raise ExchangeRateError("rate lookup for USD failed")
        return {"USD": Decimal("1"), "EUR": Decimal("0.9"), "JPY": Decimal("143.25")}


def test_get_rates(client, monkeypatch):
    fake = FakeRates()
    monkeypatch.setattr("splitbuddy.api.routes._rates_client", lambda: fake)

    r = client.get("/api/rates/usd")
    assert r.status_code == 200
    assert r.get_json() == {"base": "USD", "rates": {"USD": "1", "EUR": "0.9", "JPY": "143.25"}}
    assert fake.bases == ["USD"]


def test_get_rates_bad_code_and_upstream_failure(client, monkeypatch):
    monkeypatch.setattr("splitbuddy.api.routes._rates_client", lambda: FakeRates(fail=True))

    assert client.get("/api/rates/US1").status_code == 400

    r = client.get("/api/rates/USD")
    assert r.status_code == 502
    assert r.get_json()["error"]["code"] == "rates_unavailable"


def test_convert_amount(client, monkeypatch):
    monkeypatch.setattr("splitbuddy.api.routes._rates_client", lambda: FakeRates())

    r = client.post("/api/rates/convert", json={"amount": "10", "from": "usd", "to": "EUR"})
    assert r.status_code == 200
    assert r.get_json() == {"amount": "10", "from": "USD", "to": "EUR", "rate": "0.9", "converted": "9.00"}


def test_convert_amount_unknown_target(client, monkeypatch):
    monkeypatch.setattr("splitbuddy.api.routes._rates_client", lambda: FakeRates())

    r = client.post("/api/rates/convert", json={"amount": "10", "from": "USD", "to": "GBP"})
    assert r.status_code == 502

    r = client.post("/api/rates/convert", json={"amount": "abc", "to": "EUR"})
    assert r.status_code == 400
