from datetime import date, datetime, timezone

import pytest

from sheetbill.models import LedgerEntry
from sheetbill.schema import LEDGER_SCHEMA

from conftest import invoice_payload


@pytest.fixture
def history(backend, clock):
    """Invoice on Jan 5 (-1180), payIn Jan 10 (+500), payOut Jan 12 (-100), payIn Jan 20 (+680)."""
    backend.create_invoice(invoice_payload())
    backend.create_transaction("CUST-1", 500, "payIn", date(2024, 1, 10), "Cash", None, "part")
    backend.create_transaction("CUST-1", 100, "payOut", "2024-01-12", "UPI", {"bank_name": "HDFC"}, "refund")
    backend.create_transaction("CUST-1", 680, "payIn", datetime(2024, 1, 20, 9, 0, tzinfo=timezone.utc), "NEFT")
    backend.create_transaction("CUST-2", 42, "payIn", "2024-01-11")
    return backend


def test_transaction_rows(history, sheets):
    rows = [LEDGER_SCHEMA.decode(r) for r in sheets.get_values(LEDGER_SCHEMA.data_range())]
    pay_out = rows[2]
    assert pay_out["type"] == "payOut"
    assert pay_out["status"] == "paid"
    assert pay_out["amount"] == -100.0
    assert pay_out["date_formatted"] == "2024-01-12"
    assert pay_out["bank_account"] == {"bank_name": "HDFC"}
    assert pay_out["payment_mode"] == "UPI"
    assert rows[3]["date"] == "2024-01-20T09:00:00.000Z"


def test_ledger_running_balance_newest_first(history):
    res = history.get_ledger("CUST-1")
    assert res["count"] == 4
    assert [e.amount for e in res["data"]] == [680.0, -100.0, 500.0, -1180.0]
    assert [e.balance for e in res["data"]] == [-100.0, -780.0, -680.0, -1180.0]
    assert all(isinstance(e, LedgerEntry) for e in res["data"])


def test_ledger_ascending_and_paging(history):
    res = history.get_ledger("CUST-1", order="ASC", rows_per_page=2, page=2)
    assert res["count"] == 4
    assert [e.amount for e in res["data"]] == [-100.0, 680.0]
    assert history.get_ledger("CUST-1", rows_per_page=2, page=3)["data"] == []


def test_ledger_date_filters(history):
    res = history.get_ledger("CUST-1", date_from="2024-01-06", date_to=date(2024, 1, 15))
    assert [e.amount for e in res["data"]] == [-100.0, 500.0]
    # balances are still over the whole history
    assert [e.balance for e in res["data"]] == [-780.0, -680.0]

    only = history.get_ledger("CUST-1", date_from="2024-01-10")
    assert [e.amount for e in only["data"]] == [500.0]


def test_pending_only(history):
    res = history.get_ledger("CUST-1", pending_only=True)
    assert [e.document_id for e in res["data"]] == ["INV-7"]


def test_ledger_read_failure_is_empty(history, sheets):
    sheets.fail_reads = True
    assert history.get_ledger("CUST-1") == {"count": 0, "data": []}


def test_unknown_transaction_type_rejected(backend):
    with pytest.raises(ValueError):
        backend.create_transaction("CUST-1", 5, "gift", "2024-01-01")


def test_update_transaction_rewrites_row(history):
    entry = history.get_ledger("CUST-1", order="ASC")["data"][1]
    updated = history.update_transaction(entry, "2024-01-11", "Cheque", {"bank_name": "SBI"}, "cleared")
    assert updated.row_id == entry.row_id
    again = history.get_ledger("CUST-1", order="ASC")["data"][1]
    assert again.ledger_id == entry.ledger_id
    assert again.date_formatted == "2024-01-11"
    assert again.payment_mode == "Cheque"
    assert again.bank_account == {"bank_name": "SBI"}
    assert again.notes == "cleared"
    assert again.amount == 500.0


def test_update_transaction_accepts_dicts(history):
    entry = history.get_ledger("CUST-1", order="ASC")["data"][1].to_dict()
    assert history.update_transaction(entry, "2024-01-10", "Cash").payment_mode == "Cash"


def test_delete_transaction_removes_the_row(history, sheets):
    entry = history.get_ledger("CUST-1", order="ASC")["data"][2]
    assert history.delete_transaction(entry.row_id) is True
    res = history.get_ledger("CUST-1", order="ASC")
    assert [e.amount for e in res["data"]] == [-1180.0, 500.0, 680.0]
    # rows below moved up and report their new positions
    assert [e.row_id for e in res["data"]] == [2, 3, 4]


def test_create_ledger_entry(backend, sheets):
    e = backend.create_ledger_entry({"party_id": "CUST-3", "type": "Adjustment", "status": "paid", "amount": 15})
    assert e.ledger_id.startswith("CUSTLED-")
    [row] = sheets.get_values(LEDGER_SCHEMA.data_range())
    rec = LEDGER_SCHEMA.decode(row)
    assert rec["type"] == "Adjustment" and rec["amount"] == 15.0 and rec["party_id"] == "CUST-3"
