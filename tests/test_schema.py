import pytest

from sheetbill.errors import SchemaMismatchError
from sheetbill.schema import (
    INVOICE_SCHEMA, CUSTOMER_SCHEMA, VENDOR_SCHEMA, PRODUCT_SCHEMA, LEDGER_SCHEMA,
    Column, RowSchema, column_letter, cell_str, safe_json, to_float,
)


def test_column_letters():
    assert column_letter(1) == "A"
    assert column_letter(26) == "Z"
    assert column_letter(35) == "AI"


def test_invoice_row_spans_row_number_plus_34_fields():
    assert INVOICE_SCHEMA.width == 35
    assert INVOICE_SCHEMA.last_column == "AI"
    assert INVOICE_SCHEMA.names[0] == "row_id"
    assert INVOICE_SCHEMA.names[-1] == "pdf_url"
    assert INVOICE_SCHEMA.data_range() == "Invoices!A2:AI"
    assert INVOICE_SCHEMA.row_range(9) == "Invoices!A9:AI9"


def test_other_layouts():
    assert CUSTOMER_SCHEMA.last_column == "L"
    assert VENDOR_SCHEMA.sheet == "Vendors" and VENDOR_SCHEMA.names == CUSTOMER_SCHEMA.names
    assert PRODUCT_SCHEMA.width == 13 and PRODUCT_SCHEMA.names[0] == "id"
    assert LEDGER_SCHEMA.width == 13 and LEDGER_SCHEMA.last_column == "M"


def test_encode_writes_row_formula_and_json():
    row = INVOICE_SCHEMA.encode({"id": "INV-1", "items": [{"a": 1}], "customer": {"name": "Zed"}})
    assert row[0] == "=ROW()"
    assert row[INVOICE_SCHEMA.index("id")] == "INV-1"
    assert row[INVOICE_SCHEMA.index("items")] == '[{"a": 1}]'
    assert row[INVOICE_SCHEMA.index("bank_account")] == ""
    assert len(row) == INVOICE_SCHEMA.width


def test_decode_short_row_uses_defaults():
    rec = INVOICE_SCHEMA.decode([5, "INV-1"])
    assert rec["row_id"] == 5
    assert rec["items"] == []
    assert rec["global_discount"] == {"type": "percentage", "value": 0}
    assert rec["status"] == "Draft"
    assert rec["marked_as_paid"] is False
    assert rec["bank_account"] is None


def test_malformed_json_cell_falls_back_silently():
    row = [""] * INVOICE_SCHEMA.width
    row[INVOICE_SCHEMA.index("items")] = "{not json"
    row[INVOICE_SCHEMA.index("customer")] = "null"
    rec = INVOICE_SCHEMA.decode(row)
    assert rec["items"] == []
    assert rec["customer"] == {}


def test_defaults_are_not_shared_between_rows():
    a = INVOICE_SCHEMA.decode([])
    a["items"].append("x")
    assert INVOICE_SCHEMA.decode([])["items"] == []


def test_computed_column_is_never_written():
    row = CUSTOMER_SCHEMA.encode({"id": "CUST-1", "balance": 99})
    assert row[CUSTOMER_SCHEMA.index("balance")] is None


def test_stock_passthrough():
    col = Column("stock", "Stock", "stock")
    assert col.decode(12) == 12.0
    assert col.decode("7") == 7.0
    assert col.decode("made to order") == "made to order"


def test_product_defaults():
    rec = PRODUCT_SCHEMA.decode(["PRD-1", "Bolt"])
    assert rec["tax_rate"] == 18.0
    assert rec["unit"] == "pcs"
    assert rec["status"] == "Active"


def test_cell_str_and_to_float():
    assert cell_str(12.0) == "12"
    assert cell_str(True) == "TRUE"
    assert cell_str(None, "x") == "x"
    assert to_float("1,250.50") == 1250.5
    assert to_float("abc", 3) == 3.0
    assert to_float(None) == 0.0


def test_safe_json():
    assert safe_json('{"a": 1}') == {"a": 1}
    assert safe_json("", []) == []
    assert safe_json("oops", {"d": 1}) == {"d": 1}


def test_check_header_reports_drift():
    header = INVOICE_SCHEMA.header()
    INVOICE_SCHEMA.check_header(header)
    drifted = list(header)
    drifted.insert(3, "Customer Name")
    with pytest.raises(SchemaMismatchError) as exc:
        INVOICE_SCHEMA.check_header(drifted)
    assert exc.value.sheet == "Invoices"
    assert exc.value.mismatches[0] == ("D", "Customer", "Customer Name")


def test_duplicate_column_names_rejected():
    with pytest.raises(ValueError):
        RowSchema("X", 1, [Column("a", "A"), Column("a", "B")])
