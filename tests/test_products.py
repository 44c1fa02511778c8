import pytest

from sheetbill.errors import NotFoundError
from sheetbill.schema import PRODUCT_SCHEMA


def bolt(**extra):
    data = {"name": "Hex Bolt", "description": "M8 zinc", "price": 12.5, "stock": 400,
            "hsn_code": "7318", "category": "Fasteners"}
    data.update(extra)
    return data


def test_create_product(backend, sheets):
    p = backend.create_product(bolt())
    assert p.id.startswith("PRD-")
    assert p.created_at == p.updated_at == "2024-01-05T10:30:00.000Z"
    [row] = sheets.get_values(PRODUCT_SCHEMA.data_range())
    assert row[0] == p.id


def test_products_read_back_with_defaults(backend):
    backend.create_product(bolt())
    backend.create_product({"name": "Custom Gate", "stock": "made to order"})
    bolt_, gate = backend.get_products()
    assert bolt_.price == 12.5 and bolt_.stock == 400.0
    assert gate.stock == "made to order"
    assert gate.tax_rate == 18.0 and gate.unit == "pcs" and gate.status == "Active"


def test_update_product(backend, clock):
    p = backend.create_product(bolt())
    clock.advance(minutes=5)
    updated = backend.update_product(p.id, {"price": 14, "id": "PRD-hijack"})
    assert updated.id == p.id
    assert updated.updated_at == "2024-01-05T10:35:00.000Z"
    [read] = backend.get_products()
    assert read.price == 14.0
    assert read.created_at == p.created_at


def test_update_unknown_product(backend):
    with pytest.raises(NotFoundError):
        backend.update_product("PRD-1", {"price": 1})


def test_search_products(backend):
    backend.create_product(bolt())
    backend.create_product({"name": "Drill", "category": "Tools"})
    assert [p.name for p in backend.search_products("fasten")] == ["Hex Bolt"]
    assert [p.name for p in backend.search_products("m8")] == ["Hex Bolt"]
    assert backend.search_products("saw") == []


def test_products_read_failure(backend, sheets):
    backend.create_product(bolt())
    sheets.fail_reads = True
    assert backend.get_products() == []
