from unittest.mock import MagicMock, patch

import pytest

from sheetbill.invoice_view import build_invoice_view
from sheetbill.models import Invoice
from sheetbill.config import Config
from sheetbill.pagination import paginate
from sheetbill.render import (
    InvoiceRenderer, ReportLabMeasurer, _ImageBox, _Placeholder, image_or_placeholder,
)
from sheetbill.settings import Settings

from conftest import invoice_payload


def view_for(**overrides):
    inv = Invoice.from_dict(invoice_payload(**overrides))
    inv.id = f"{inv.invoice_prefix}{inv.invoice_number}"
    settings = Settings(company_details={"name": "Acme Pvt Ltd", "gstin": "29AABCU9603R1ZX",
                                         "logo": "https://drive.google.com/file/d/LOGOFILE123/view"})
    return build_invoice_view(inv, settings)


def many_items(n):
    item = invoice_payload()["items"][0]
    return [dict(item, description=f"Batch {i}") for i in range(n)]


def test_measurer_reports_px():
    block = MagicMock()
    block.wrap.return_value = (100, 75)
    m = ReportLabMeasurer(714)
    assert m(block) == 100
    assert block.wrap.call_args[0][0] == pytest.approx(714 * 0.75)
    assert m(None) == 0


def test_image_or_placeholder():
    reader = MagicMock()
    reader.getSize.return_value = (400, 100)
    box = image_or_placeholder(reader, 110, 48, "LOGO")
    assert isinstance(box, _ImageBox)
    assert (box.width, box.height) == pytest.approx((110, 27.5))

    broken = MagicMock()
    broken.getSize.side_effect = OSError("truncated")
    assert isinstance(image_or_placeholder(broken, 110, 48, "LOGO"), _Placeholder)
    assert isinstance(image_or_placeholder(None, 110, 48, "LOGO"), _Placeholder)


def test_pdf_with_placeholders_for_missing_images():
    fetch = MagicMock(return_value=None)
    r = InvoiceRenderer(view_for(), fetch_image=fetch)
    pdf, name = r.download_as_pdf()
    assert pdf.startswith(b"%PDF")
    assert name == "INV-7.pdf"
    assert [c[0][0] for c in fetch.call_args_list] == ["LOGOFILE123", "SIGFILE12345"]
    assert len(r.pages()) == 1


def test_print_invoice_is_a_pdf():
    pdf, name = InvoiceRenderer(view_for()).print_invoice()
    assert pdf.startswith(b"%PDF") and name == "INV-7.pdf"


def test_long_invoice_spans_pages_within_page_height():
    r = InvoiceRenderer(view_for(items=many_items(60)))
    doc = r.build_document()
    pages = paginate(doc, r.measurer, r.max_height)
    assert len(pages) > 1
    assert pages[0][0] is doc.before[0]
    for page in pages:
        assert sum(r.measurer(b) for b in page) <= r.max_height
    # every row drawn once, in order
    drawn = [b for page in pages for b in page if b in doc.rows]
    assert len(drawn) == 60
    assert r.download_as_pdf()[0].startswith(b"%PDF")


def test_measured_rows_drive_pagination():
    r = InvoiceRenderer(view_for(items=many_items(3)))
    heights = [r.measurer(b) for b in r.build_document().rows]
    assert all(h > 0 for h in heights)


def test_download_as_image_rasterizes_first_page():
    image = MagicMock()
    image.save.side_effect = lambda out, format: out.write(b"\x89PNG fake")
    with patch("sheetbill.render.convert_from_bytes", return_value=[image]) as conv:
        png, name = InvoiceRenderer(view_for()).download_as_image()
    assert png == b"\x89PNG fake"
    assert name == "INV-7.png"
    args, kwargs = conv.call_args
    assert args[0].startswith(b"%PDF")
    assert kwargs == {"dpi": Config.RASTER_DPI, "first_page": 1, "last_page": 1}


def test_unsafe_characters_dropped_from_filename():
    r = InvoiceRenderer(view_for(invoice_prefix="INV/", invoice_number="7?"))
    assert r.filename == "INV7"


def test_numeric_company_fields_render():
    inv = Invoice.from_dict(invoice_payload())
    inv.id = "INV-7"
    settings = Settings(company_details={"name": "Acme Pvt Ltd", "billing_city": "Bengaluru",
                                         "billing_pincode": 560001, "phone": 9876543210})
    view = build_invoice_view(inv, settings)
    assert view["company_address"] == "Bengaluru, 560001"
    assert view["company_phone"] == "9876543210"
    assert InvoiceRenderer(view).download_as_pdf()[0].startswith(b"%PDF")


def test_number_typed_cells_survive_read_view_and_pdf(typed_backend):
    typed_backend.update_section("companyDetails", {
        "name": "Acme Pvt Ltd", "billing_city": "Bengaluru",
        "billing_pincode": "560001", "phone": "9876543210",
    })
    cust = typed_backend.create_customer({"name": "Acme Traders"})
    typed_backend.update_customer(cust.id, {"phone": "9123456780"})
    phone = typed_backend.find_customer(cust.id).phone
    assert phone == "9123456780"

    settings = typed_backend.get_settings()
    # the sheet hands these back as numbers
    assert settings.company_details["billing_pincode"] == 560001
    assert settings.company_details["phone"] == 9876543210

    payload = invoice_payload(customer_id=cust.id,
                              customer={"name": "Acme Traders", "phone": int(phone)})
    typed_backend.create_invoice(payload)
    inv = typed_backend.find_invoice("INV-7")
    view = build_invoice_view(inv, settings)
    assert view["company_address"].endswith("560001")
    assert view["customer_phone"] == "9123456780"
    pdf, name = InvoiceRenderer(view).download_as_pdf()
    assert pdf.startswith(b"%PDF") and name == "INV-7.pdf"
