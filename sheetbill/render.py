# Invoice pages: ReportLab blocks, measured off-page, packed, drawn on fixed A4 frames
import io
import re
import logging
from xml.sax.saxutils import escape

from reportlab.pdfgen import canvas
from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import Flowable, Paragraph, Table, TableStyle
from reportlab.graphics.shapes import Drawing
from reportlab.graphics.barcode.qr import QrCodeWidget
from pdf2image import convert_from_bytes

from .config import Config
from .pagination import TableDocument, paginate

logger = logging.getLogger(__name__)

PT_PER_PX = 0.75  # CSS px at 96 DPI
HEADER_BAND_PX = 36
TITLE = "TAX INVOICE"
COPY_LABEL = "ORIGINAL FOR RECIPIENT"
FOOTER_NOTE = "This is a digitally signed document."


def px(v):
    return v * PT_PER_PX


def _money(x):
    try:
        return f"{float(x):,.2f}"
    except (TypeError, ValueError):
        return str(x)


def _safe_filename(name):
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "invoice"


def _esc(v):
    return escape("" if v is None else str(v))


def _p(text, style):
    return Paragraph(_esc(text or "").replace("\n", "<br/>"), style)


def _lines(*parts):
    return "<br/>".join(p for p in parts if p)


class _Placeholder(Flowable):
    """Grey box standing in for an image that could not be loaded."""

    def __init__(self, width, height, label):
        super().__init__()
        self.width, self.height, self.label = width, height, label

    def wrap(self, aw, ah):
        return self.width, self.height

    def draw(self):
        c = self.canv
        c.setStrokeColor(colors.lightgrey)
        c.setFillColor(colors.whitesmoke)
        c.rect(0, 0, self.width, self.height, stroke=1, fill=1)
        c.setFillColor(colors.grey)
        c.setFont("Helvetica", 7)
        c.drawCentredString(self.width / 2, self.height / 2 - 2, self.label)


class _ImageBox(Flowable):
    def __init__(self, reader, max_w, max_h):
        super().__init__()
        iw, ih = reader.getSize()
        scale = min(max_w / iw, max_h / ih)
        self.reader = reader
        self.width, self.height = iw * scale, ih * scale

    def wrap(self, aw, ah):
        return self.width, self.height

    def draw(self):
        self.canv.drawImage(self.reader, 0, 0, self.width, self.height,
                            preserveAspectRatio=True, mask="auto")


def image_or_placeholder(reader, max_w, max_h, label):
    if reader is not None:
        try:
            return _ImageBox(reader, max_w, max_h)
        except (OSError, ValueError, ZeroDivisionError) as e:
            logger.warning("%s image unusable: %s", label, e)
    return _Placeholder(max_w, max_h, label)


def qr_drawing(payload, size):
    widget = QrCodeWidget(payload)
    x0, y0, x1, y1 = widget.getBounds()
    d = Drawing(size, size, transform=[size / (x1 - x0), 0, 0, size / (y1 - y0), 0, 0])
    d.add(widget)
    return d


class ReportLabMeasurer:
    """Height in px of a flowable laid out at the page's content width."""

    def __init__(self, content_width_px):
        self.width_pt = px(content_width_px)

    def __call__(self, flowable):
        if flowable is None:
            return 0
        _, h = flowable.wrap(self.width_pt, 10 ** 6)
        return h / PT_PER_PX


class InvoiceRenderer:
    """
    Renders an invoice view (see invoice_view.build_invoice_view) to PDF/PNG.
    `fetch_image(src)` returns an ImageReader or None; None draws a placeholder.
    """

    def __init__(self, view, fetch_image=None, config=Config):
        self.view = view
        self.cfg = config
        self.page_size = (px(config.PAGE_WIDTH_PX), px(config.PAGE_HEIGHT_PX))
        # measured and drawn at the same width, derived once from the page frame
        self.content_width_px = config.PAGE_WIDTH_PX - 2 * config.PAGE_PADDING_X_PX
        self.width = px(self.content_width_px)
        self.max_height = config.MAX_PAGE_BODY_HEIGHT
        self.measurer = ReportLabMeasurer(self.content_width_px)
        self.logo = fetch_image(view["company_logo"]) if fetch_image and view.get("company_logo") else None
        self.signature = fetch_image(view["signature"]) if fetch_image and view.get("signature") else None
        self.styles = {
            "body": ParagraphStyle("body", fontName="Helvetica", fontSize=8, leading=10),
            "small": ParagraphStyle("small", fontName="Helvetica", fontSize=7, leading=9),
            "company": ParagraphStyle("company", fontName="Helvetica", fontSize=8, leading=10.5),
            "right": ParagraphStyle("right", fontName="Helvetica", fontSize=8, leading=10, alignment=TA_RIGHT),
        }
        w = self.width
        # #, item, HSN/SAC, rate, qty, tax, amount
        fixed = [22, 58, 66, 56, 40, 78]
        self.item_cols = [fixed[0], w - sum(fixed)] + fixed[1:]
        self._pages = None

    # ---------- blocks ----------
    def _company_block(self):
        v = self.view
        text = _lines(
            f"<font size=11><b>{_esc(v['company_name'] or '')}</b></font>",
            _esc(v["company_address"] or ""),
            f"GSTIN: {_esc(v['company_gstin'])}" if v.get("company_gstin") else "",
            f"Phone: {_esc(v['company_phone'])}" if v.get("company_phone") else "",
            f"Email: {_esc(v['company_email'])}" if v.get("company_email") else "",
        )
        logo = image_or_placeholder(self.logo, 110, 48, "LOGO")
        t = Table([[logo, Paragraph(text, self.styles["company"])]], colWidths=[120, self.width - 120])
        t.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.black),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ]))
        return t

    def _meta_block(self):
        v = self.view
        st = self.styles["body"]
        bill_to = _lines(
            "<b>Bill To</b>",
            f"<b>{_esc(v['customer_name'] or '')}</b>",
            _esc(v.get("customer_address") or ""),
            f"Phone: {_esc(v['customer_phone'])}" if v.get("customer_phone") else "",
            f"GSTIN: {_esc(v['customer_gstin'])}" if v.get("customer_gstin") else "",
        )
        meta = _lines(
            f"<b>Invoice #:</b> {_esc(v['invoice_number'] or '')}",
            f"<b>Invoice Date:</b> {_esc(v['invoice_date'])}" if v.get("invoice_date") else "",
            f"<b>Due Date:</b> {_esc(v['due_date'])}" if v.get("due_date") else "",
            f"<b>Place of Supply:</b> {_esc(v['place_of_supply'])}" if v.get("place_of_supply") else "",
        )
        rows = [[Paragraph(bill_to, st), Paragraph(meta, st)]]
        if v.get("shipping_address") or v.get("dispatch_from"):
            rows.append([
                Paragraph(_lines("<b>Ship To</b>", _esc(v.get("shipping_address") or "")), st),
                Paragraph(_lines("<b>Dispatch From</b>", _esc(v.get("dispatch_from") or "")), st),
            ])
        half = self.width / 2
        t = Table(rows, colWidths=[half, half])
        t.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.black),
            ("LINEAFTER", (0, 0), (0, -1), 0.4, colors.grey),
            ("LINEBELOW", (0, 0), (-1, -2), 0.4, colors.grey),
        ]))
        return t

    def _table_header(self):
        t = Table([["#", "Item", "HSN/SAC", "Rate/Item", "Qty", "Tax", "Amount"]], colWidths=self.item_cols)
        t.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica-Bold", 8),
            ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#EEF2F7")),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.black),
            ("ALIGN", (3, 0), (-1, -1), "RIGHT"),
        ]))
        return t

    def _item_row(self, item):
        name = f"<b>{_esc(item['name'])}</b>"
        if item.get("description"):
            name += f"<br/><font size=7>{_esc(item['description'])}</font>"
        t = Table([[
            str(item["no"]), Paragraph(name, self.styles["body"]), item.get("hsn_sac") or "",
            item["rate_per_item"], item["qty"], item["tax"], _money(item["amount"]),
        ]], colWidths=self.item_cols)
        t.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica", 8),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("ALIGN", (3, 0), (-1, -1), "RIGHT"),
            ("LINEBEFORE", (0, 0), (0, 0), 0.6, colors.black),
            ("LINEAFTER", (-1, 0), (-1, 0), 0.6, colors.black),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ]))
        return t

    def _table_footer(self):
        v = self.view
        rows = [("Taxable Amount", v["taxable_amount"]), ("CGST", v["cgst"]), ("SGST", v["sgst"])]
        rows += [(c["name"], c["amount"]) for c in v.get("additional_charges") or []]
        if v.get("total_discount"):
            rows.append(("Discount", -v["total_discount"]))
        for key, label in (("tds", "TDS"), ("tds_under_gst", "TDS under GST"), ("tcs", "TCS")):
            if v.get(key):
                rows.append((f"{label} ({v[key].get('rate', 0)}%)", v[key].get("amount", 0)))
        if v.get("round_off"):
            rows.append(("Round Off", v["round_off"]))
        data = [["", label, _money(amount)] for label, amount in rows]
        data.append([f"Total Items / Qty: {len(v['items'])} / {v['total_quantity']:g}",
                     "Total", f"INR {_money(v['total_amount'])}"])
        t = Table(data, colWidths=[self.width - 220, 130, 90])
        t.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica", 8),
            ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 9),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.black),
            ("LINEABOVE", (0, -1), (-1, -1), 0.6, colors.black),
        ]))
        return t

    def _words_block(self):
        return Paragraph(f"<b>Total amount (in words):</b> {_esc(self.view['amount_in_words'])}",
                         self.styles["body"])

    def _tax_summary(self):
        v = self.view
        data = [["HSN/SAC", "Taxable Value", "Central Tax", "", "State/UT Tax", "", "Total Tax"],
                ["", "", "Rate", "Amount", "Rate", "Amount", ""]]
        for r in v["tax_breakdown"]:
            data.append([
                r["hsn_sac"], _money(r["taxable_value"]),
                f"{r['central_tax_rate']:g}%", _money(r["central_tax_amount"]),
                f"{r['state_tax_rate']:g}%", _money(r["state_tax_amount"]),
                _money(r["total_tax_amount"]),
            ])
        data.append(["Total", _money(sum(r["taxable_value"] for r in v["tax_breakdown"])),
                     "", _money(v["total_central_tax"]), "", _money(v["total_state_tax"]),
                     _money(v["total_tax_amount"])])
        w = self.width
        t = Table(data, colWidths=[w * 0.16, w * 0.18, w * 0.1, w * 0.15, w * 0.1, w * 0.15, w * 0.16])
        t.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica", 7.5),
            ("FONT", (0, 0), (-1, 1), "Helvetica-Bold", 7.5),
            ("FONT", (0, -1), (-1, -1), "Helvetica-Bold", 7.5),
            ("SPAN", (2, 0), (3, 0)), ("SPAN", (4, 0), (5, 0)),
            ("SPAN", (0, 0), (0, 1)), ("SPAN", (1, 0), (1, 1)), ("SPAN", (6, 0), (6, 1)),
            ("GRID", (0, 0), (-1, -1), 0.3, colors.grey),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
            ("BACKGROUND", (0, 0), (-1, 1), colors.HexColor("#EEF2F7")),
        ]))
        return t

    def _payment_banner(self):
        v = self.view
        if v["payment_status"] == "Paid":
            text, bg = f"PAID {('on ' + v['payment_date']) if v.get('payment_date') else ''} via {v['payment_method']}", "#DCFCE7"
        else:
            text, bg = f"PAYMENT PENDING  |  Amount due INR {_money(v['total_amount'])}", "#FEF3C7"
        t = Table([[" ".join(text.split())]], colWidths=[self.width])
        t.setStyle(TableStyle([
            ("FONT", (0, 0), (-1, -1), "Helvetica-Bold", 9),
            ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(bg)),
            ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ]))
        return t

    def _bank_block(self):
        v = self.view
        st = self.styles["body"]
        bank = _lines(
            "<b>Bank Details</b>",
            f"Bank: {_esc(v['bank_name'])}" if v.get("bank_name") else "",
            f"Account #: {_esc(v['account_number'])}" if v.get("account_number") else "",
            f"IFSC: {_esc(v['ifsc_code'])}" if v.get("ifsc_code") else "",
            f"Branch: {_esc(v['branch'])}" if v.get("branch") else "",
        )
        qr = qr_drawing(v["qr_payload"], 80) if v.get("qr_payload") else Paragraph("", st)
        sign = Table([
            [Paragraph(f"For {_esc(v['company_name'] or '')}", self.styles["right"])],
            [image_or_placeholder(self.signature, 120, 45, "SIGNATURE")],
            [Paragraph(_esc(v.get("signature_name") or "Authorised Signatory"), self.styles["right"])],
        ], colWidths=[150])
        sign.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "RIGHT")]))
        t = Table([[Paragraph(bank, st), qr, sign]], colWidths=[self.width - 250, 100, 150])
        t.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("BOX", (0, 0), (-1, -1), 0.6, colors.black),
        ]))
        return t

    def _notes_block(self):
        v = self.view
        parts = []
        if v.get("payment_notes"):
            parts.append(f"<b>Payment Notes:</b> {_esc(v['payment_notes'])}")
        if v.get("notes"):
            parts.append(f"<b>Notes:</b> {_esc(v['notes'])}")
        if v.get("terms"):
            parts.append(f"<b>Terms &amp; Conditions:</b> {_esc(v['terms'])}")
        return Paragraph("<br/>".join(parts), self.styles["small"]) if parts else None

    def build_document(self):
        after = [self._words_block(), self._tax_summary(), self._payment_banner(), self._bank_block()]
        notes = self._notes_block()
        if notes is not None:
            after.append(notes)
        return TableDocument(
            before=[self._company_block(), self._meta_block()],
            table_header=self._table_header(),
            rows=[self._item_row(i) for i in self.view["items"]],
            table_footer=self._table_footer(),
            after=after,
        )

    def pages(self):
        if self._pages is None:
            self._pages = paginate(self.build_document(), self.measurer, self.max_height)
        return self._pages

    # ---------- drawing ----------
    def _draw_page(self, c, blocks, number, count):
        cfg = self.cfg
        pw, ph = self.page_size
        top = ph - px(cfg.PAGE_PADDING_TOP_PX)
        c.setFont("Helvetica-Bold", 12)
        c.drawCentredString(pw / 2, top - 14, TITLE)
        c.setFont("Helvetica", 7)
        c.drawRightString(pw - px(cfg.PAGE_PADDING_X_PX), top - 13, COPY_LABEL)

        x = px(cfg.PAGE_PADDING_X_PX)
        y = top - px(HEADER_BAND_PX)
        for block in blocks:
            _, h = block.wrap(self.width, 10 ** 6)
            block.drawOn(c, x, y - h)
            y -= h

        c.setFont("Helvetica", 7)
        c.setFillColor(colors.grey)
        c.drawCentredString(pw / 2, px(cfg.PAGE_PADDING_BOTTOM_PX) / 2,
                            f"Page {number}/{count} • {FOOTER_NOTE}")
        c.setFillColor(colors.black)

    def _pdf(self, title):
        pages = self.pages()
        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=self.page_size)
        c.setTitle(title)
        c.setAuthor(self.view.get("company_name") or "")
        for i, blocks in enumerate(pages, start=1):
            self._draw_page(c, blocks, i, len(pages))
            c.showPage()
        c.save()
        return buf.getvalue()

    @property
    def filename(self):
        return _safe_filename(self.view.get("invoice_number") or "invoice")

    def download_as_pdf(self):
        """(pdf bytes, file name) for an attachment download."""
        return self._pdf(f"Invoice {self.view.get('invoice_number', '')}"), f"{self.filename}.pdf"

    def print_invoice(self):
        """Same pages, meant to be served inline so the browser's print dialog opens on them."""
        return self._pdf(f"{TITLE} {self.view.get('invoice_number', '')}"), f"{self.filename}.pdf"

    def download_as_image(self):
        """First page rasterized to PNG."""
        pdf, _ = self.download_as_pdf()
        images = convert_from_bytes(pdf, dpi=self.cfg.RASTER_DPI, first_page=1, last_page=1)
        if not images:
            raise ValueError("Invoice rendered no pages")
        out = io.BytesIO()
        images[0].save(out, format="PNG")
        return out.getvalue(), f"{self.filename}.png"
