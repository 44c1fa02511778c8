# Spreadsheet-as-database: every record of one account lives in its own workbook
import re
import json
import logging
from datetime import datetime, date, timezone

from .errors import GoogleAPIError, NotFoundError, SchemaMismatchError
from .models import Invoice, Customer, Vendor, Product, LedgerEntry, CANCELLED
from .schema import (
    INVOICE_SCHEMA, CUSTOMER_SCHEMA, VENDOR_SCHEMA, PRODUCT_SCHEMA,
    LEDGER_SCHEMA, VENDOR_LEDGER_SCHEMA, SCHEMAS,
    SETTINGS_SHEET, SETTINGS_RANGE, SECTION_MARKER, safe_json, to_float,
)
from .settings import (
    Settings, group_settings, section_bounds, seed_rows,
    add_bank, remove_bank, set_default_bank,
)

logger = logging.getLogger(__name__)

# (title, rows, columns) in tab order
WORKBOOK_TABS = [
    ("Dashboard", 1000, 26),
    ("Invoices", 1000, INVOICE_SCHEMA.width),
    ("Products", 1000, PRODUCT_SCHEMA.width),
    ("Customers", 1000, CUSTOMER_SCHEMA.width),
    ("Vendors", 1000, VENDOR_SCHEMA.width),
    ("Payments", 1000, 8),
    ("Expenses", 1000, 10),
    ("Quotations", 1000, 14),
    ("Credit_Notes", 1000, 10),
    (SETTINGS_SHEET, 200, 5),
    ("Customer_Ledgers", 1000, LEDGER_SCHEMA.width),
    ("Vendor_Ledgers", 1000, VENDOR_LEDGER_SCHEMA.width),
]

# Tabs we create but do not manage yet
STATIC_HEADERS = {
    "Quotations": ["Quote ID", "Customer ID", "Customer Name", "Date", "Valid Until", "Subtotal",
                   "Tax Amount", "Total", "Status", "Items", "Notes", "Created At", "Updated At",
                   "Converted To Invoice"],
    "Payments": ["Payment ID", "Invoice ID", "Amount", "Date", "Method", "Status", "Reference", "Notes"],
    "Expenses": ["Expense ID", "Description", "Amount", "Date", "Category", "Vendor", "Tax",
                 "Receipt", "Status", "Approved By"],
    "Credit_Notes": ["Credit Note ID", "Invoice ID", "Customer", "Date", "Amount", "Reason",
                     "Status", "Approved By", "Reference", "Notes"],
}

TRANSACTION_TYPES = ("payIn", "payOut")


def _utcnow():
    return datetime.now(timezone.utc)


def iso_timestamp(dt):
    """2024-01-05T10:30:00.000Z for UTC datetimes, plain isoformat otherwise."""
    s = dt.isoformat(timespec="milliseconds")
    return s[:-6] + "Z" if s.endswith("+00:00") else s


def _day(value):
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value or "")[:10]


def _as_timestamp(value):
    if isinstance(value, datetime):
        return iso_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value or "")


def _matches(term, *values):
    return any(term in str(v or "").lower() for v in values)


def _number_tail(raw):
    raw = str(raw or "").strip()
    if raw.isdigit():
        return int(raw)
    m = re.search(r"(\d+)$", raw)
    return int(m.group(1)) if m else None


class BackendService:
    """
    All reads and writes for one account's workbook.

    Public reads log failures and return empty results; writes (and the
    lookups they depend on) raise.
    """

    def __init__(self, sheets, clock=None):
        self.sheets = sheets
        self._clock = clock or _utcnow
        self._last_ms = 0

    # ---------- helpers ----------
    def _now(self):
        return self._clock()

    def _stamp_id(self, prefix):
        ms = int(self._now().timestamp() * 1000)
        if ms <= self._last_ms:
            ms = self._last_ms + 1
        self._last_ms = ms
        return f"{prefix}-{ms}"

    def _rows(self, schema):
        """[(row_number, decoded)] for every row with a non-empty first id column."""
        values = self.sheets.get_values(schema.data_range())
        key = "id" if "id" in schema.names else "ledger_id"
        out = []
        for i, raw in enumerate(values):
            rec = schema.decode(raw)
            if not rec.get(key):
                continue
            out.append((schema.first_data_row + i, rec))
        return out

    def _ledger_schema(self, vendor):
        return VENDOR_LEDGER_SCHEMA if vendor else LEDGER_SCHEMA

    def _party_schema(self, vendor):
        return VENDOR_SCHEMA if vendor else CUSTOMER_SCHEMA

    def _ledger_row(self, vendor=False, **fields):
        now = self._now()
        entry = LedgerEntry(
            ledger_id=fields.pop("ledger_id", None) or self._stamp_id("VENDLED" if vendor else "CUSTLED"),
            date=iso_timestamp(now),
            date_formatted=_day(now),
            created_at=iso_timestamp(now),
        )
        for k, v in fields.items():
            setattr(entry, k, v)
        return entry

    # ---------- invoices ----------
    def create_invoice(self, data):
        now = iso_timestamp(self._now())
        invoice = Invoice.from_dict(data)
        invoice.id = f"{invoice.invoice_prefix}{invoice.invoice_number}"
        invoice.created_at = invoice.updated_at = now
        total = to_float(invoice.total)

        pending = self._ledger_row(
            party_id=invoice.customer_id, document_id=invoice.id,
            status="paid" if invoice.marked_as_paid else "pending",
            type="Invoice", amount=-total,
        )
        entries = [pending]
        if invoice.marked_as_paid:
            mode = (invoice.payment_modes or [{}])[0] or {}
            entries.append(self._ledger_row(
                party_id=invoice.customer_id, document_id=invoice.id, status="-", type="Invoice",
                payment_mode=mode.get("paymentMethod") or mode.get("payment_method") or "",
                bank_account=invoice.bank_account, notes=invoice.payment_notes or "", amount=total,
            ))
        invoice.ledger_id = pending.ledger_id

        self.sheets.append_rows([
            (INVOICE_SCHEMA.sheet, [INVOICE_SCHEMA.encode(invoice)]),
            (LEDGER_SCHEMA.sheet, [LEDGER_SCHEMA.encode(e) for e in entries]),
        ])
        logger.info("Created invoice %s (%d ledger rows)", invoice.id, len(entries))
        return invoice

    def _invoice_rows(self):
        rows = [(n, Invoice.from_dict(rec)) for n, rec in self._rows(INVOICE_SCHEMA)]
        for n, inv in rows:
            inv.row_id = inv.row_id or n
        rows.sort(key=lambda r: r[1].row_id, reverse=True)
        return rows

    def get_invoices(self):
        try:
            return [inv for _, inv in self._invoice_rows()]
        except GoogleAPIError as e:
            logger.error("Error getting invoices: %s", e)
            return []

    def get_invoice_by_id(self, row_index):
        try:
            values = self.sheets.get_values(INVOICE_SCHEMA.row_range(int(row_index)))
        except (GoogleAPIError, TypeError, ValueError) as e:
            logger.error("Error getting invoice at row %s: %s", row_index, e)
            return None
        if not values or not values[0]:
            return None
        rec = INVOICE_SCHEMA.decode(values[0])
        if not rec["id"]:
            return None
        rec["row_id"] = rec["row_id"] or int(row_index)
        return Invoice.from_dict(rec)

    def find_invoice(self, invoice_id):
        return next((i for i in self.get_invoices() if i.id == str(invoice_id)), None)

    def _find_invoice_row(self, invoice_id):
        for n, inv in self._invoice_rows():
            if inv.id == str(invoice_id):
                return n, inv
        raise NotFoundError(f"Invoice {invoice_id} not found")

    def update_invoice(self, invoice_id, patch):
        row_number, current = self._find_invoice_row(invoice_id)
        merged = current.to_dict()
        merged.update({k: v for k, v in (patch or {}).items() if k not in ("row_id", "created_at")})
        merged["updated_at"] = iso_timestamp(self._now())
        invoice = Invoice.from_dict(merged)
        invoice.row_id = row_number
        self.sheets.update_values(INVOICE_SCHEMA.row_range(row_number), [INVOICE_SCHEMA.encode(invoice)])
        return invoice

    def delete_invoice(self, invoice_id):
        # archival: invoices are cancelled, never removed
        return self.update_invoice(invoice_id, {"status": CANCELLED})

    def search_invoices(self, query):
        term = (query or "").lower()
        return [i for i in self.get_invoices() if _matches(term, i.id, i.customer_name, i.status)]

    def get_invoice_stats(self):
        invoices = self.get_invoices()

        def _sum(items):
            return sum(to_float(i.total) for i in items)

        paid = [i for i in invoices if i.status == "Paid"]
        pending = [i for i in invoices if i.status == "Sent"]
        overdue = [i for i in invoices if i.status == "Overdue"]
        return {
            "total_invoices": len(invoices),
            "total_revenue": _sum(invoices),
            "paid_amount": _sum(paid),
            "pending_amount": _sum(pending),
            "overdue_amount": _sum(overdue),
            "paid_count": len(paid),
            "pending_count": len(pending),
            "overdue_count": len(overdue),
        }

    def next_invoice_number(self, prefix=""):
        max_num = 0
        for inv in self.get_invoices():
            if prefix and inv.invoice_prefix != prefix:
                continue
            num = _number_tail(inv.invoice_number)
            if num is not None and num > max_num:
                max_num = num
        return str(max_num + 1 if max_num > 0 else 1)

    # ---------- customers / vendors ----------
    def create_customer(self, data, vendor=False):
        schema = self._party_schema(vendor)
        model = Vendor if vendor else Customer
        data = dict(data or {})
        opening = data.pop("balance", None)
        account_type = str(data.pop("account_type", "") or "").lower()

        party = model.from_dict(data)
        party.id = self._stamp_id("VEND" if vendor else "CUST")
        party.created_at = iso_timestamp(self._now())
        party.status = party.status or "Active"

        batches = [(schema.sheet, [schema.encode(party)])]
        amount = to_float(opening) if opening not in (None, "") else 0.0
        if amount:
            amount = amount if account_type == "credit" else -amount
            entry = self._ledger_row(
                vendor=vendor, party_id=party.id, type="Opening Balance",
                status="opening balance", amount=amount,
            )
            batches.append((self._ledger_schema(vendor).sheet, [self._ledger_schema(vendor).encode(entry)]))
            party.balance = amount
        self.sheets.append_rows(batches)
        logger.info("Created %s %s", "vendor" if vendor else "customer", party.id)
        return party

    def _balances(self, vendor):
        out = {}
        for _, rec in self._rows(self._ledger_schema(vendor)):
            out[rec["party_id"]] = out.get(rec["party_id"], 0.0) + rec["amount"]
        return out

    def _party_rows(self, vendor):
        model = Vendor if vendor else Customer
        balances = self._balances(vendor)
        rows = []
        for n, rec in self._rows(self._party_schema(vendor)):
            party = model.from_dict(rec)
            party.row_id = party.row_id or n
            party.balance = round(balances.get(party.id, party.balance), 2)
            rows.append((n, party))
        return rows

    def get_customers(self, vendor=False):
        """{"status_insights": {...}, "customers": [...]}, newest first."""
        try:
            parties = [p for _, p in self._party_rows(vendor)]
        except GoogleAPIError as e:
            logger.error("Error getting %s: %s", "vendors" if vendor else "customers", e)
            return {"status_insights": {}, "customers": []}
        parties.sort(key=lambda p: p.row_id, reverse=True)
        insights = {
            "total": len(parties),
            "active": sum(1 for p in parties if p.status == "Active"),
            "to_collect": round(sum(-p.balance for p in parties if p.balance < 0), 2),
            "to_pay": round(sum(p.balance for p in parties if p.balance > 0), 2),
        }
        return {"status_insights": insights, "customers": parties}

    def find_customer(self, customer_id, vendor=False):
        for p in self.get_customers(vendor)["customers"]:
            if p.id == customer_id:
                return p
        return None

    def update_customer(self, customer_id, patch, vendor=False):
        schema = self._party_schema(vendor)
        model = Vendor if vendor else Customer
        for n, current in self._party_rows(vendor):
            if current.id == customer_id:
                break
        else:
            raise NotFoundError(f"{'Vendor' if vendor else 'Customer'} {customer_id} not found")
        merged = current.to_dict()
        merged.update({k: v for k, v in (patch or {}).items() if k not in ("id", "row_id", "balance", "created_at")})
        party = model.from_dict(merged)
        party.row_id = n
        self.sheets.update_values(schema.row_range(n), [schema.encode(party)])
        return party

    def search_customers(self, query, vendor=False):
        term = (query or "").lower()
        return [p for p in self.get_customers(vendor)["customers"]
                if _matches(term, p.name, p.email, p.phone, p.gstin)]

    def create_vendor(self, data):
        return self.create_customer(data, vendor=True)

    def get_vendors(self):
        return self.get_customers(vendor=True)

    def find_vendor(self, vendor_id):
        return self.find_customer(vendor_id, vendor=True)

    def update_vendor(self, vendor_id, patch):
        return self.update_customer(vendor_id, patch, vendor=True)

    def search_vendors(self, query):
        return self.search_customers(query, vendor=True)

    # ---------- products ----------
    def create_product(self, data):
        product = Product.from_dict(data)
        product.id = self._stamp_id("PRD")
        product.created_at = product.updated_at = iso_timestamp(self._now())
        self.sheets.append_values(PRODUCT_SCHEMA.data_range(), [PRODUCT_SCHEMA.encode(product)])
        return product

    def get_products(self):
        try:
            return [Product.from_dict(rec) for _, rec in self._rows(PRODUCT_SCHEMA)]
        except GoogleAPIError as e:
            logger.error("Error getting products: %s", e)
            return []

    def update_product(self, product_id, patch):
        for n, rec in self._rows(PRODUCT_SCHEMA):
            if rec["id"] == product_id:
                break
        else:
            raise NotFoundError(f"Product {product_id} not found")
        rec.update({k: v for k, v in (patch or {}).items() if k not in ("id", "created_at")})
        rec["updated_at"] = iso_timestamp(self._now())
        product = Product.from_dict(rec)
        self.sheets.update_values(PRODUCT_SCHEMA.row_range(n), [PRODUCT_SCHEMA.encode(product)])
        return product

    def search_products(self, query):
        term = (query or "").lower()
        return [p for p in self.get_products() if _matches(term, p.name, p.description, p.category)]

    # ---------- ledgers ----------
    def create_ledger_entry(self, data, vendor=False):
        schema = self._ledger_schema(vendor)
        fields = {k: v for k, v in LedgerEntry.from_dict(data).to_dict().items()
                  if v not in ("", None, 0, 0.0) and k not in ("row_id", "balance", "date", "created_at")}
        entry = self._ledger_row(vendor=vendor, **fields)
        self.sheets.append_values(schema.data_range(), [schema.encode(entry)])
        return entry

    def _ledger_entries(self, party_id, vendor):
        entries = []
        for n, rec in self._rows(self._ledger_schema(vendor)):
            if rec["party_id"] != party_id:
                continue
            e = LedgerEntry.from_dict(rec)
            e.row_id = e.row_id or n
            entries.append(e)
        entries.sort(key=lambda e: (e.date_formatted, e.row_id))
        running = 0.0
        for e in entries:
            running += e.amount
            e.balance = round(running, 2)
        return entries

    def get_ledger(self, party_id, date_from=None, date_to=None, order="DESC",
                   rows_per_page=20, page=1, pending_only=False, vendor=False):
        """
        One page of a party's ledger plus the filtered count.
        Running balances are over the whole history, before filtering.
        With only one of date_from/date_to, entries on exactly that day are kept.
        """
        try:
            entries = self._ledger_entries(party_id, vendor)
        except GoogleAPIError as e:
            logger.error("Error getting ledger for %s: %s", party_id, e)
            return {"count": 0, "data": []}

        lo, hi = _day(date_from) if date_from else "", _day(date_to) if date_to else ""
        if lo and hi:
            entries = [e for e in entries if lo <= e.date_formatted <= hi]
        elif lo or hi:
            entries = [e for e in entries if e.date_formatted == (lo or hi)]
        if pending_only:
            entries = [e for e in entries if e.status == "pending"]
        if str(order).upper() == "DESC":
            entries.reverse()

        per_page = max(int(rows_per_page), 1)
        start = (max(int(page), 1) - 1) * per_page
        return {"count": len(entries), "data": entries[start:start + per_page]}

    def create_transaction(self, party_id, amount, transaction_type, when, payment_mode="",
                           bank_account=None, notes="", vendor=False):
        if transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"transaction_type must be one of {TRANSACTION_TYPES}")
        amount = abs(to_float(amount))
        schema = self._ledger_schema(vendor)
        entry = self._ledger_row(
            vendor=vendor, party_id=party_id, status="paid", type=transaction_type,
            payment_mode=payment_mode or "", bank_account=bank_account or None, notes=notes or "",
            amount=-amount if transaction_type == "payOut" else amount,
        )
        entry.date = _as_timestamp(when)
        entry.date_formatted = _day(when)
        self.sheets.append_values(schema.data_range(), [schema.encode(entry)])
        return entry

    def update_transaction(self, entry, when, payment_mode="", bank_account=None, notes="", vendor=False):
        """Rewrites the stored row of `entry`; only date, mode, bank and notes change."""
        schema = self._ledger_schema(vendor)
        current = entry if isinstance(entry, LedgerEntry) else LedgerEntry.from_dict(entry)
        if not current.row_id:
            raise NotFoundError("Ledger entry has no row id")
        updated = LedgerEntry.from_dict(current.to_dict())
        updated.date = _as_timestamp(when)
        updated.date_formatted = _day(when)
        updated.payment_mode = payment_mode or ""
        updated.bank_account = bank_account or None
        updated.notes = notes or ""
        self.sheets.update_values(schema.row_range(int(current.row_id)), [schema.encode(updated)])
        return updated

    def delete_transaction(self, row_id, vendor=False):
        self.sheets.delete_row(self._ledger_schema(vendor).sheet, int(row_id))
        return True

    # ---------- settings ----------
    def _settings_rows(self):
        return self.sheets.get_values(SETTINGS_RANGE)

    def get_all_settings(self):
        try:
            return group_settings(self._settings_rows())
        except GoogleAPIError as e:
            logger.error("Error getting settings: %s", e)
            return {}

    def get_settings(self):
        return Settings.from_sections(self.get_all_settings())

    def update_section(self, section, updates, updated_by="system"):
        rows = self._settings_rows()
        start, end = section_bounds(rows, section)
        now = iso_timestamp(self._now())
        data = []
        for i in range(start + 1, end):
            row = rows[i]
            key = str(row[0]).strip() if row else ""
            if key and key in updates:
                val = updates[key]
                if isinstance(val, (dict, list)):
                    val = json.dumps(val, ensure_ascii=False)
                desc = row[2] if len(row) > 2 else ""
                data.append({"range": f"{SETTINGS_SHEET}!B{i + 1}:E{i + 1}",
                             "values": [[val, desc, now, updated_by]]})
        if data:
            self.sheets.batch_update_values(data)
        return len(data)

    def create_section(self, section, fields, created_by="system"):
        """fields: {key: {"value": ..., "description": ...}} or {key: value}"""
        now = iso_timestamp(self._now())
        rows = [[SECTION_MARKER, section, "", now, created_by]]
        for key, spec in (fields or {}).items():
            if isinstance(spec, dict) and "value" in spec:
                rows.append([key, spec.get("value", ""), spec.get("description", ""), now, created_by])
            else:
                rows.append([key, spec, "", now, created_by])
        existing = self.sheets.get_values(f"{SETTINGS_SHEET}!A:A")
        start = len(existing) + 1
        self.sheets.update_values(f"{SETTINGS_SHEET}!A{start}:E{start + len(rows) - 1}", rows)

    def delete_section(self, section):
        # rows are blanked, never removed, so other sections keep their positions
        rows = self._settings_rows()
        start, end = section_bounds(rows, section)
        blank = [["", "", "", "", ""] for _ in range(end - start)]
        self.sheets.update_values(f"{SETTINGS_SHEET}!A{start + 1}:E{end}", blank)

    # ---------- bank accounts ----------
    def _banks(self):
        grouped = group_settings(self._settings_rows())
        return safe_json(grouped.get("banks", {}).get("banks"), [])

    def _save_banks(self, banks):
        self.update_section("banks", {"banks": banks})
        return banks

    def add_bank_account(self, bank, make_default=False):
        return self._save_banks(add_bank(self._banks(), bank, make_default))

    def remove_bank_account(self, bank_id):
        return self._save_banks(remove_bank(self._banks(), bank_id))

    def set_default_bank(self, bank_id):
        return self._save_banks(set_default_bank(self._banks(), bank_id))

    # ---------- workspace ----------
    def initialize_spreadsheet(self, email):
        spreadsheet_id = self.sheets.create_spreadsheet(f"SheetBill - {email}", WORKBOOK_TABS)
        data = [{"range": s.header_range(), "values": [s.header()]} for s in SCHEMAS]
        for title, header in STATIC_HEADERS.items():
            data.append({"range": f"{title}!A1", "values": [header]})
        seed = seed_rows(iso_timestamp(self._now()))
        data.append({"range": f"{SETTINGS_SHEET}!A1:E{len(seed)}", "values": seed})
        self.sheets.batch_update_values(data)
        logger.info("Initialized workbook %s for %s", spreadsheet_id, email)
        return spreadsheet_id

    def verify_layout(self, strict=True):
        """{sheet: [(column, expected, found), ...]} for every managed tab whose header drifted."""
        problems = {}
        for schema in SCHEMAS:
            header = self.sheets.get_values(schema.header_range())
            try:
                schema.check_header(header[0] if header else [])
            except SchemaMismatchError as e:
                logger.error("%s", e)
                if strict:
                    raise
                problems[schema.sheet] = e.mismatches
        return problems
