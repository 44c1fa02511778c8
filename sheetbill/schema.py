# Column maps: the only place that knows where a field lives in a sheet row.
#
# Every persisted record is a flat row. Cells are addressed by position, so a
# column map is versioned and the header row written at setup time is checked
# against it (RowSchema.check_header) before anything trusts the layout.
import re
import copy
import json
from collections.abc import Mapping

from gspread.utils import rowcol_to_a1

from .errors import SchemaMismatchError

ROW_FORMULA = "=ROW()"


def column_letter(n):
    return re.sub(r"\d+", "", rowcol_to_a1(1, n))


def cell_str(v, default=""):
    if v is None or v == "":
        return default
    if isinstance(v, bool):
        return "TRUE" if v else "FALSE"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def to_float(v, default=0.0):
    if isinstance(v, bool):
        return float(v)
    if isinstance(v, (int, float)):
        return float(v)
    try:
        s = (v or "").strip().replace(",", "")
        return float(s) if s else float(default)
    except (TypeError, ValueError, AttributeError):
        return float(default)


def safe_json(v, default=None):
    if isinstance(v, (dict, list)):
        return v
    if v is None or v == "":
        return copy.deepcopy(default)
    try:
        parsed = json.loads(v)
    except (TypeError, ValueError):
        return copy.deepcopy(default)
    return copy.deepcopy(default) if parsed is None else parsed


class Column:
    """
    kind:
      row       written as =ROW(), read back as the physical row number
      str       text (numbers the sheet hands back are turned into text)
      float     number, bad cells read as `default`
      bool      TRUE/FALSE
      json      nested object JSON-encoded into one cell
      stock     number when it parses, otherwise text passthrough
      computed  owned by a sheet formula, never overwritten (null in writes)
    """

    def __init__(self, name, title, kind="str", default=""):
        self.name = name
        self.title = title
        self.kind = kind
        self.default = default

    def __repr__(self):
        return f"Column({self.name!r}, {self.kind})"

    def encode(self, value):
        k = self.kind
        if k == "row":
            return ROW_FORMULA
        if k == "computed":
            return None
        if k == "json":
            return "" if value is None else json.dumps(value, ensure_ascii=False)
        if k == "float":
            return to_float(value, self.default or 0.0)
        if k == "bool":
            return bool(value)
        return "" if value is None else value

    def decode(self, cell):
        k = self.kind
        if k == "row":
            try:
                return int(to_float(cell, 0))
            except (TypeError, ValueError):
                return 0
        if k == "float" or k == "computed":
            return to_float(cell, self.default or 0.0)
        if k == "bool":
            return cell is True or str(cell).strip().upper() == "TRUE"
        if k == "json":
            return safe_json(cell, self.default)
        if k == "stock":
            if isinstance(cell, (int, float)) and not isinstance(cell, bool):
                return float(cell)
            try:
                return float(str(cell).strip())
            except ValueError:
                return cell_str(cell)
        return cell_str(cell, self.default)


class RowSchema:
    def __init__(self, sheet, version, columns, first_data_row=2):
        self.sheet = sheet
        self.version = version
        self.columns = list(columns)
        self.first_data_row = first_data_row
        self._index = {c.name: i for i, c in enumerate(self.columns)}
        if len(self._index) != len(self.columns):
            raise ValueError(f"duplicate column name in {sheet} schema")

    def __repr__(self):
        return f"RowSchema({self.sheet!r}, v{self.version}, {self.width} cols)"

    @property
    def width(self):
        return len(self.columns)

    @property
    def names(self):
        return [c.name for c in self.columns]

    @property
    def last_column(self):
        return column_letter(self.width)

    def with_sheet(self, sheet):
        return RowSchema(sheet, self.version, self.columns, self.first_data_row)

    def index(self, name):
        return self._index[name]

    def header(self):
        return [c.title for c in self.columns]

    def encode(self, record):
        get = record.get if isinstance(record, Mapping) else (lambda k: getattr(record, k, None))
        return [c.encode(get(c.name)) for c in self.columns]

    def decode(self, row):
        row = list(row or [])
        row += [""] * (self.width - len(row))
        return {c.name: c.decode(row[i]) for i, c in enumerate(self.columns)}

    def row_range(self, row_number):
        return f"{self.sheet}!A{row_number}:{self.last_column}{row_number}"

    def data_range(self):
        return f"{self.sheet}!A{self.first_data_row}:{self.last_column}"

    def header_range(self):
        return f"{self.sheet}!A1:{self.last_column}1"

    def check_header(self, header_row):
        header_row = list(header_row or [])
        bad = []
        for i, c in enumerate(self.columns):
            got = str(header_row[i]).strip() if i < len(header_row) else ""
            if got != c.title:
                bad.append((column_letter(i + 1), c.title, got))
        if bad:
            raise SchemaMismatchError(self.sheet, bad)


def _off():
    return {"enabled": False, "rate": 0, "amount": 0}


INVOICE_SCHEMA = RowSchema("Invoices", 2, [
    Column("row_id", "Row ID", "row"),
    Column("id", "Invoice ID"),
    Column("customer_id", "Customer ID"),
    Column("customer", "Customer", "json", {}),
    Column("invoice_date", "Invoice Date"),
    Column("due_date", "Due Date"),
    Column("subtotal", "Subtotal", "float", 0.0),
    Column("tax_amount", "Tax Amount", "float", 0.0),
    Column("total", "Total", "float", 0.0),
    Column("status", "Status", "str", "Draft"),
    Column("items", "Items", "json", []),
    Column("payment_notes", "Payment Notes"),
    Column("document_type", "Document Type"),
    Column("invoice_type", "Invoice Type"),
    Column("invoice_number", "Invoice Number"),
    Column("invoice_prefix", "Invoice Prefix"),
    Column("bank_account", "Bank Account", "json", None),
    Column("additional_charges", "Additional Charges", "json", []),
    Column("payment_modes", "Payment Modes", "json", []),
    Column("global_discount", "Global Discount", "json", {"type": "percentage", "value": 0}),
    Column("notes", "Notes", "json", {}),
    Column("tds", "TDS", "json", _off()),
    Column("tds_under_gst", "TDS Under GST", "json", _off()),
    Column("tcs", "TCS", "json", _off()),
    Column("extra_discount", "Extra Discount", "float", 0.0),
    Column("marked_as_paid", "Marked As Paid", "bool", False),
    Column("attachments", "Attachments", "json", []),
    Column("dispatch_from_address", "Dispatch From", "json", None),
    Column("shipping", "Shipping", "json", None),
    Column("signature", "Signature", "json", None),
    Column("reference", "Reference"),
    Column("created_at", "Created At"),
    Column("updated_at", "Updated At"),
    Column("ledger_id", "Ledger ID"),
    Column("pdf_url", "PDF URL"),
])

CUSTOMER_SCHEMA = RowSchema("Customers", 2, [
    Column("row_id", "Row ID", "row"),
    Column("id", "Customer ID"),
    Column("name", "Name"),
    Column("email", "Email"),
    Column("phone", "Phone"),
    Column("company_details", "Company Details", "json", None),
    Column("billing_address", "Billing Address", "json", None),
    Column("shipping_address", "Shipping Address", "json", None),
    Column("other", "Other", "json", None),
    Column("balance", "Balance", "computed", 0.0),
    Column("created_at", "Created At"),
    Column("status", "Status", "str", "Active"),
])

VENDOR_SCHEMA = CUSTOMER_SCHEMA.with_sheet("Vendors")

PRODUCT_SCHEMA = RowSchema("Products", 1, [
    Column("id", "Product ID"),
    Column("name", "Name"),
    Column("description", "Description"),
    Column("price", "Price", "float", 0.0),
    Column("stock", "Stock", "stock"),
    Column("hsn_code", "HSN Code"),
    Column("tax_rate", "Tax Rate", "float", 18.0),
    Column("category", "Category"),
    Column("unit", "Unit", "str", "pcs"),
    Column("image_url", "Image URL"),
    Column("created_at", "Created At"),
    Column("updated_at", "Updated At"),
    Column("status", "Status", "str", "Active"),
])

LEDGER_SCHEMA = RowSchema("Customer_Ledgers", 1, [
    Column("row_id", "Row ID", "row"),
    Column("ledger_id", "Ledger ID"),
    Column("party_id", "Party ID"),
    Column("document_id", "Document ID"),
    Column("date", "Date"),
    Column("date_formatted", "Day"),
    Column("created_at", "Created At"),
    Column("status", "Status"),
    Column("type", "Type"),
    Column("payment_mode", "Payment Mode"),
    Column("bank_account", "Bank Account", "json", None),
    Column("notes", "Notes"),
    Column("amount", "Amount", "float", 0.0),
])

VENDOR_LEDGER_SCHEMA = LEDGER_SCHEMA.with_sheet("Vendor_Ledgers")

SCHEMAS = [INVOICE_SCHEMA, CUSTOMER_SCHEMA, VENDOR_SCHEMA, PRODUCT_SCHEMA, LEDGER_SCHEMA, VENDOR_LEDGER_SCHEMA]

# Settings!A:E is key/value, opened by ["Section", <name>] sentinel rows
SETTINGS_SHEET = "Settings"
SETTINGS_RANGE = "Settings!A:E"
SECTION_MARKER = "Section"
