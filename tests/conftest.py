import re
from datetime import datetime, timedelta, timezone

import pytest

from sheetbill.backend import BackendService, WORKBOOK_TABS
from sheetbill.errors import GoogleAPIError
from sheetbill.sheets import SheetsClient, _PLAIN_NUMBER, _SHEETS_EPOCH

_A1 = re.compile(r"^(?P<sheet>[^!]+)!(?P<c1>[A-Z]+)(?P<r1>\d*)(?::(?P<c2>[A-Z]+)(?P<r2>\d*))?$")


def col_index(letters):
    n = 0
    for ch in letters:
        n = n * 26 + ord(ch) - 64
    return n


def parse_a1(range_):
    m = _A1.match(range_)
    if not m:
        raise ValueError(f"bad range {range_}")
    c1 = col_index(m["c1"])
    c2 = col_index(m["c2"]) if m["c2"] else c1
    r1 = int(m["r1"]) if m["r1"] else 1
    r2 = int(m["r2"]) if m["r2"] else None
    if not m["c2"] and m["r1"]:
        r2 = r1
    return m["sheet"], r1, r2, c1, c2


def entered(v):
    """What USER_ENTERED leaves in a cell: digit-only text becomes a number."""
    if isinstance(v, str) and _PLAIN_NUMBER.match(v):
        return float(v) if "." in v else int(v)
    return v


def _trim(row):
    row = list(row)
    while row and row[-1] in ("", None):
        row.pop()
    return row


class FakeSheets(SheetsClient):
    """
    In-memory workbook behind the SheetsClient interface; =ROW() is evaluated on write.
    With user_entered=True the values API stores digit-only strings as numbers, like Sheets does.
    """

    def __init__(self, tabs=None, user_entered=False):
        super().__init__(token_source=None, spreadsheet_id="sheet-1")
        self.user_entered = user_entered
        titles = tabs or [t for t, _, _ in WORKBOOK_TABS]
        self.tabs = {t: [] for t in titles}
        self.batch_requests = []
        self.fail_reads = False
        self.created = None

    def grid(self, title):
        if title not in self.tabs:
            raise GoogleAPIError(f"Google API request failed: Unable to parse range: {title}")
        return self.tabs[title]

    def _set_row(self, title, row_number, col_start, values):
        g = self.grid(title)
        while len(g) < row_number:
            g.append([])
        row = g[row_number - 1]
        for j, v in enumerate(values):
            col = col_start - 1 + j
            while len(row) <= col:
                row.append("")
            if v is None:
                continue
            row[col] = row_number if v == "=ROW()" else v

    def _last_row(self, title):
        g = self.grid(title)
        n = len(g)
        while n and not _trim(g[n - 1]):
            n -= 1
        return n

    # ---- values API ----
    def _entered(self, row):
        return [entered(v) for v in row] if self.user_entered else row

    def get_values(self, range_):
        if self.fail_reads:
            raise GoogleAPIError("Google API request failed: 500 backend error")
        title, r1, r2, c1, c2 = parse_a1(range_)
        g = self.grid(title)
        last = len(g) if r2 is None else min(r2, len(g))
        out = [_trim(g[i][c1 - 1:c2]) for i in range(r1 - 1, last)]
        while out and not out[-1]:
            out.pop()
        return out

    def update_values(self, range_, values):
        title, r1, _, c1, _ = parse_a1(range_)
        for i, row in enumerate(values):
            self._set_row(title, r1 + i, c1, self._entered(row))
        return {"updatedRows": len(values)}

    def append_values(self, range_, values):
        title, r1, _, c1, _ = parse_a1(range_)
        start = max(self._last_row(title) + 1, r1)
        for i, row in enumerate(values):
            self._set_row(title, start + i, c1, self._entered(row))
        return {"updates": {"updatedRows": len(values)}}

    def batch_update_values(self, data):
        for d in data:
            self.update_values(d["range"], d["values"])

    # ---- spreadsheets.batchUpdate ----
    def sheet_id_map(self):
        return {t: i for i, t in enumerate(self.tabs)}

    @staticmethod
    def _cell(cell):
        v = cell["userEnteredValue"]
        if "formulaValue" in v:
            return v["formulaValue"]
        if "numberValue" in v:
            fmt = cell.get("userEnteredFormat", {}).get("numberFormat", {})
            if fmt.get("type") == "DATE":
                return (_SHEETS_EPOCH + timedelta(days=v["numberValue"])).isoformat()
            return v["numberValue"]
        if "boolValue" in v:
            return v["boolValue"]
        return v.get("stringValue", "")

    def batch_update(self, reqs):
        self.batch_requests.append(reqs)
        titles = {i: t for t, i in self.sheet_id_map().items()}
        for req in reqs:
            if "appendCells" in req:
                ac = req["appendCells"]
                title = titles[ac["sheetId"]]
                start = self._last_row(title) + 1
                for i, row in enumerate(ac["rows"]):
                    self._set_row(title, start + i, 1, [self._cell(c) for c in row["values"]])
            elif "deleteDimension" in req:
                rng = req["deleteDimension"]["range"]
                g = self.grid(titles[rng["sheetId"]])
                del g[rng["startIndex"]:rng["endIndex"]]
                # =ROW() recalculates for the rows that moved up
                for n, row in enumerate(g[rng["startIndex"]:], start=rng["startIndex"] + 1):
                    if row and isinstance(row[0], int) and not isinstance(row[0], bool):
                        row[0] = n
        return {"replies": []}

    def create_spreadsheet(self, title, tabs, locale="en_US", time_zone="Asia/Kolkata"):
        self.created = (title, tabs)
        self.tabs = {t: [] for t, _, _ in tabs}
        self.spreadsheet_id = "new-sheet"
        return self.spreadsheet_id


class Clock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 5, 10, 30, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


def with_headers(sheets):
    from sheetbill.schema import SCHEMAS
    for s in SCHEMAS:
        sheets.update_values(s.header_range(), [s.header()])
    return sheets


@pytest.fixture
def sheets():
    return with_headers(FakeSheets())


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def backend(sheets, clock):
    return BackendService(sheets, clock=clock)


@pytest.fixture
def seeded_backend(backend, sheets, clock):
    from sheetbill.settings import seed_rows
    seed = seed_rows("2024-01-01T00:00:00.000Z")
    sheets.update_values(f"Settings!A1:E{len(seed)}", seed)
    return backend


def invoice_payload(**overrides):
    data = {
        "customer_id": "CUST-1",
        "customer": {"name": "Acme Traders", "email": "acct@acme.in", "phone": "9876543210",
                     "gstin": "29AABCU9603R1ZX",
                     "billingAddress": {"line1": "12 MG Road", "city": "Bengaluru",
                                        "state": '{"code": "29", "name": "Karnataka"}'}},
        "invoice_date": "2024-01-05",
        "due_date": "2024-01-20",
        "subtotal": 1000.0,
        "tax_amount": 180.0,
        "total": 1180.0,
        "status": "Sent",
        "items": [{
            "product": {"name": "Widget", "price": 500, "taxRate": 18, "hsnCode": "8471", "unit": "pcs"},
            "quantity": 2, "unitPrice": 500, "taxAmount": 180, "total": 1180,
        }],
        "payment_notes": "",
        "document_type": "invoice",
        "invoice_type": "regular",
        "invoice_number": "7",
        "invoice_prefix": "INV-",
        "bank_account": {"value": "HDFC Bank", "id": "50100012345678",
                         "others": {"bank_ifscCode": "HDFC0001234", "bank_branch": "Indiranagar",
                                    "bank_upi": "acme@hdfc"}},
        "additional_charges": [{"name": "Freight", "amount": 50}],
        "payment_modes": [{"paymentMethod": "UPI", "amount": 1180}],
        "global_discount": {"type": "percentage", "value": 5},
        "notes": {"note": "Thanks for your business", "terms": "Pay within 15 days"},
        "signature": {"sig": "https://drive.google.com/file/d/SIGFILE12345/view", "name": "Owner"},
        "reference": "PO-99",
    }
    data.update(overrides)
    return data


@pytest.fixture
def typed_backend(clock):
    """Backend over a workbook that types digit-only cells as numbers."""
    from sheetbill.settings import seed_rows
    sheets = with_headers(FakeSheets(user_entered=True))
    seed = seed_rows("2024-01-01T00:00:00.000Z")
    sheets.update_values(f"Settings!A1:E{len(seed)}", seed)
    return BackendService(sheets, clock=clock)
