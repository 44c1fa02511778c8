# models.py
from dataclasses import dataclass, field, fields, asdict

CANCELLED = "Cancelled"


def _off():
    return {"enabled": False, "rate": 0, "amount": 0}


class _Record:
    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, data):
        names = set(cls.field_names())
        return cls(**{k: v for k, v in (data or {}).items() if k in names})

    def to_dict(self):
        return asdict(self)


@dataclass
class Invoice(_Record):
    """
    One row of the Invoices tab. `row_id` is the physical sheet row, `id` is
    prefix + number as typed by the user.
    """
    id: str = ""
    row_id: int = 0
    customer_id: str = ""
    customer: dict = field(default_factory=dict)
    invoice_date: str = ""
    due_date: str = ""
    subtotal: float = 0.0
    tax_amount: float = 0.0
    total: float = 0.0
    status: str = "Draft"
    items: list = field(default_factory=list)
    payment_notes: str = ""
    document_type: str = ""
    invoice_type: str = ""
    invoice_number: str = ""
    invoice_prefix: str = ""
    bank_account: dict = None
    additional_charges: list = field(default_factory=list)
    payment_modes: list = field(default_factory=list)
    global_discount: dict = field(default_factory=lambda: {"type": "percentage", "value": 0})
    notes: dict = field(default_factory=dict)
    tds: dict = field(default_factory=_off)
    tds_under_gst: dict = field(default_factory=_off)
    tcs: dict = field(default_factory=_off)
    extra_discount: float = 0.0
    marked_as_paid: bool = False
    attachments: list = field(default_factory=list)
    dispatch_from_address: dict = None
    shipping: dict = None
    signature: dict = None
    reference: str = ""
    created_at: str = ""
    updated_at: str = ""
    ledger_id: str = ""
    pdf_url: str = ""

    @property
    def customer_name(self):
        c = self.customer if isinstance(self.customer, dict) else {}
        return c.get("name") or c.get("value") or ""


@dataclass
class Customer(_Record):
    id: str = ""
    row_id: int = 0
    name: str = ""
    email: str = ""
    phone: str = ""
    company_details: dict = None
    billing_address: dict = None
    shipping_address: dict = None
    other: dict = None
    balance: float = 0.0
    created_at: str = ""
    status: str = "Active"

    @property
    def gstin(self):
        return ((self.company_details or {}).get("gstin") or "").strip()


@dataclass
class Vendor(Customer):
    pass


@dataclass
class Product(_Record):
    id: str = ""
    name: str = ""
    description: str = ""
    price: float = 0.0
    stock: object = ""  # number, or free text such as "made to order"
    hsn_code: str = ""
    tax_rate: float = 18.0
    category: str = ""
    unit: str = "pcs"
    image_url: str = ""
    created_at: str = ""
    updated_at: str = ""
    status: str = "Active"


@dataclass
class LedgerEntry(_Record):
    ledger_id: str = ""
    row_id: int = 0
    party_id: str = ""
    document_id: str = ""
    date: str = ""
    date_formatted: str = ""
    created_at: str = ""
    status: str = ""
    type: str = ""
    payment_mode: str = ""
    bank_account: dict = None
    notes: str = ""
    amount: float = 0.0
    balance: float = 0.0  # running, filled in on read
