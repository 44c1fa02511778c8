# Account settings: the sectioned key/value layout of the Settings tab
import uuid
from dataclasses import dataclass, field

from .errors import NotFoundError
from .schema import SECTION_MARKER, safe_json

# (key, default value, description) per section, in sheet order
DEFAULT_SECTIONS = {
    "companyDetails": [
        ("name", "", "Company name"),
        ("billing_address", "", "Company address"),
        ("billing_city", "", "City"),
        ("billing_state", "", "State"),
        ("billing_pincode", "", "PIN Code"),
        ("billing_country", "India", "Country"),
        ("shipping_address", "", "Company address"),
        ("shipping_city", "", "City"),
        ("shipping_state", "", "State"),
        ("shipping_pincode", "", "PIN Code"),
        ("shipping_country", "India", "Country"),
        ("gstin", "", "GSTIN"),
        ("pan", "", "PAN number"),
        ("email", "", "Company email"),
        ("phone", "", "Company phone"),
        ("website", "", "Company website"),
        ("logo", "", "Company Logo"),
    ],
    "userProfile": [
        ("name", "", "User full name"),
        ("email", "", "User email address"),
        ("phone", "", "User phone number"),
        ("profile_img", "", "Profile image URL"),
    ],
    "preferences": [
        ("roundoff", "", "Enable roundoff"),
        ("defaultDueDays", "", "Default due days"),
        ("invoice_prefix", "INV", "Prefix for Invoice"),
        ("credit_prefix", "CR", "Prefix for Credit"),
        ("purchase_prefix", "PUR", "Prefix for Purchase"),
        ("expenses_prefix", "EXP", "Prefix for Expenses"),
        ("quotations_prefix", "QUO", "Prefix for Quotations"),
        ("discountType", "", "Discount type (percent/fixed)"),
        ("additionalCharges", "", "Additional Charges"),
        ("emailSubject", "", "Default email subject"),
        ("emailBody", "", "Default email body"),
    ],
    "thermalPrintSettings": [
        ("terms", "", "Footer terms text"),
        ("companyDetails", "", "Show company info"),
        ("showItemDescription", "", "Show item descriptions"),
        ("showHSN", "", "Show HSN codes"),
        ("showCashReceived", "", "Show cash received"),
        ("showLogo", "", "Show logo"),
    ],
    "signatures": [
        ("name", "", "Signature label"),
        ("image", "", "Signature image URL"),
    ],
    "notesTerms": [
        ("invoice_notes", "", "Note or terms content"),
        ("sales_return_notes", "", "Note or terms content"),
        ("purchase_notes", "", "Note or terms content"),
        ("purchase_return_notes", "", "Note or terms content"),
        ("purchase_order_notes", "", "Note or terms content"),
        ("quotation_notes", "", "Note or terms content"),
        ("delivery_notes", "", "Note or terms content"),
        ("proforma_notes", "", "Note or terms content"),
    ],
    "banks": [
        ("banks", "", "Banks"),
    ],
}

DOCUMENT_PREFIXES = {
    "invoice": ("invoice_prefix", "INV"),
    "credit": ("credit_prefix", "CR"),
    "purchase": ("purchase_prefix", "PUR"),
    "expense": ("expenses_prefix", "EXP"),
    "quotation": ("quotations_prefix", "QUO"),
}


def seed_rows(now, user="system"):
    rows = []
    for section, fields_ in DEFAULT_SECTIONS.items():
        rows.append([SECTION_MARKER, section, "", now, user])
        for key, value, desc in fields_:
            rows.append([key, value, desc, now, user])
    return rows


def _key(row):
    return str(row[0]).strip() if row else ""


def group_settings(rows):
    """Group key/value rows under the most recently seen section marker."""
    out = {}
    current = ""
    for row in rows or []:
        key = _key(row)
        if key == SECTION_MARKER:
            current = str(row[1]) if len(row) > 1 else ""
            out[current] = {}
        elif current and key:
            out[current][key] = row[1] if len(row) > 1 and row[1] is not None else ""
    return out


def section_bounds(rows, section):
    """(start, end) 0-based row indexes: start is the marker row, end is exclusive."""
    start, end = -1, len(rows)
    for i, row in enumerate(rows):
        if _key(row) == SECTION_MARKER:
            if start == -1 and len(row) > 1 and row[1] == section:
                start = i
            elif start != -1:
                end = i
                break
    if start == -1:
        raise NotFoundError(f'Section "{section}" not found.')
    return start, end


@dataclass
class Settings:
    company_details: dict = field(default_factory=dict)
    user_profile: dict = field(default_factory=dict)
    preferences: dict = field(default_factory=dict)
    thermal_print_settings: dict = field(default_factory=dict)
    signatures: dict = field(default_factory=dict)
    notes_terms: dict = field(default_factory=dict)
    banks: list = field(default_factory=list)

    @classmethod
    def from_sections(cls, grouped):
        grouped = grouped or {}
        return cls(
            company_details=dict(grouped.get("companyDetails", {})),
            user_profile=dict(grouped.get("userProfile", {})),
            preferences=dict(grouped.get("preferences", {})),
            thermal_print_settings=dict(grouped.get("thermalPrintSettings", {})),
            signatures=dict(grouped.get("signatures", {})),
            notes_terms=dict(grouped.get("notesTerms", {})),
            banks=safe_json(grouped.get("banks", {}).get("banks"), []),
        )

    def prefix_for(self, doc_type="invoice"):
        key, default = DOCUMENT_PREFIXES[doc_type]
        return str(self.preferences.get(key) or default)

    def default_notes(self, doc_type="invoice"):
        return self.notes_terms.get(f"{doc_type}_notes", "")

    def default_due_days(self):
        try:
            return int(float(self.preferences.get("defaultDueDays") or 0))
        except (TypeError, ValueError):
            return 0

    @property
    def default_bank(self):
        return next((b for b in self.banks if is_default(b)), None)


# ---------- Bank accounts: exactly one default whenever the list is non-empty ----------
def is_default(bank):
    # records saved by the browser app carry isDefault
    return bool(bank.get("is_default") or bank.get("isDefault"))


def _copy(bank, default):
    out = {k: v for k, v in bank.items() if k != "isDefault"}
    out["is_default"] = default
    return out


def normalize_default(banks):
    idx = next((i for i, b in enumerate(banks) if is_default(b)), 0)
    return [_copy(b, i == idx) for i, b in enumerate(banks)]


def add_bank(banks, bank, make_default=False):
    wants_default = make_default or is_default(bank)
    new = _copy(bank, False)
    new["id"] = str(new.get("id") or uuid.uuid4().hex[:12])
    out = [dict(b) for b in banks] + [new]
    if wants_default:
        return set_default_bank(out, new["id"])
    return normalize_default(out)


def remove_bank(banks, bank_id):
    out = [dict(b) for b in banks if str(b.get("id")) != str(bank_id)]
    if len(out) == len(banks):
        raise NotFoundError(f"Bank account {bank_id} not found")
    return normalize_default(out)


def set_default_bank(banks, bank_id):
    if not any(str(b.get("id")) == str(bank_id) for b in banks):
        raise NotFoundError(f"Bank account {bank_id} not found")
    return [_copy(b, str(b.get("id")) == str(bank_id)) for b in banks]
