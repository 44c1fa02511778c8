# Invoice + account settings -> the flat dict the page renderer draws from
from datetime import datetime

from .drive import file_id_from_url
from .gstin import parse_state, state_from_gstin
from .schema import to_float


def _g(d, *keys, default=None):
    """First present key; stored items mix camelCase (browser) and snake_case."""
    if not isinstance(d, dict):
        return default
    for k in keys:
        v = d.get(k)
        if v not in (None, ""):
            return v
    return default


def _text(v):
    """Sheets hands back numbers for digit-only cells (PIN codes, phones, account numbers)."""
    return "" if v in (None, "") else str(v)


def num_words(n):
    units = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
             "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
             "Seventeen", "Eighteen", "Nineteen"]
    tens = ["", "Ten", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

    def two(x):
        return units[x] if x < 20 else tens[x // 10] + ((" " + units[x % 10]) if x % 10 else "")

    def three(x):
        h, r = x // 100, x % 100
        return (units[h] + " Hundred " + two(r)).strip() if h and r else (units[h] + " Hundred" if h else two(r))

    if n == 0:
        return "Zero"
    s = ""
    cr = n // 10000000; n %= 10000000
    la = n // 100000;   n %= 100000
    th = n // 1000;     n %= 1000
    if cr: s += num_words(cr) + " Crore " if cr > 999 else three(cr) + " Crore "
    if la: s += three(la) + " Lakh "
    if th: s += three(th) + " Thousand "
    if n:  s += three(n)
    return " ".join(s.split())


def amount_in_words(amount):
    """INR words in Indian numbering (lakh, crore), paise when present."""
    amount = round(abs(to_float(amount)), 2)
    rupees = int(amount)
    paise = int(round((amount - rupees) * 100))
    words = num_words(rupees)
    if paise:
        words += f" and {num_words(paise)} Paise"
    return f"INR {words} Only. E & O.E"


def display_date(value):
    """'2024-01-05' / ISO timestamps -> '05 Jan 2024'; unparseable values pass through."""
    s = str(value or "").strip()
    if not s:
        return ""
    try:
        return datetime.fromisoformat(s[:10]).strftime("%d %b %Y")
    except ValueError:
        return s


def upi_payload(upi_id, amount):
    if not upi_id:
        return None
    return f"upi://pay?pa={upi_id}&am={to_float(amount):.2f}&cu=INR"


def discount_totals(subtotal, global_discount, extra_discount):
    gd = global_discount if isinstance(global_discount, dict) else {}
    value = to_float(gd.get("value"))
    if gd.get("type") == "percentage":
        global_amount = to_float(subtotal) * value / 100
    else:
        global_amount = value
    extra = to_float(extra_discount)
    return {
        "global_discount": round(global_amount, 2),
        "additional_discount": round(extra, 2),
        "total_discount": round(global_amount + extra, 2),
    }


def _item_rate(item):
    product = item.get("product") or {}
    return to_float(_g(product, "taxRate", "tax_rate", default=_g(item, "taxRate", "tax_rate", default=0)))


def tax_breakdown(items):
    """Rows grouped by (tax rate, HSN/SAC); each rate is split into equal central/state halves."""
    rows = []
    index = {}
    total_central = total_state = 0.0
    for item in items or []:
        product = item.get("product") or {}
        rate = _item_rate(item)
        hsn = _text(_g(product, "hsnCode", "hsn_code") or _g(item, "hsnCode", "hsn_code")) or "N/A"
        taxable = to_float(_g(item, "unitPrice", "unit_price", default=0)) * to_float(_g(item, "quantity", default=1))
        tax = to_float(_g(item, "taxAmount", "tax_amount", default=0))
        half = tax / 2

        key = (rate, hsn)
        row = index.get(key)
        if row is None:
            row = index[key] = {
                "hsn_sac": hsn, "tax_rate": rate,
                "taxable_value": 0.0,
                "central_tax_rate": rate / 2, "central_tax_amount": 0.0,
                "state_tax_rate": rate / 2, "state_tax_amount": 0.0,
                "total_tax_amount": 0.0,
            }
            rows.append(row)
        row["taxable_value"] += taxable
        row["central_tax_amount"] += half
        row["state_tax_amount"] += half
        row["total_tax_amount"] += tax
        total_central += half
        total_state += half
    return {"breakdown": rows, "total_central_tax": total_central, "total_state_tax": total_state}


def _line_items(items):
    out = []
    for i, item in enumerate(items or [], start=1):
        product = item.get("product") or {}
        rate = _item_rate(item)
        price = to_float(_g(product, "price", default=_g(item, "unitPrice", "unit_price", default=0)))
        qty = _g(item, "quantity", default=1)
        out.append({
            "no": i,
            "name": _text(_g(product, "name", default=_g(item, "name", default=""))),
            "description": _text(_g(item, "description", default=_g(product, "description", default=""))),
            "hsn_sac": _text(_g(item, "hsnCode", "hsn_code") or _g(product, "hsnCode", "hsn_code")),
            "tax": f"{rate:g}%",
            "qty": f"{qty} {_g(product, 'unit', default='NOS')}",
            "quantity": to_float(qty, 1),
            "rate_per_item": f"{price * (1 + rate / 100):.2f}",
            "amount": to_float(_g(item, "total", default=0)),
        })
    return out


def _bank_block(invoice_bank, default_bank):
    """Invoice bank snapshots use {value, id, others: {...}}; settings banks are flat."""
    b = invoice_bank if isinstance(invoice_bank, dict) and invoice_bank else None
    if b and "others" in b:
        others = b.get("others") or {}
        return {
            "bank_name": _text(b.get("value")),
            "account_number": _text(b.get("id")),
            "ifsc_code": _text(others.get("bank_ifscCode")),
            "branch": _text(others.get("bank_branch")),
            "upi": _text(others.get("bank_upi")),
        }
    b = b or default_bank or {}
    return {
        "bank_name": _text(b.get("bank_name")),
        "account_number": _text(b.get("account_number")),
        "ifsc_code": _text(b.get("ifsc_code")),
        "branch": _text(b.get("branch")),
        "upi": _text(b.get("upi")),
    }


def _address_text(addr):
    if isinstance(addr, dict):
        if addr.get("value"):
            return str(addr["value"]).replace("\n", " ").strip()
        parts = [addr.get("line1"), addr.get("line2"), addr.get("city"),
                 (parse_state(addr.get("state")) or {}).get("name"), addr.get("pincode")]
        return ", ".join(str(p) for p in parts if p)
    return str(addr or "").replace("\n", " ").strip()


def place_of_supply(customer, company):
    cust = customer if isinstance(customer, dict) else {}
    billing = _g(cust, "billingAddress", "billing_address") or {}
    st = parse_state(billing.get("state")) if isinstance(billing, dict) else None
    if not st:
        st = state_from_gstin(_g(cust, "gstin", default=""))
    if not st:
        st = parse_state(company.get("billing_state"))
    if not st:
        return ""
    code, name = st.get("code") or "", (st.get("name") or "").upper()
    return f"{code}-{name}" if code else name


def build_invoice_view(invoice, settings):
    company = settings.company_details
    customer = invoice.customer if isinstance(invoice.customer, dict) else {}
    items = invoice.items or []
    breakdown = tax_breakdown(items)
    discounts = discount_totals(invoice.subtotal, invoice.global_discount, invoice.extra_discount)
    bank = _bank_block(invoice.bank_account, settings.default_bank)
    paid = invoice.status == "Paid" or bool(invoice.marked_as_paid)
    signature = invoice.signature if isinstance(invoice.signature, dict) else {}
    notes = invoice.notes if isinstance(invoice.notes, dict) else {}
    address = ", ".join(str(p) for p in [
        company.get("billing_address"), company.get("billing_city"),
        (parse_state(company.get("billing_state")) or {}).get("name"),
        company.get("billing_country"), company.get("billing_pincode"),
    ] if p)

    view = {
        "company_name": _text(company.get("name")),
        "company_address": address,
        "company_gstin": _text(company.get("gstin")),
        "company_phone": _text(company.get("phone")),
        "company_email": _text(company.get("email")),
        "company_logo": file_id_from_url(company.get("logo")) or company.get("logo") or None,
        "invoice_number": invoice.id,
        "invoice_date": display_date(invoice.invoice_date),
        "due_date": display_date(invoice.due_date),
        "place_of_supply": place_of_supply(customer, company),
        "customer_name": invoice.customer_name,
        "customer_phone": _text(customer.get("phone")) or None,
        "customer_email": _text(customer.get("email")) or None,
        "customer_gstin": _text(customer.get("gstin")) or None,
        "customer_address": _address_text(_g(customer, "billingAddress", "billing_address")) or None,
        "shipping_address": _address_text(invoice.shipping) or None,
        "dispatch_from": _address_text(invoice.dispatch_from_address) or None,
        "items": _line_items(items),
        "additional_charges": [
            {"name": _g(c, "name", "label", default="Charge"), "amount": to_float(_g(c, "amount", default=0))}
            for c in (invoice.additional_charges or []) if isinstance(c, dict)
        ],
        "tds": invoice.tds if (invoice.tds or {}).get("enabled") else None,
        "tds_under_gst": invoice.tds_under_gst if (invoice.tds_under_gst or {}).get("enabled") else None,
        "tcs": invoice.tcs if (invoice.tcs or {}).get("enabled") else None,
        "taxable_amount": to_float(invoice.subtotal),
        "cgst": to_float(invoice.tax_amount) / 2,
        "sgst": to_float(invoice.tax_amount) / 2,
        "round_off": 0.0,
        "total_amount": to_float(invoice.total),
        "total_quantity": sum(to_float(_g(i, "quantity", default=1), 1) for i in items),
        "amount_in_words": amount_in_words(invoice.total),
        "tax_breakdown": breakdown["breakdown"],
        "total_central_tax": breakdown["total_central_tax"],
        "total_state_tax": breakdown["total_state_tax"],
        "total_tax_amount": to_float(invoice.tax_amount),
        "qr_payload": upi_payload(bank["upi"], invoice.total),
        "payment_notes": invoice.payment_notes,
        "notes": notes.get("note") or settings.default_notes("invoice"),
        "terms": notes.get("terms") or "",
        "signature": file_id_from_url(_g(signature, "sig", "image")) or file_id_from_url(settings.signatures.get("image")),
        "signature_name": _g(signature, "name", default=settings.signatures.get("name", "")),
        "payment_status": "Paid" if paid else "Pending",
        "payment_date": display_date(invoice.updated_at) if paid else "",
        "payment_method": _g((invoice.payment_modes or [{}])[0] or {}, "paymentMethod", "payment_method", default="UPI"),
    }
    view.update(discounts)
    view.update(bank)
    return view
