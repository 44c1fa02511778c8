# GSTIN helpers: PAN and state of registration are embedded in the number
import re
import json

GSTIN_RE = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")

STATE_CODES = {
    "01": "Jammu & Kashmir",
    "02": "Himachal Pradesh",
    "03": "Punjab",
    "04": "Chandigarh",
    "05": "Uttarakhand",
    "06": "Haryana",
    "07": "Delhi",
    "08": "Rajasthan",
    "09": "Uttar Pradesh",
    "10": "Bihar",
    "11": "Sikkim",
    "12": "Arunachal Pradesh",
    "13": "Nagaland",
    "14": "Manipur",
    "15": "Mizoram",
    "16": "Tripura",
    "17": "Meghalaya",
    "18": "Assam",
    "19": "West Bengal",
    "20": "Jharkhand",
    "21": "Odisha",
    "22": "Chhattisgarh",
    "23": "Madhya Pradesh",
    "24": "Gujarat",
    "25": "Daman & Diu",
    "26": "Dadra & Nagar Haveli",
    "27": "Maharashtra",
    "28": "Andhra Pradesh (Old)",
    "29": "Karnataka",
    "30": "Goa",
    "31": "Lakshadweep",
    "32": "Kerala",
    "33": "Tamil Nadu",
    "34": "Puducherry",
    "35": "Andaman & Nicobar Islands",
    "36": "Telangana",
    "37": "Andhra Pradesh (New)",
    "38": "Ladakh",
}


def normalize_gstin(gstin):
    return re.sub(r"\s+", "", str(gstin or "")).upper()


def is_valid_gstin(gstin):
    return bool(GSTIN_RE.match(normalize_gstin(gstin)))


def extract_pan_from_gstin(gstin):
    g = normalize_gstin(gstin)
    return g[2:12] if len(g) >= 12 else ""


def state_from_gstin(gstin):
    """{"code": "29", "name": "Karnataka"} or None."""
    code = normalize_gstin(gstin)[:2]
    name = STATE_CODES.get(code)
    return {"code": code, "name": name} if name else None


def parse_state(value):
    """
    Address `state` cells hold a JSON {code, name}; older rows hold a plain name.
    Returns the dict form, or None when nothing usable is there.
    """
    if isinstance(value, dict):
        return value or None
    s = str(value or "").strip()
    if not s:
        return None
    try:
        parsed = json.loads(s)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    for code, name in STATE_CODES.items():
        if name.lower() == s.lower() or code == s:
            return {"code": code, "name": name}
    return {"code": "", "name": s}


def state_name(value):
    st = parse_state(value)
    return st.get("name", "") if st else ""


def apply_gstin_to_customer(customer, gstin):
    """Fill PAN, GSTIN and billing state on a customer payload (a dict) from its GSTIN."""
    g = normalize_gstin(gstin)
    out = dict(customer or {})
    company = dict(out.get("company_details") or {})
    company["gstin"] = g
    out["company_details"] = company

    other = dict(out.get("other") or {})
    pan = extract_pan_from_gstin(g)
    if pan:
        other["pan"] = pan
    out["other"] = other

    st = state_from_gstin(g)
    if st:
        billing = dict(out.get("billing_address") or {})
        billing["state"] = json.dumps(st)
        out["billing_address"] = billing
    return out
