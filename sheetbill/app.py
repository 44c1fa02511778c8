# SheetBill web API (Flask): invoices, parties, products, ledgers and settings
# kept in the signed-in user's own Google spreadsheet
#
# Run: gunicorn "sheetbill.app:create_app()"  or  python -m sheetbill.app
import os
import io
import uuid
import logging
import threading
from datetime import timedelta
from functools import wraps

from flask import Flask, jsonify, request, redirect, session, send_file, url_for

from .backend import BackendService
from .config import Config
from .drive import DriveClient
from .errors import SheetBillError, AuthError, NotFoundError
from .google_auth import GoogleOAuthClient, GoogleTokens, TokenManager, ServiceAccountTokens
from .gstin import apply_gstin_to_customer, is_valid_gstin
from .invoice_view import build_invoice_view
from .profiles import ProfileStore
from .render import InvoiceRenderer
from .sheets import SheetsClient

logger = logging.getLogger(__name__)

UPLOAD_TARGETS = {
    "logo": ("companyDetails", "logo"),
    "signature": ("signatures", "image"),
}


class AppContext:
    """
    Everything a request needs, built once per process: config, the OAuth
    client, the profile store and one TokenManager per user (shared by all
    request threads so a refresh is never issued twice).
    """

    def __init__(self, config=Config, oauth=None, profiles=None, sheets_factory=None, drive_factory=None):
        self.config = config
        self.oauth = oauth or GoogleOAuthClient(
            config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET, config.GOOGLE_REDIRECT_URI,
            refresh_url=config.GOOGLE_TOKEN_REFRESH_URL, timeout=config.HTTP_TIMEOUT,
        )
        if profiles is None and config.SUPABASE_URL and config.SUPABASE_ANON_KEY:
            profiles = ProfileStore.from_config(config)
        self.profiles = profiles
        self.sheets_factory = sheets_factory or SheetsClient
        self.drive_factory = drive_factory or (lambda tokens: DriveClient(tokens, timeout=config.HTTP_TIMEOUT))
        self._managers = {}
        self._lock = threading.Lock()
        self._service_account = None

    @property
    def shared_workbook(self):
        return bool(self.config.GOOGLE_SA_INFO and self.config.SPREADSHEET_ID)

    def _manager(self, user_id, tokens):
        on_refresh = (lambda t: self.profiles.save_tokens(user_id, t)) if self.profiles else None
        return TokenManager(tokens, self.oauth.refresh, on_refresh=on_refresh,
                            buffer=self.config.TOKEN_REFRESH_BUFFER)

    def set_tokens(self, user_id, tokens):
        with self._lock:
            self._managers[user_id] = self._manager(user_id, tokens)
            return self._managers[user_id]

    def forget(self, user_id):
        with self._lock:
            return self._managers.pop(user_id, None)

    def token_source(self, user):
        if self.shared_workbook:
            with self._lock:
                if self._service_account is None:
                    self._service_account = ServiceAccountTokens(self.config.GOOGLE_SA_INFO)
                return self._service_account
        with self._lock:
            mgr = self._managers.get(user["id"])
        if mgr is not None:
            return mgr
        # profile fetch is a network call, kept outside the lock
        profile = self.profiles.get(user["id"]) if self.profiles else None
        tokens = GoogleTokens.from_dict((profile or {}).get("google_tokens"))
        with self._lock:
            # another request may have installed a manager meanwhile
            return self._managers.setdefault(user["id"], self._manager(user["id"], tokens))

    def spreadsheet_id(self, user):
        if self.shared_workbook:
            return self.config.SPREADSHEET_ID
        return user.get("sheet_id") or ""

    def backend(self, user):
        return BackendService(self.sheets_factory(self.token_source(user), self.spreadsheet_id(user)))

    def drive(self, user):
        return self.drive_factory(self.token_source(user))


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("user"):
            if request.path.startswith("/api/"):
                raise AuthError("Not signed in")
            return redirect(url_for("auth_google"))
        return fn(*args, **kwargs)
    return wrapper


def _out(obj):
    if isinstance(obj, list):
        return [_out(o) for o in obj]
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


def _body():
    return request.get_json(silent=True) or {}


def create_app(config=Config, context=None):
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = Flask(__name__)
    app.secret_key = config.SESSION_SECRET
    app.permanent_session_lifetime = timedelta(days=config.SESSION_DAYS)  # "remember me"
    ctx = context or AppContext(config)
    app.extensions["sheetbill"] = ctx

    def user():
        return session["user"]

    def backend():
        return ctx.backend(user())

    def party(kind):
        return kind == "vendors"

    # ---------- errors ----------
    @app.errorhandler(SheetBillError)
    def handle_sheetbill_error(e):
        if e.status_code >= 500:
            logger.error("%s: %s", type(e).__name__, e)
        return jsonify(error=str(e)), e.status_code

    @app.errorhandler(ValueError)
    def handle_bad_request(e):
        return jsonify(error=str(e)), 400

    # ---------- auth ----------
    @app.route("/healthz")
    def healthz():
        return "ok", 200

    @app.route("/")
    def root():
        if not session.get("user"):
            return redirect(url_for("auth_google"))
        return jsonify(user=user())

    @app.route("/auth/google")
    def auth_google():
        state = uuid.uuid4().hex
        session["oauth_state"] = state
        return redirect(ctx.oauth.auth_url(state))

    @app.route("/auth/google/callback")
    def auth_google_callback():
        if request.args.get("error"):
            raise AuthError(f"Google sign-in failed: {request.args['error']}")
        if request.args.get("state") != session.pop("oauth_state", None):
            raise AuthError("Invalid OAuth state")
        tokens = ctx.oauth.exchange_code(request.args.get("code", ""))
        info = ctx.oauth.user_info(tokens.access_token)
        email = info.get("email", "")
        if ctx.profiles:
            profile = ctx.profiles.upsert_on_login(email, info.get("name", ""), tokens) or {}
            user_id, sheet_id = profile.get("id") or email, profile.get("google_sheet_id")
        else:
            user_id, sheet_id = email, None
        ctx.set_tokens(user_id, tokens)
        u = {"id": user_id, "email": email, "name": info.get("name", ""), "sheet_id": sheet_id or ""}
        if not ctx.shared_workbook and not u["sheet_id"]:
            u["sheet_id"] = ctx.backend(u).initialize_spreadsheet(email)
            if ctx.profiles:
                ctx.profiles.set_sheet_id(user_id, u["sheet_id"])
        session["user"] = u
        session.permanent = True
        logger.info("Signed in %s", email)
        return redirect(url_for("root"))

    @app.route("/logout")
    def logout():
        u = session.get("user")
        if u:
            mgr = ctx.forget(u["id"])
            if mgr and mgr.tokens:
                ctx.oauth.revoke(mgr.tokens.access_token)
        session.clear()
        return jsonify(ok=True)

    # ---------- invoices ----------
    @app.route("/api/invoices", methods=["GET"])
    @login_required
    def list_invoices():
        q = request.args.get("q", "").strip()
        be = backend()
        return jsonify(_out(be.search_invoices(q) if q else be.get_invoices()))

    @app.route("/api/invoices", methods=["POST"])
    @login_required
    def create_invoice():
        return jsonify(_out(backend().create_invoice(_body()))), 201

    @app.route("/api/invoices/stats")
    @login_required
    def invoice_stats():
        return jsonify(backend().get_invoice_stats())

    @app.route("/api/invoices/next-number")
    @login_required
    def next_invoice_number():
        be = backend()
        prefix = request.args.get("prefix") or be.get_settings().prefix_for("invoice")
        return jsonify(prefix=prefix, number=be.next_invoice_number(prefix))

    @app.route("/api/invoices/row/<int:row_index>")
    @login_required
    def invoice_at_row(row_index):
        inv = backend().get_invoice_by_id(row_index)
        if inv is None:
            raise NotFoundError(f"No invoice at row {row_index}")
        return jsonify(_out(inv))

    @app.route("/api/invoices/<invoice_id>", methods=["GET"])
    @login_required
    def get_invoice(invoice_id):
        inv = backend().find_invoice(invoice_id)
        if inv is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return jsonify(_out(inv))

    @app.route("/api/invoices/<invoice_id>", methods=["PUT", "PATCH"])
    @login_required
    def update_invoice(invoice_id):
        return jsonify(_out(backend().update_invoice(invoice_id, _body())))

    @app.route("/api/invoices/<invoice_id>", methods=["DELETE"])
    @login_required
    def cancel_invoice(invoice_id):
        return jsonify(_out(backend().delete_invoice(invoice_id)))

    def _renderer(invoice_id):
        be = backend()
        inv = be.find_invoice(invoice_id)
        if inv is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        view = build_invoice_view(inv, be.get_settings())
        return InvoiceRenderer(view, fetch_image=ctx.drive(user()).fetch_image, config=ctx.config)

    @app.route("/api/invoices/<invoice_id>/pdf")
    @login_required
    def invoice_pdf(invoice_id):
        data, name = _renderer(invoice_id).download_as_pdf()
        return send_file(io.BytesIO(data), as_attachment=True, download_name=name, mimetype="application/pdf")

    @app.route("/api/invoices/<invoice_id>/print")
    @login_required
    def invoice_print(invoice_id):
        data, name = _renderer(invoice_id).print_invoice()
        return send_file(io.BytesIO(data), as_attachment=False, download_name=name, mimetype="application/pdf")

    @app.route("/api/invoices/<invoice_id>/image")
    @login_required
    def invoice_image(invoice_id):
        data, name = _renderer(invoice_id).download_as_image()
        return send_file(io.BytesIO(data), as_attachment=True, download_name=name, mimetype="image/png")

    # ---------- customers / vendors ----------
    @app.route("/api/<any(customers, vendors):kind>", methods=["GET"])
    @login_required
    def list_parties(kind):
        q = request.args.get("q", "").strip()
        be = backend()
        if q:
            return jsonify(_out(be.search_customers(q, vendor=party(kind))))
        res = be.get_customers(vendor=party(kind))
        return jsonify(status_insights=res["status_insights"], customers=_out(res["customers"]))

    @app.route("/api/<any(customers, vendors):kind>", methods=["POST"])
    @login_required
    def create_party(kind):
        return jsonify(_out(backend().create_customer(_body(), vendor=party(kind)))), 201

    @app.route("/api/<any(customers, vendors):kind>/gstin", methods=["POST"])
    @login_required
    def fill_from_gstin(kind):
        body = _body()
        gstin = body.get("gstin", "")
        if not is_valid_gstin(gstin):
            raise ValueError(f"Invalid GSTIN: {gstin}")
        return jsonify(apply_gstin_to_customer(body.get("customer") or {}, gstin))

    @app.route("/api/<any(customers, vendors):kind>/<party_id>", methods=["GET"])
    @login_required
    def get_party(kind, party_id):
        p = backend().find_customer(party_id, vendor=party(kind))
        if p is None:
            raise NotFoundError(f"{party_id} not found")
        return jsonify(_out(p))

    @app.route("/api/<any(customers, vendors):kind>/<party_id>", methods=["PUT", "PATCH"])
    @login_required
    def update_party(kind, party_id):
        return jsonify(_out(backend().update_customer(party_id, _body(), vendor=party(kind))))

    # ---------- ledgers ----------
    @app.route("/api/<any(customers, vendors):kind>/<party_id>/ledger")
    @login_required
    def party_ledger(kind, party_id):
        a = request.args
        res = backend().get_ledger(
            party_id, date_from=a.get("from"), date_to=a.get("to"),
            order=a.get("order", "DESC"), rows_per_page=int(a.get("rows", 20)),
            page=int(a.get("page", 1)), pending_only=a.get("pending") in ("1", "true"),
            vendor=party(kind),
        )
        return jsonify(count=res["count"], data=_out(res["data"]))

    @app.route("/api/<any(customers, vendors):kind>/<party_id>/transactions", methods=["POST"])
    @login_required
    def create_transaction(kind, party_id):
        b = _body()
        entry = backend().create_transaction(
            party_id, b.get("amount", 0), b.get("type", ""), b.get("date", ""),
            payment_mode=b.get("payment_mode", ""), bank_account=b.get("bank_account"),
            notes=b.get("notes", ""), vendor=party(kind),
        )
        return jsonify(_out(entry)), 201

    @app.route("/api/<any(customers, vendors):kind>/ledger/<int:row_id>", methods=["PUT"])
    @login_required
    def update_transaction(kind, row_id):
        b = _body()
        entry = dict(b.get("entry") or {}, row_id=row_id)
        updated = backend().update_transaction(
            entry, b.get("date", entry.get("date", "")), payment_mode=b.get("payment_mode", ""),
            bank_account=b.get("bank_account"), notes=b.get("notes", ""), vendor=party(kind),
        )
        return jsonify(_out(updated))

    @app.route("/api/<any(customers, vendors):kind>/ledger/<int:row_id>", methods=["DELETE"])
    @login_required
    def delete_transaction(kind, row_id):
        return jsonify(ok=backend().delete_transaction(row_id, vendor=party(kind)))

    # ---------- products ----------
    @app.route("/api/products", methods=["GET"])
    @login_required
    def list_products():
        q = request.args.get("q", "").strip()
        be = backend()
        return jsonify(_out(be.search_products(q) if q else be.get_products()))

    @app.route("/api/products", methods=["POST"])
    @login_required
    def create_product():
        return jsonify(_out(backend().create_product(_body()))), 201

    @app.route("/api/products/<product_id>", methods=["PUT", "PATCH"])
    @login_required
    def update_product(product_id):
        return jsonify(_out(backend().update_product(product_id, _body())))

    # ---------- settings ----------
    @app.route("/api/settings", methods=["GET"])
    @login_required
    def get_settings():
        return jsonify(backend().get_all_settings())

    @app.route("/api/settings", methods=["POST"])
    @login_required
    def create_section():
        b = _body()
        if not b.get("section"):
            raise ValueError("section is required")
        backend().create_section(b["section"], b.get("fields") or {}, created_by=user().get("email", "system"))
        return jsonify(ok=True), 201

    @app.route("/api/settings/banks", methods=["POST"])
    @login_required
    def add_bank():
        b = _body()
        return jsonify(backend().add_bank_account(b.get("bank") or {}, make_default=bool(b.get("make_default")))), 201

    @app.route("/api/settings/banks/<bank_id>", methods=["DELETE"])
    @login_required
    def remove_bank(bank_id):
        return jsonify(backend().remove_bank_account(bank_id))

    @app.route("/api/settings/banks/<bank_id>/default", methods=["PUT"])
    @login_required
    def default_bank(bank_id):
        return jsonify(backend().set_default_bank(bank_id))

    @app.route("/api/settings/upload/<target>", methods=["POST"])
    @login_required
    def upload_image(target):
        if target not in UPLOAD_TARGETS:
            raise NotFoundError(f"Unknown upload target {target}")
        f = request.files.get("file")
        if f is None:
            raise ValueError("file is required")
        link = ctx.drive(user()).upload_public(f.filename or target, f.read(), f.mimetype or "image/png")
        section, key = UPLOAD_TARGETS[target]
        backend().update_section(section, {key: link}, updated_by=user().get("email", "system"))
        return jsonify(url=link), 201

    @app.route("/api/settings/<section>", methods=["PUT", "PATCH"])
    @login_required
    def update_section(section):
        n = backend().update_section(section, _body(), updated_by=user().get("email", "system"))
        return jsonify(updated=n)

    @app.route("/api/settings/<section>", methods=["DELETE"])
    @login_required
    def delete_section(section):
        backend().delete_section(section)
        return jsonify(ok=True)

    # ---------- workspace ----------
    @app.route("/api/workspace/verify")
    @login_required
    def verify_workspace():
        problems = backend().verify_layout(strict=False)
        return jsonify(ok=not problems, problems={k: [list(m) for m in v] for k, v in problems.items()})

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")), debug=True)
