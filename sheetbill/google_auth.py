# Google OAuth tokens for the user's own spreadsheet + Drive
import time
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, asdict
from urllib.parse import urlencode

import requests
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2.service_account import Credentials as SA_Credentials

from .errors import AuthError

logger = logging.getLogger(__name__)

GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"


@dataclass
class GoogleTokens:
    access_token: str
    refresh_token: str = ""
    expires_at: float = 0.0  # epoch seconds, 0 = unknown
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_response(cls, payload, now=None, refresh_token=""):
        now = time.time() if now is None else now
        expires_in = payload.get("expires_in") or 3600
        return cls(
            access_token=payload.get("access_token", ""),
            refresh_token=payload.get("refresh_token") or refresh_token,
            expires_at=now + float(expires_in),
            token_type=payload.get("token_type", "Bearer"),
            scope=payload.get("scope", ""),
        )

    @classmethod
    def from_dict(cls, d):
        if not d or not d.get("access_token"):
            return None
        return cls(
            access_token=d["access_token"],
            refresh_token=d.get("refresh_token", ""),
            expires_at=float(d.get("expires_at") or 0),
            token_type=d.get("token_type", "Bearer"),
            scope=d.get("scope", ""),
        )

    def to_dict(self):
        return asdict(self)

    def is_expiring(self, now, buffer=300):
        return bool(self.expires_at) and now >= self.expires_at - buffer


def _error_text(resp):
    try:
        body = resp.json()
    except ValueError:
        return resp.text or resp.reason
    return body.get("error_description") or body.get("error") or resp.reason


class GoogleOAuthClient:
    def __init__(self, client_id, client_secret="", redirect_uri="", refresh_url=TOKEN_URL,
                 scopes=None, http=None, timeout=15):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.refresh_url = refresh_url or TOKEN_URL
        self.scopes = scopes or GOOGLE_SCOPES
        self.http = http or requests.Session()
        self.timeout = timeout
        if not client_id:
            logger.warning("Google OAuth credentials not configured")

    def auth_url(self, state=None):
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "response_type": "code",
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code):
        resp = self.http.post(TOKEN_URL, data={
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }, timeout=self.timeout)
        if not resp.ok:
            raise AuthError(f"Failed to exchange code for tokens: {_error_text(resp)}")
        return GoogleTokens.from_response(resp.json())

    def refresh(self, refresh_token):
        data = {"client_id": self.client_id, "refresh_token": refresh_token, "grant_type": "refresh_token"}
        if self.client_secret:
            data["client_secret"] = self.client_secret
        resp = self.http.post(self.refresh_url, data=data, timeout=self.timeout)
        if not resp.ok:
            raise AuthError(f"Failed to refresh token: {_error_text(resp)}")
        return GoogleTokens.from_response(resp.json(), refresh_token=refresh_token)

    def user_info(self, access_token):
        resp = self.http.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"},
                             timeout=self.timeout)
        if not resp.ok:
            raise AuthError("Failed to get user info")
        return resp.json()

    def revoke(self, access_token):
        try:
            self.http.post(REVOKE_URL, params={"token": access_token}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Failed to revoke Google tokens: %s", e)


class TokenManager:
    """
    Hands out a valid access token for one user.
    Tokens within `buffer` seconds of expiry are refreshed first; concurrent
    refreshes share one in-flight request and all callers get its result.
    """

    def __init__(self, tokens, refresher, on_refresh=None, clock=time.time, buffer=300):
        self._tokens = tokens
        self._refresher = refresher
        self._on_refresh = on_refresh
        self._clock = clock
        self._buffer = buffer
        self._lock = threading.Lock()
        self._inflight = None

    @property
    def tokens(self):
        return self._tokens

    def access_token(self):
        tokens = self._tokens
        if not tokens or not tokens.access_token:
            raise AuthError("No Google tokens available. Please sign in with Google.")
        if tokens.is_expiring(self._clock(), self._buffer):
            tokens = self.refresh(stale=tokens)
        return tokens.access_token

    def refresh(self, stale=None):
        """`stale`: the tokens the caller saw; if they were replaced meanwhile, the replacement is returned."""
        with self._lock:
            if stale is not None and self._tokens is not stale:
                return self._tokens
            fut = self._inflight
            owner = fut is None
            if owner:
                fut = self._inflight = Future()
        if not owner:
            return fut.result()

        try:
            current = self._tokens
            if not current or not current.refresh_token:
                raise AuthError("Failed to refresh Google tokens: no refresh token")
            fresh = self._refresher(current.refresh_token)
            if not fresh or not fresh.access_token:
                raise AuthError("Failed to refresh Google tokens")
            self._tokens = fresh
            if self._on_refresh:
                self._on_refresh(fresh)
        except Exception as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(fresh)
            return fresh
        finally:
            with self._lock:
                self._inflight = None


class ServiceAccountTokens:
    """Token source for the shared-workbook deployment (GOOGLE_SA_JSON)."""

    def __init__(self, info, scopes=None):
        self._creds = SA_Credentials.from_service_account_info(info, scopes=scopes or GOOGLE_SCOPES[:2])
        self._lock = threading.Lock()

    def access_token(self):
        with self._lock:
            if not self._creds.valid:
                self._creds.refresh(GoogleAuthRequest())
            return self._creds.token
