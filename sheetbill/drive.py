# Google Drive: logo / signature images and generated PDFs
import io
import re
import base64
import logging

import requests
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from reportlab.lib.utils import ImageReader

from .errors import GoogleAPIError

logger = logging.getLogger(__name__)

FILES_URL = "https://www.googleapis.com/drive/v3/files"
UPLOAD_FIELDS = "id,name,mimeType,webViewLink,webContentLink"

_FILE_ID_PATTERNS = [
    re.compile(r"/d/([a-zA-Z0-9_-]{10,})"),
    re.compile(r"[?&]id=([a-zA-Z0-9_-]{10,})"),
]
_BARE_ID = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def file_id_from_url(url):
    """Drive file id out of a share link (…/d/<id>/view, ?id=<id>) or a bare id."""
    u = (url or "").strip()
    if not u:
        return None
    for pat in _FILE_ID_PATTERNS:
        m = pat.search(u)
        if m:
            return m.group(1)
    return u if _BARE_ID.match(u) else None


def view_url(file_id):
    return f"https://drive.google.com/file/d/{file_id}/view"


def drive_service(access_token):
    return build("drive", "v3", credentials=Credentials(token=access_token), cache_discovery=False)


class DriveClient:
    def __init__(self, token_source, http=None, timeout=15, service_factory=drive_service):
        self.tokens = token_source
        self.http = http or requests.Session()
        self.timeout = timeout
        self.service_factory = service_factory

    def _service(self):
        return self.service_factory(self.tokens.access_token())

    @staticmethod
    def _execute(request):
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            raise GoogleAPIError(f"Google API request failed: {status} {e.reason}", code=status) from e

    def _headers(self, extra=None):
        h = {"Authorization": f"Bearer {self.tokens.access_token()}"}
        if extra:
            h.update(extra)
        return h

    def _call(self, method, url, **kw):
        try:
            resp = self.http.request(method, url, timeout=self.timeout, **kw)
        except requests.RequestException as e:
            raise GoogleAPIError(f"Google API request failed: {e}") from e
        if not resp.ok:
            raise GoogleAPIError(
                f"Google API request failed: {resp.status_code} {resp.reason}", code=resp.status_code)
        return resp

    def download(self, file_id):
        resp = self._call("GET", f"{FILES_URL}/{file_id}", params={"alt": "media"}, headers=self._headers())
        return resp.content

    def fetch_image(self, src):
        """
        ImageReader for a Drive file id/link or a data: URL; None on any failure
        so the renderer can draw its placeholder instead.
        """
        if not src:
            return None
        s = str(src).strip()
        if s.startswith("data:image/"):
            try:
                _, b64 = s.split(",", 1)
                return ImageReader(io.BytesIO(base64.b64decode(b64)))
            except (ValueError, OSError) as e:
                logger.warning("Image decode skipped: %s", e)
                return None
        file_id = file_id_from_url(s)
        if not file_id:
            logger.warning("Image skipped, not a Drive file: %s", s)
            return None
        try:
            return ImageReader(io.BytesIO(self.download(file_id)))
        except Exception as e:
            # auth, network or undecodable bytes all end in the placeholder
            logger.warning("Image fetch skipped for %s: %s", file_id, e)
            return None

    def upload(self, name, data, mime_type="application/octet-stream", parents=None):
        meta = {"name": name, "mimeType": mime_type}
        if parents:
            meta["parents"] = list(parents)
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        info = self._execute(self._service().files().create(body=meta, media_body=media, fields=UPLOAD_FIELDS))
        logger.info("Uploaded %s to Drive as %s", name, info.get("id"))
        return info

    def make_public(self, file_id):
        self._execute(self._service().permissions().create(
            fileId=file_id, body={"type": "anyone", "role": "reader"}))
        return view_url(file_id)

    def upload_public(self, name, data, mime_type):
        """Upload and share with anyone-with-link; returns the view link stored in settings."""
        info = self.upload(name, data, mime_type)
        return self.make_public(info["id"])
