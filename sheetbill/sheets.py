# Google Sheets access (one spreadsheet per account)
import re
import logging
from contextlib import contextmanager
from datetime import date

import gspread
import requests
from google.oauth2.credentials import Credentials

from .errors import GoogleAPIError

logger = logging.getLogger(__name__)

READ_PARAMS = {"valueRenderOption": "UNFORMATTED_VALUE", "dateTimeRenderOption": "FORMATTED_STRING"}
WRITE_PARAMS = {"valueInputOption": "USER_ENTERED"}
APPEND_PARAMS = {"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"}

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PLAIN_NUMBER = re.compile(r"^(0|[1-9]\d*)(\.\d+)?$")
_SHEETS_EPOCH = date(1899, 12, 30)


@contextmanager
def _api_errors():
    try:
        yield
    except gspread.exceptions.APIError as e:
        err = getattr(e, "error", None) or {}
        msg = err.get("message") if isinstance(err, dict) else None
        raise GoogleAPIError(f"Google API request failed: {msg or e}", code=getattr(e, "code", None)) from e
    except requests.RequestException as e:
        raise GoogleAPIError(f"Google API request failed: {e}") from e


def date_to_serial(iso_day):
    y, m, d = (int(p) for p in iso_day.split("-"))
    return (date(y, m, d) - _SHEETS_EPOCH).days


def user_entered_value(val):
    """CellData for appendCells; ISO days become real dates, '=...' formulas stay formulas."""
    if isinstance(val, bool):
        return {"userEnteredValue": {"boolValue": val}}
    if isinstance(val, (int, float)):
        return {"userEnteredValue": {"numberValue": val}}
    if val is None:
        return {"userEnteredValue": {"stringValue": ""}}
    s = str(val)
    if _ISO_DATE.match(s):
        return {
            "userEnteredValue": {"numberValue": date_to_serial(s)},
            "userEnteredFormat": {"numberFormat": {"type": "DATE", "pattern": "yyyy-mm-dd"}},
        }
    if s.startswith("="):
        return {"userEnteredValue": {"formulaValue": s}}
    if _PLAIN_NUMBER.match(s):
        return {"userEnteredValue": {"numberValue": float(s) if "." in s else int(s)}}
    return {"userEnteredValue": {"stringValue": s}}


class SheetsClient:
    """
    Thin wrapper over gspread's raw values API.
    `token_source` is anything with access_token() (TokenManager, ServiceAccountTokens).
    """

    def __init__(self, token_source, spreadsheet_id=None):
        self.tokens = token_source
        self.spreadsheet_id = spreadsheet_id
        self._sh = None
        self._sheet_ids = None

    def _gc(self):
        creds = Credentials(token=self.tokens.access_token())
        return gspread.authorize(creds)

    def _spreadsheet(self):
        if not self.spreadsheet_id:
            raise GoogleAPIError("No spreadsheet connected to this account")
        if self._sh is None:
            with _api_errors():
                self._sh = self._gc().open_by_key(self.spreadsheet_id)
        return self._sh

    def get_values(self, range_):
        sh = self._spreadsheet()
        with _api_errors():
            res = sh.values_get(range_, params=READ_PARAMS)
        return res.get("values", [])

    def update_values(self, range_, values):
        sh = self._spreadsheet()
        with _api_errors():
            return sh.values_update(range_, params=WRITE_PARAMS, body={"values": values})

    def append_values(self, range_, values):
        sh = self._spreadsheet()
        with _api_errors():
            return sh.values_append(range_, params=APPEND_PARAMS, body={"values": values})

    def batch_update_values(self, data):
        """data: [{"range": "Settings!B4:E4", "values": [[...]]}, ...]"""
        sh = self._spreadsheet()
        with _api_errors():
            return sh.values_batch_update(body={"valueInputOption": "USER_ENTERED", "data": data})

    def batch_update(self, reqs):
        sh = self._spreadsheet()
        with _api_errors():
            return sh.batch_update({"requests": reqs})

    def sheet_id_map(self):
        if self._sheet_ids is None:
            sh = self._spreadsheet()
            with _api_errors():
                meta = sh.fetch_sheet_metadata(params={"fields": "sheets.properties"})
            self._sheet_ids = {s["properties"]["title"]: s["properties"]["sheetId"] for s in meta.get("sheets", [])}
        return self._sheet_ids

    def append_rows(self, rows_by_sheet):
        """Append rows to several tabs in one spreadsheets.batchUpdate (all or nothing)."""
        ids = self.sheet_id_map()
        reqs = []
        for title, rows in rows_by_sheet:
            if not rows:
                continue
            if title not in ids:
                raise GoogleAPIError(f"Google API request failed: sheet {title!r} not found")
            reqs.append({"appendCells": {
                "sheetId": ids[title],
                "rows": [{"values": [user_entered_value(v) for v in row]} for row in rows],
                "fields": "*",
            }})
        if reqs:
            return self.batch_update(reqs)

    def delete_row(self, title, row_number):
        sheet_id = self.sheet_id_map().get(title)
        if sheet_id is None:
            raise GoogleAPIError(f"Google API request failed: sheet {title!r} not found")
        return self.batch_update([{"deleteDimension": {"range": {
            "sheetId": sheet_id, "dimension": "ROWS",
            "startIndex": int(row_number) - 1, "endIndex": int(row_number),
        }}}])

    def create_spreadsheet(self, title, tabs, locale="en_US", time_zone="Asia/Kolkata"):
        """tabs: [(title, row_count, column_count), ...]; the first tab reuses Sheet1."""
        with _api_errors():
            sh = self._gc().create(title)
            first = sh.sheet1
            first_title, rows, cols = tabs[0]
            reqs = [
                {"updateSpreadsheetProperties": {
                    "properties": {"locale": locale, "timeZone": time_zone, "autoRecalc": "ON_CHANGE"},
                    "fields": "locale,timeZone,autoRecalc",
                }},
                {"updateSheetProperties": {
                    "properties": {"sheetId": first.id, "title": first_title,
                                   "gridProperties": {"rowCount": rows, "columnCount": cols}},
                    "fields": "title,gridProperties.rowCount,gridProperties.columnCount",
                }},
            ]
            for t, r, c in tabs[1:]:
                reqs.append({"addSheet": {"properties": {
                    "title": t, "gridProperties": {"rowCount": r, "columnCount": c}}}})
            sh.batch_update({"requests": reqs})
        logger.info("Created spreadsheet %s (%s)", sh.id, title)
        self.spreadsheet_id = sh.id
        self._sh = sh
        self._sheet_ids = None
        return sh.id
