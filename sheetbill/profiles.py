# Supabase user_profiles: which spreadsheet (and Google tokens) belong to a user
import logging

from supabase import create_client

logger = logging.getLogger(__name__)

TABLE = "user_profiles"


def _first(res):
    data = getattr(res, "data", None) or []
    return data[0] if data else None


class ProfileStore:
    def __init__(self, client):
        self.client = client

    @classmethod
    def from_config(cls, config):
        if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
            raise RuntimeError("Missing Supabase environment variables")
        return cls(create_client(config.SUPABASE_URL, config.SUPABASE_ANON_KEY))

    def _table(self):
        return self.client.table(TABLE)

    def get(self, user_id):
        return _first(self._table().select("*").eq("id", user_id).limit(1).execute())

    def find_by_email(self, email):
        return _first(self._table().select("*").eq("email", email).limit(1).execute())

    def update(self, user_id, fields):
        return _first(self._table().update(fields).eq("id", user_id).execute())

    def save_tokens(self, user_id, tokens):
        return self.update(user_id, {"google_tokens": tokens.to_dict() if hasattr(tokens, "to_dict") else tokens})

    def set_sheet_id(self, user_id, sheet_id):
        logger.info("Linking spreadsheet %s to user %s", sheet_id, user_id)
        return self.update(user_id, {"google_sheet_id": sheet_id})

    def upsert_on_login(self, email, full_name="", tokens=None):
        """Profile for `email`, created on first sign-in; stores the latest Google tokens."""
        token_dict = tokens.to_dict() if hasattr(tokens, "to_dict") else tokens
        profile = self.find_by_email(email)
        if profile:
            if token_dict:
                profile = self.save_tokens(profile["id"], token_dict) or {**profile, "google_tokens": token_dict}
            return profile
        row = {"email": email, "full_name": full_name or "", "plan": "free", "invoice_count": 0}
        if token_dict:
            row["google_tokens"] = token_dict
        created = _first(self._table().insert(row).execute())
        logger.info("Created profile for %s", email)
        return created
