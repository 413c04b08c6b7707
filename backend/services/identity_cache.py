"""In-process cache of Jira user references to display names and avatars.

Jira identifies people by opaque ids: Cloud account ids (``557058:<uuid>``),
bare UUIDs, or a ``ug:<uuid>`` form. Some instances hand back the bare UUID
in one response and the ``ug:`` form in another for the same person, so the
cache treats those two as aliases and always reads and writes both.
"""

import logging
import re
import threading
from typing import Optional

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE)
UG_UUID_RE = re.compile(r"^ug:[a-f0-9-]+$", re.IGNORECASE)
CLOUD_ACCOUNT_ID_RE = re.compile(
    r"^\d+:[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}$", re.IGNORECASE
)

UNASSIGNED = "Unassigned"


def alias_for(key: str) -> Optional[str]:
    """The other spelling of a ``ug:``/bare UUID key, or None."""
    if not key:
        return None
    if key.lower().startswith("ug:"):
        return key[3:]
    if UUID_RE.match(key):
        return f"ug:{key}"
    return None


def is_account_id(value) -> bool:
    """True when ``value`` looks like an opaque Jira id rather than a name."""
    if not value or not isinstance(value, str):
        return False
    value = value.strip()
    return bool(UG_UUID_RE.match(value) or UUID_RE.match(value) or CLOUD_ACCOUNT_ID_RE.match(value))


def avatar_from_user(user: Optional[dict]) -> Optional[str]:
    urls = (user or {}).get("avatarUrls") or {}
    return urls.get("48x48") or urls.get("32x32") or urls.get("24x24") or urls.get("16x16")


class IdentityCache:
    """Maps user ids to ``{"displayName", "avatarUrl"}``. Entries never expire."""

    def __init__(self):
        self._entries = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._entries)

    def get(self, key) -> Optional[dict]:
        if not key or not isinstance(key, str):
            return None
        key = key.strip()
        entry = self._entries.get(key)
        if entry is None:
            alias = alias_for(key)
            if alias:
                entry = self._entries.get(alias)
        return entry

    def set(self, key, entry: dict):
        if not key or not isinstance(key, str):
            return
        key = key.strip()
        value = {
            "displayName": entry.get("displayName") or "Unknown",
            "avatarUrl": entry.get("avatarUrl"),
        }
        with self._lock:
            self._entries[key] = value
            alias = alias_for(key)
            if alias:
                self._entries[alias] = value

    def seed_from_jira_user(self, user) -> bool:
        """Cache a user object seen in any API response.

        Returns True when something was cached. A display name equal to the
        account id means Jira hid the real name, so it is not cached.
        """
        if not isinstance(user, dict) or not user.get("accountId"):
            return False
        account_id = user["accountId"]
        name = str(user.get("displayName") or user.get("name") or "").strip()
        if not name or name == account_id:
            return False
        self.set(account_id, {"displayName": name, "avatarUrl": avatar_from_user(user)})
        return True

    def display_for(self, user) -> tuple:
        """``(name, avatar_url)`` for an assignee field, seeding the cache.

        Falls back to the account id when Jira hides the name, so callers
        can resolve it later.
        """
        if not user:
            return UNASSIGNED, None
        if isinstance(user, str):
            hit = self.get(user)
            return (hit["displayName"], hit["avatarUrl"]) if hit else (user, None)
        self.seed_from_jira_user(user)
        account_id = user.get("accountId") or ""
        name = str(user.get("displayName") or user.get("name") or "").strip()
        if name and name != account_id:
            return name, avatar_from_user(user)
        hit = self.get(account_id)
        if hit:
            return hit["displayName"], hit["avatarUrl"]
        return account_id or UNASSIGNED, avatar_from_user(user)

    def resolve(self, key, jira) -> dict:
        """Cache-first lookup that falls back to the Jira user endpoints.

        Never raises: when every lookup fails the key itself is returned as
        the display name.
        """
        if not key or not isinstance(key, str) or not key.strip():
            return {"displayName": UNASSIGNED, "avatarUrl": None}
        key = key.strip()

        hit = self.get(key)
        if hit:
            return hit

        if key.lower().startswith("ug:"):
            candidates = [key[3:], key]
        elif UUID_RE.match(key):
            candidates = [key, f"ug:{key}"]
        else:
            candidates = [key]

        for candidate in candidates:
            try:
                user = jira.lookup_user(candidate)
            except Exception as e:
                logger.debug(f"User lookup for {candidate} failed: {e}")
                continue
            if not user:
                continue
            entry = {
                "displayName": str(user.get("displayName") or user.get("name") or key).strip() or key,
                "avatarUrl": avatar_from_user(user),
            }
            self.set(user.get("accountId") or candidate, entry)
            self.set(key, entry)
            return self.get(key)

        logger.debug(f"Could not resolve user {key}, showing raw id")
        return {"displayName": key, "avatarUrl": None}

    def resolve_many(self, keys, jira) -> dict:
        return {key: self.resolve(key, jira) for key in dict.fromkeys(keys) if key}
