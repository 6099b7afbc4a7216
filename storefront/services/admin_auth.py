from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from itsdangerous import BadSignature, URLSafeSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from storefront.constants import ADMIN_LOGIN_PATH, ADMINS, KEY_ADMIN_SESSION
from storefront.db.sqlite import SqliteStore, StoreError
from storefront.services.client_storage import ClientStorage
from storefront.services.coupons import Clock, utc_now

logger = logging.getLogger(__name__)

TOKEN_SALT = "admin-session"


class SessionState(str, enum.Enum):
    UNKNOWN = "unknown"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class AdminSession:
    id: str
    email: str
    name: Optional[str]
    expires_at: int  # epoch milliseconds

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name, "expiresAt": self.expires_at}

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AdminSession":
        return cls(
            id=str(data["id"]),
            email=str(data["email"]),
            name=data.get("name"),
            expires_at=int(data["expiresAt"]),
        )


@dataclass(frozen=True)
class GateDecision:
    action: str  # wait / redirect / render
    location: Optional[str] = None


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_admin(store: SqliteStore, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
    if not password:
        raise ValueError("password must not be empty")
    return store.insert(
        ADMINS,
        {
            "email": normalize_email(email),
            "name": name,
            "password_hash": generate_password_hash(password),
        },
    )


class AdminSessionGuard:
    """
    Tracks whether the current client holds a valid admin session.

    The session lives in the client's storage slot as a signed token; the
    signature is checked on every read, so a hand-edited record counts as
    malformed and is dropped.
    """

    def __init__(
        self,
        store: SqliteStore,
        storage: ClientStorage,
        secret_key: str,
        ttl_hours: float = 24.0,
        now: Clock = utc_now,
    ) -> None:
        self.store = store
        self.storage = storage
        self.serializer = URLSafeSerializer(secret_key, salt=TOKEN_SALT)
        self.ttl = timedelta(hours=ttl_hours)
        self.now = now
        self.state = SessionState.UNKNOWN
        self.session: Optional[AdminSession] = None

    def _now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def _drop(self) -> SessionState:
        self.storage.remove(KEY_ADMIN_SESSION)
        return self._set(SessionState.UNAUTHENTICATED, None)

    def _set(self, state: SessionState, session: Optional[AdminSession]) -> SessionState:
        self.state = state
        self.session = session
        return state

    def check(self) -> SessionState:
        self.state = SessionState.LOADING
        raw = self.storage.get_raw(KEY_ADMIN_SESSION)
        if raw is None:
            return self._set(SessionState.UNAUTHENTICATED, None)

        try:
            token = json.loads(raw)
            if not isinstance(token, str):
                raise ValueError("session token must be a string")
            session = AdminSession.from_payload(self.serializer.loads(token))
        except (BadSignature, KeyError, TypeError, ValueError):
            logger.warning("dropping unreadable admin session for %s", self.storage.client_id)
            return self._drop()

        if self._now_ms() > session.expires_at:
            logger.info("admin session for %s expired", session.email)
            return self._drop()

        return self._set(SessionState.AUTHENTICATED, session)

    def login(self, email: str, password: str) -> bool:
        try:
            row = self.store.select_one(ADMINS, {"email": normalize_email(email)})
        except StoreError:
            logger.exception("admin lookup failed")
            return False

        if row is None or not check_password_hash(row["password_hash"], password or ""):
            self._set(SessionState.UNAUTHENTICATED, None)
            return False

        session = AdminSession(
            id=str(row["id"]),
            email=str(row["email"]),
            name=row.get("name"),
            expires_at=self._now_ms() + int(self.ttl.total_seconds() * 1000),
        )
        self.storage.set_json(KEY_ADMIN_SESSION, self.serializer.dumps(session.to_payload()))
        self._set(SessionState.AUTHENTICATED, session)
        return True

    def logout(self) -> None:
        self._drop()

    def gate(self, requested_path: str) -> GateDecision:
        if self.state is SessionState.AUTHENTICATED:
            return GateDecision("render")
        if self.state is SessionState.UNAUTHENTICATED:
            return GateDecision("redirect", f"{ADMIN_LOGIN_PATH}?{urlencode({'next': requested_path})}")
        return GateDecision("wait")
