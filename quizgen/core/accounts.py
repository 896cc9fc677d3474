"""
Sign-in and session bookkeeping.

Bridges the identity provider's callbacks to the user, account and session
collections. The provider handshake itself happens elsewhere.
"""

import logging
import secrets
from dataclasses import fields
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from quizgen.core.usage import month_key
from quizgen.storage.models import Account, Role, Session, User
from quizgen.storage.repository import Clock, ConflictError, Database, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LIFETIME = timedelta(days=30)

_ACCOUNT_FIELDS = {f.name for f in fields(Account)} - {"id", "user_id"}


class AccountService:
    """Creates users on first sign-in and manages their sessions."""

    def __init__(self, db: Database, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def sign_in(
        self,
        email: Optional[str],
        name: Optional[str] = None,
        image: Optional[str] = None,
        account: Optional[Mapping[str, Any]] = None
    ) -> Optional[User]:
        """Find or create the user behind a successful provider sign-in.

        New users start with role USER and an empty usage row for the current
        month. The provider account is linked the first time it is seen.

        Args:
            email: Email reported by the provider; sign-in is refused without one
            name: Display name
            image: Avatar URL
            account: Provider account fields (``type``, ``provider``,
                ``provider_account_id`` and optional token fields)

        Returns:
            The signed-in user, or None if sign-in is refused
        """
        if not email:
            logger.warning("Sign-in refused: provider returned no email")
            return None

        user = self.db.users.find_unique(email=email)
        if user is None:
            try:
                user = self.db.users.create(
                    email=email, name=name or "", image=image or "", role=Role.USER
                )
            except ConflictError:
                # Another request created the same user first.
                user = self.db.users.find_unique(email=email)
            else:
                self.db.monthly_usage.increment(
                    user.id, month_key(self.clock()), prompts=0, cost=0.0
                )
                logger.info("New user registered: id=%s", user.id)

        if account:
            self._link_account(user, account)
        return user

    def _link_account(self, user: User, account: Mapping[str, Any]) -> Account:
        unknown = set(account) - _ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown}")
        # Lookup and insert share the collection lock so concurrent sign-ins link once.
        with self.db.store.lock(self.db.accounts.collection):
            existing = self.db.accounts.find_unique(user_id=user.id, provider=account["provider"])
            if existing is not None:
                return existing
            linked = self.db.accounts.create(user_id=user.id, **account)
        logger.info("Linked %s account to user %s", linked.provider, user.id)
        return linked

    def session_claims(self, email: str) -> Optional[Dict[str, str]]:
        """Return the id and role the app attaches to a signed-in session."""
        user = self.db.users.find_unique(email=email)
        if user is None:
            return None
        return {"id": user.id, "role": user.role.value}

    def open_session(
        self,
        user_id: str,
        lifetime: timedelta = DEFAULT_SESSION_LIFETIME
    ) -> Session:
        return self.db.sessions.create(
            session_token=secrets.token_urlsafe(32),
            user_id=user_id,
            expires=self.clock() + lifetime,
        )

    def resolve_session(self, session_token: str) -> Optional[User]:
        """Return the user behind a session token.

        Unknown and expired tokens resolve to None; expired sessions are removed.
        """
        session = self.db.sessions.find_unique(session_token=session_token)
        if session is None:
            return None
        if session.expires <= self.clock():
            self.db.sessions.delete(session_token=session_token)
            return None
        return self.db.users.find_unique(id=session.user_id)

    def sign_out(self, session_token: str) -> bool:
        return self.db.sessions.delete(session_token=session_token) > 0
