from __future__ import annotations

import logging
from dataclasses import dataclass

from datastore.sql_store import SqlStore
from services.errors import InvalidCredentials, UsernameConflict
from services.tokens import DEFAULT_ROLE, TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    token: str
    username: str
    role: str


class AccountService:
    """User registration and password login."""

    def __init__(self, store: SqlStore, tokens: TokenService) -> None:
        self.store = store
        self.tokens = tokens

    def register(self, username: str, password: str) -> None:
        try:
            self.store.register_user(username, password)
        except UsernameConflict:
            logger.info("Username already taken", extra={"username": username})
            raise
        logger.info("Registered user", extra={"username": username})

    def login(self, username: str, password: str) -> LoginResult:
        if not self.store.login(username, password):
            logger.warning("Failed login", extra={"username": username})
            raise InvalidCredentials()
        role = self.store.user_role(username) or DEFAULT_ROLE
        token = self.tokens.issue(username, role=role)
        return LoginResult(token=token, username=username, role=role)
