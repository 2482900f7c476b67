import logging
import re
from typing import Optional, Tuple

from passlib.context import CryptContext

from database import KVStore, get_document, put_document
from errors import AuthError, ConflictError, UpstreamStoreError, ValidationError
from schemas import USERNAME_PATTERN, User

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"
# Clients send a hex digest of the password, never the password itself
MIN_PASSWORD_LENGTH = 64

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_username_re = re.compile(USERNAME_PATTERN)


def user_key(username: str) -> str:
    return f"{USER_PREFIX}{username}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def validate_username(username: str) -> None:
    if not username:
        raise ValidationError("Username is required")
    if not _username_re.fullmatch(username):
        raise ValidationError("Username must be 2-20 letters, digits, underscores or hyphens")


def validate_credentials(username: str, password: str) -> None:
    if not username or not password:
        raise ValidationError("Username and password are required")
    validate_username(username)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Malformed password")


class AccountStore:
    def __init__(self, store: KVStore):
        self._store = store

    def get_user(self, username: str) -> Optional[User]:
        data = get_document(self._store, user_key(username))
        if data is None:
            return None
        try:
            return User.model_validate(data)
        except ValueError as e:
            logger.warning(f"User record {username} is invalid: {e}")
            raise UpstreamStoreError(f"Malformed data stored at {user_key(username)}")

    def _save(self, user: User) -> None:
        put_document(self._store, user_key(user.username), user.model_dump())

    def register(self, username: str, password: str, now: int) -> User:
        validate_credentials(username, password)
        if self.get_user(username) is not None:
            raise ConflictError("Username already exists")
        user = User(
            username=username,
            passwordHash=get_password_hash(password),
            createdAt=now,
            lastActive=now,
        )
        self._save(user)
        logger.info(f"Registered user {username}")
        return user

    def login(self, username: str, password: str, now: int) -> User:
        validate_credentials(username, password)
        user = self.get_user(username)
        if user is None or not verify_password(password, user.passwordHash):
            raise AuthError("Invalid username or password")
        user.lastActive = now
        self._save(user)
        logger.info(f"User {username} logged in")
        return user

    def authenticate(self, username: str, password: str, now: int) -> Tuple[User, bool]:
        """Register unknown usernames, verify known ones. Returns (user, created)."""
        validate_credentials(username, password)
        if self.get_user(username) is None:
            return self.register(username, password, now), True
        return self.login(username, password, now), False
