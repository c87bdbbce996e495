import secrets

import redis
from passlib.context import CryptContext

from core.logger import get_logger

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
WEAK_PASSWORDS = {
    "password", "12345678", "qwerty123", "password123",
    "admin123", "letmein", "welcome123", "monkey123",
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password.strip())


def verify_password(plain: str, hashed: str | None) -> bool:
    if not plain or not hashed:
        return False
    return pwd_context.verify(plain.strip(), hashed)


def password_problems(password: str) -> list[str]:
    problems = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if len(password) > PASSWORD_MAX_LENGTH:
        problems.append(f"Password must be less than {PASSWORD_MAX_LENGTH} characters long")
    if password.lower() in WEAK_PASSWORDS:
        problems.append("Password is too common and easily guessed")
    return problems


class PasswordProofs:
    """
    Токены, подтверждающие ввод пароля к защищённой ссылке.

    Токен выдаётся после успешной проверки пароля и хранится в Redis
    под ключом pwd_session:<shortcode>:<token> с ограниченным временем жизни.
    """

    def __init__(self, redis_client: redis.Redis, ttl: int):
        self.redis = redis_client
        self.ttl = ttl

    @staticmethod
    def _key(shortcode: str, token: str) -> str:
        return f"pwd_session:{shortcode}:{token}"

    def issue(self, shortcode: str) -> str:
        token = secrets.token_hex(32)
        self.redis.setex(self._key(shortcode, token), self.ttl, "1")
        return token

    def is_valid(self, shortcode: str, token: str | None) -> bool:
        if not token:
            return False
        try:
            return bool(self.redis.get(self._key(shortcode, token)))
        except redis.RedisError as e:
            # Без Redis подтверждение проверить нельзя, снова показываем форму пароля
            logger.warning(f"Password proof lookup failed for {shortcode}: {e}")
            return False

    def revoke_all(self, shortcode: str) -> None:
        try:
            for key in self.redis.scan_iter(f"pwd_session:{shortcode}:*"):
                self.redis.delete(key)
        except redis.RedisError as e:
            logger.warning(f"Failed to revoke password sessions for {shortcode}: {e}")
