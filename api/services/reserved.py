from datetime import datetime, timezone

# Маршруты приложения и типичные служебные пути
CORE_RESERVED = (
    "admin", "api", "all",
    "auth", "oauth", "callback", "login", "logout",
    "www", "mail", "ftp", "assets", "static", "public",
    "root", "localhost", "robots", "sitemap", "favicon", "manifest", "sw",
    "dashboard", "settings", "config", "health", "status", "metrics", "docs", "help",
    "security", "privacy", "terms",
)

# Префиксы под /api
API_PATTERNS = ("analytics", "links", "password", "user", "meta", "bulk")

AUTH_ROUTES = {"auth", "login", "logout", "oauth", "callback"}
SERVER_NAMES = {"www", "mail", "ftp"}


class ReservedPaths:
    """
    Набор кодов, которые нельзя зарегистрировать как короткую ссылку.

    Собирается один раз при старте и передаётся в хранилище ссылок явно.
    """

    def __init__(self, extra: tuple[str, ...] = ()):
        self._paths = frozenset(
            path.strip().lower() for path in (*CORE_RESERVED, *API_PATTERNS, *extra) if path.strip()
        )
        self.updated_at = datetime.now(timezone.utc)

    def __contains__(self, shortcode: str) -> bool:
        return self.is_reserved(shortcode)

    def __len__(self) -> int:
        return len(self._paths)

    def is_reserved(self, shortcode: str | None) -> bool:
        if not shortcode or not isinstance(shortcode, str):
            return False
        return shortcode.strip().lower() in self._paths

    def error_for(self, shortcode: str) -> str | None:
        if not self.is_reserved(shortcode):
            return None

        normalized = shortcode.strip().lower()
        if normalized == "admin":
            return 'The shortcode "admin" is reserved for the administration panel'
        if normalized == "api":
            return 'The shortcode "api" is reserved for API endpoints'
        if normalized in AUTH_ROUTES:
            return f'The shortcode "{normalized}" is reserved for authentication routes'
        if normalized in SERVER_NAMES:
            return f'The shortcode "{normalized}" is reserved to avoid conflicts with common server configurations'
        return f'The shortcode "{normalized}" is reserved and cannot be used'

    def as_list(self) -> list[str]:
        return sorted(self._paths)
