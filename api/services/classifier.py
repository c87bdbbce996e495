import re
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import parse_qs, urlsplit

# Поисковики, сервисы предпросмотра ссылок в соцсетях и мессенджерах, мониторинг
DEFAULT_BOT_SIGNATURES = (
    "bot", "spider", "crawler", "preview",
    "facebookexternalhit", "slackbot", "discordbot", "twitterbot", "linkedinbot",
    "embedly", "quora link", "whatsapp", "skypeuripreview",
    "googlebot", "bingbot", "yahoobot", "duckduckbot", "baiduspider", "yandexbot",
    "applebot", "pinterestrequestinfobot", "telegrambot", "bitlybot", "zoom", "msteamsbot",
)

UTM_FIELDS = ("source", "medium", "campaign", "term", "content")

UNKNOWN_COUNTRIES = {"XX", "??", "T1", "ZZ"}

BROWSERS = (
    ("Edge", ("edg/", "edge/", "edga/", "edgios/")),
    ("Opera", ("opr/", "opera")),
    ("Samsung Internet", ("samsungbrowser",)),
    ("Chrome", ("chrome/", "crios/", "chromium/")),
    ("Firefox", ("firefox/", "fxios/")),
    ("Safari", ("safari/", "applewebkit/")),
)

OPERATING_SYSTEMS = (
    ("Windows", ("windows",)),
    ("iOS", ("iphone", "ipad", "ipod")),
    ("Android", ("android",)),
    ("macOS", ("macintosh", "mac os x")),
    ("Linux", ("linux", "x11")),
)


@dataclass(frozen=True)
class ClickRequest:
    """
    Метаданные входящего запроса на переход.

    Атрибуты:
        url (str): Полный URL запроса вместе со строкой запроса.
        user_agent (str): Значение заголовка User-Agent.
        referrer (str | None): Значение заголовка Referer.
        country (str | None): Подсказка о стране (например, из CF-IPCountry).
    """

    url: str
    user_agent: str = ""
    referrer: str | None = None
    country: str | None = None


@dataclass(frozen=True)
class ClickEvent:
    """
    Классифицированный переход. Создаётся классификатором и больше не меняется.
    """

    shortcode: str
    owner_id: int
    timestamp: datetime
    is_bot: bool
    utm: dict = field(default_factory=dict)
    referrer: str | None = None
    referrer_host: str | None = None
    country: str | None = None
    user_agent: str = ""
    device: str = "desktop"
    browser: str = "Other"
    os: str = "Other"


def parse_utm(url: str) -> dict:
    """Возвращает только те UTM-метки, которые есть в запросе и не пустые."""
    try:
        params = parse_qs(urlsplit(url).query, keep_blank_values=True)
    except ValueError:
        return {}

    utm = {}
    for name in UTM_FIELDS:
        values = params.get(f"utm_{name}")
        if values and values[0]:
            utm[name] = values[0]
    return utm


def parse_referrer_host(referrer: str | None) -> str | None:
    if not referrer:
        return None
    try:
        host = urlsplit(referrer).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def normalize_country(country: str | None) -> str | None:
    if not country:
        return None
    code = country.strip().upper()
    if len(code) != 2 or code in UNKNOWN_COUNTRIES or not code.isalpha():
        return None
    return code


def parse_device(user_agent: str) -> str:
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if re.search(r"mobile|iphone|ipod|android", ua):
        return "mobile"
    return "desktop"


def _family(user_agent: str, families) -> str:
    ua = user_agent.lower()
    for name, tokens in families:
        if any(token in ua for token in tokens):
            return name
    return "Other"


def parse_browser(user_agent: str) -> str:
    return _family(user_agent, BROWSERS)


def parse_os(user_agent: str) -> str:
    return _family(user_agent, OPERATING_SYSTEMS)


class ClickClassifier:
    """
    Превращает метаданные запроса в ClickEvent без побочных эффектов.

    Список сигнатур ботов передаётся снаружи; если он пуст, используется DEFAULT_BOT_SIGNATURES.
    """

    def __init__(self, bot_signatures: tuple[str, ...] = ()):
        signatures = tuple(s.strip().lower() for s in bot_signatures if s.strip()) or DEFAULT_BOT_SIGNATURES
        self.bot_signatures = signatures
        self._bot_pattern = re.compile("|".join(re.escape(s) for s in signatures), re.IGNORECASE)

    def is_bot(self, user_agent: str | None) -> bool:
        if not user_agent:
            return False
        return bool(self._bot_pattern.search(user_agent))

    def classify(self, request: ClickRequest, shortcode: str, owner_id: int, timestamp: datetime) -> ClickEvent:
        user_agent = request.user_agent or ""
        return ClickEvent(
            shortcode=shortcode,
            owner_id=owner_id,
            timestamp=timestamp,
            is_bot=self.is_bot(user_agent),
            utm=parse_utm(request.url),
            referrer=request.referrer or None,
            referrer_host=parse_referrer_host(request.referrer),
            country=normalize_country(request.country),
            user_agent=user_agent,
            device=parse_device(user_agent),
            browser=parse_browser(user_agent),
            os=parse_os(user_agent),
        )
