from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from core.database import as_utc, utcnow
from core.errors import ServiceUnavailableError
from core.logger import get_logger
from models.link import Link
from services.classifier import ClickClassifier, ClickEvent, ClickRequest
from services.link_store import LinkStore
from services.passwords import PasswordProofs

logger = get_logger(__name__)


class ResolutionState(str, Enum):
    NOT_FOUND = "not_found"
    NOT_YET_ACTIVE = "not_yet_active"
    EXPIRED = "expired"
    PASSWORD_REQUIRED = "password_required"
    REDIRECT = "redirect"


STATUS_CODES = {
    ResolutionState.NOT_FOUND: 404,
    ResolutionState.NOT_YET_ACTIVE: 404,
    ResolutionState.EXPIRED: 410,
    ResolutionState.PASSWORD_REQUIRED: 401,
}


@dataclass(frozen=True)
class Resolution:
    """
    Итог разбора запроса на переход.

    Атрибуты:
        state (ResolutionState): Состояние, в котором остановилась проверка.
        status_code (int): HTTP-статус ответа.
        link (Link | None): Найденная ссылка (если есть).
        location (str | None): Адрес назначения, только для REDIRECT.
    """

    state: ResolutionState
    status_code: int
    link: Link | None = None
    location: str | None = None


class RedirectResolver:
    """
    Решает, что ответить на GET /{shortcode}.

    Состояния проверяются в фиксированном порядке, побеждает первое подходящее:
    NOT_FOUND -> NOT_YET_ACTIVE -> EXPIRED -> PASSWORD_REQUIRED -> REDIRECT.
    Переход засчитывается (on_click) только в состоянии REDIRECT и ровно один раз.
    """

    def __init__(self, store: LinkStore, proofs: PasswordProofs, classifier: ClickClassifier):
        self.store = store
        self.proofs = proofs
        self.classifier = classifier

    def _stop(self, state: ResolutionState, link: Link | None = None) -> Resolution:
        return Resolution(state=state, status_code=STATUS_CODES[state], link=link)

    def resolve(
        self,
        shortcode: str,
        request: ClickRequest,
        proof: str | None = None,
        now: datetime | None = None,
        on_click: Callable[[ClickEvent], None] | None = None,
    ) -> Resolution:
        now = as_utc(now) if now else utcnow()

        try:
            link = self.store.get(shortcode)
        except SQLAlchemyError as e:
            # Ложный 404 хуже явного сигнала о недоступности хранилища
            logger.error(f"Link store unavailable while resolving {shortcode}: {e}")
            raise ServiceUnavailableError("Link store unavailable")

        if not link or link.archived:
            logger.info(f"Link not found: {shortcode}")
            return self._stop(ResolutionState.NOT_FOUND)

        activates_at = as_utc(link.activates_at)
        if activates_at and now < activates_at:
            return self._stop(ResolutionState.NOT_YET_ACTIVE, link)

        expires_at = as_utc(link.expires_at)
        if expires_at and now > expires_at:
            return self._stop(ResolutionState.EXPIRED, link)

        if link.password_enabled and not self.proofs.is_valid(shortcode, proof):
            return self._stop(ResolutionState.PASSWORD_REQUIRED, link)

        if on_click is not None:
            on_click(self.classifier.classify(request, shortcode, link.owner_id, now))

        logger.info(f"Link redirected: {shortcode} -> {link.url} ({link.redirect_type})")
        return Resolution(
            state=ResolutionState.REDIRECT,
            status_code=link.redirect_type or 301,
            link=link,
            location=link.url,
        )
