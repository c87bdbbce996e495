import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

from api.auth import CurrentUser, get_current_user
from api.deps import client_ip, get_link_store, get_password_proofs, get_rate_limiter
from core.config import Settings, get_settings
from core.errors import RateLimitedError, ValidationError
from services.link_store import LinkStore
from services.passwords import PasswordProofs, password_problems
from services.rate_limit import RateLimiter

router = APIRouter()

SHORTCODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
REDIRECT_TYPES = (301, 302, 307, 308)


def sanitize(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return CONTROL_CHARS.sub("", value.strip())


def shortcode_problem(shortcode: str) -> str | None:
    if not shortcode:
        return "Shortcode is required"
    if len(shortcode) < 2:
        return "Shortcode must be at least 2 characters"
    if len(shortcode) > 50:
        return "Shortcode must be less than 50 characters"
    if not SHORTCODE_PATTERN.match(shortcode):
        return "Shortcode can only contain letters, numbers, hyphens, and underscores"
    return None


class CamelModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class LinkFields(CamelModel):
    """
    Общие поля создания и обновления ссылки.

    Атрибуты:
        url (str | None): Адрес назначения, только http:// или https://.
        title (str | None): Заголовок, до 200 символов.
        description (str | None): Описание, до 200 символов.
        tags (list[str] | None): До 20 тегов по 32 символа.
        password (str | None): Пароль доступа; пустая строка снимает защиту при обновлении.
        redirect_type (int | None): 301, 302, 307 или 308.
        archived (bool | None): Скрыть ссылку.
        activates_at (datetime | None): Начало действия ссылки.
        expires_at (datetime | None): Окончание действия ссылки.
    """

    url: str | None = None
    title: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=200)
    tags: list[str] | None = Field(default=None, max_length=20)
    password: str | None = None
    redirect_type: int | None = None
    archived: bool | None = None
    activates_at: datetime | None = None
    expires_at: datetime | None = None

    @field_validator("url", "title", "description", mode="before")
    @classmethod
    def strip_text(cls, value):
        return sanitize(value)

    @field_validator("url")
    @classmethod
    def check_url(cls, value):
        if value is None:
            raise ValueError("URL is required")
        if len(value) > 2048:
            raise ValueError("URL must be less than 2048 characters")
        if not re.match(r"^https?://.+", value):
            raise ValueError("URL must start with http:// or https://")
        try:
            netloc = urlsplit(value).netloc
        except ValueError:
            netloc = ""
        if not netloc:
            raise ValueError("Invalid URL format")
        return value

    @field_validator("tags")
    @classmethod
    def check_tags(cls, value):
        if value is None:
            return value
        for tag in value:
            if len(tag) > 32:
                raise ValueError("Tags must be at most 32 characters")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value):
        if not value:
            return value
        problems = password_problems(value)
        if problems:
            raise ValueError("; ".join(problems))
        return value

    @field_validator("redirect_type")
    @classmethod
    def check_redirect_type(cls, value):
        if value is not None and value not in REDIRECT_TYPES:
            raise ValueError("Redirect type must be 301, 302, 307, or 308")
        return value

    @field_validator("activates_at", "expires_at")
    @classmethod
    def assume_utc(cls, value):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class LinkCreate(LinkFields):
    """
    Схема для создания новой короткой ссылки: shortcode и url обязательны.
    """

    shortcode: str
    url: str

    @field_validator("shortcode", mode="before")
    @classmethod
    def check_shortcode(cls, value):
        value = sanitize(value)
        if not isinstance(value, str):
            raise ValueError("Shortcode must be a string")
        problem = shortcode_problem(value)
        if problem:
            raise ValueError(problem)
        return value


class LinkUpdate(LinkFields):
    """
    Схема частичного обновления: меняются только переданные поля, shortcode не меняется.
    """


class LinkOut(CamelModel):
    """
    Класс для вывода информации о короткой ссылке. Пароль наружу не отдаётся, только passwordEnabled.
    """

    shortcode: str
    url: str
    title: str | None = None
    description: str | None = ""
    tags: list[str] = []
    archived: bool = False
    activates_at: datetime | None = None
    expires_at: datetime | None = None
    redirect_type: int = 301
    clicks: int = 0
    last_clicked: datetime | None = None
    password_enabled: bool = False
    created: datetime | None = None
    updated: datetime | None = None


class LinkListOut(CamelModel):
    links: dict[str, LinkOut]
    cursor: str | None = None


class BulkCreateIn(CamelModel):
    items: list[dict[str, Any]]


class BulkError(CamelModel):
    shortcode: str | None = None
    error: str


class BulkCreateOut(CamelModel):
    created: list[LinkOut]
    conflicts: list[str]
    errors: list[BulkError]


class BulkDeleteIn(CamelModel):
    shortcodes: list[str]


class BulkDeleteResults(CamelModel):
    deleted: list[str]
    not_found: list[str]
    errors: list[BulkError]


class BulkDeleteOut(CamelModel):
    message: str
    results: BulkDeleteResults


def enforce_create_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
):
    if not limiter.allow(f"create:{client_ip(request)}", settings.rate_limit_create_per_hour, 3600):
        raise RateLimitedError("Rate limit exceeded")


def schema_error_message(exc: SchemaError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
        for err in exc.errors()
    )


@router.get("", response_model=LinkListOut)
def list_links(
    limit: int | None = Query(None, ge=1),
    cursor: str | None = Query(None),
    store: LinkStore = Depends(get_link_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Получает страницу ссылок текущего пользователя.

    Args:
        limit (int | None): Размер страницы, не больше LIST_MAX_LIMIT.
        cursor (str | None): Курсор из предыдущего ответа.

    Returns:
        LinkListOut: Словарь shortcode -> ссылка и курсор следующей страницы, если она есть.
    """

    links, next_cursor = store.list_page(current_user.id, limit, cursor)
    return LinkListOut(links={link.shortcode: LinkOut.model_validate(link) for link in links}, cursor=next_cursor)


@router.post("", response_model=LinkOut, status_code=201, dependencies=[Depends(enforce_create_limit)])
def create_link(
    link_in: LinkCreate,
    store: LinkStore = Depends(get_link_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Создает новую короткую ссылку для текущего пользователя.

    - Зарезервированный или занятый shortcode возвращает 409.
    - activatesAt не раньше expiresAt возвращает 400, ссылка не сохраняется.
    """

    return store.create(current_user.id, link_in.model_dump())


@router.post("/bulk", response_model=BulkCreateOut)
def bulk_create_links(
    bulk_in: BulkCreateIn,
    store: LinkStore = Depends(get_link_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Создает несколько ссылок за раз. Ошибки по отдельным элементам не прерывают остальные.

    Returns:
        BulkCreateOut: Созданные ссылки, занятые коды (conflicts) и ошибки валидации.
    """

    if not bulk_in.items:
        raise ValidationError("Items array is required")
    if len(bulk_in.items) > settings.bulk_max_items:
        raise ValidationError(f"Cannot create more than {settings.bulk_max_items} links at once")

    valid, errors = [], []
    for item in bulk_in.items:
        try:
            valid.append(LinkCreate.model_validate(item).model_dump())
        except SchemaError as e:
            shortcode = item.get("shortcode")
            errors.append(BulkError(shortcode=shortcode if isinstance(shortcode, str) else None, error=schema_error_message(e)))

    results = store.bulk_create(current_user.id, valid)
    return BulkCreateOut(
        created=[LinkOut.model_validate(link) for link in results["created"]],
        conflicts=results["conflicts"],
        errors=errors + [BulkError(**err) for err in results["errors"]],
    )


@router.delete("/bulk", response_model=BulkDeleteOut)
def bulk_delete_links(
    bulk_in: BulkDeleteIn = Body(...),
    store: LinkStore = Depends(get_link_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Удаляет несколько ссылок текущего пользователя.

    Returns:
        BulkDeleteOut: Сообщение и списки удалённых, не найденных и неудавшихся кодов.
    """

    if not bulk_in.shortcodes:
        raise ValidationError("Shortcodes array is required")
    if len(bulk_in.shortcodes) > settings.bulk_max_items:
        raise ValidationError(f"Cannot delete more than {settings.bulk_max_items} links at once")
    for shortcode in bulk_in.shortcodes:
        problem = shortcode_problem(shortcode)
        if problem:
            raise ValidationError(f'Invalid shortcode "{shortcode}": {problem}')

    results = store.bulk_delete(bulk_in.shortcodes, current_user.id)
    message = (
        f"Bulk delete completed: {len(results['deleted'])} deleted, "
        f"{len(results['not_found'])} not found, {len(results['errors'])} errors"
    )
    return BulkDeleteOut(message=message, results=BulkDeleteResults(**results))


@router.get("/{shortcode}", response_model=LinkOut)
def get_link(
    shortcode: str,
    store: LinkStore = Depends(get_link_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Получает данные конкретной ссылки текущего пользователя.

    Args:
        shortcode (str): Короткий код ссылки.

    Returns:
        LinkOut: Данные ссылки.
    """

    return store.get_owned(shortcode, current_user.id)


@router.put("/{shortcode}", response_model=LinkOut)
def update_link(
    shortcode: str,
    link_in: LinkUpdate,
    store: LinkStore = Depends(get_link_store),
    proofs: PasswordProofs = Depends(get_password_proofs),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Обновляет ссылку: применяются только поля, переданные в запросе.
    Если password не передан, прежний пароль сохраняется; при смене пароля выданные токены отзываются.
    """

    changes = link_in.model_dump(exclude_unset=True)
    link = store.update(shortcode, current_user.id, changes)
    if "password" in changes:
        proofs.revoke_all(shortcode)
    return link


@router.delete("/{shortcode}", status_code=204)
def delete_link(
    shortcode: str,
    store: LinkStore = Depends(get_link_store),
    proofs: PasswordProofs = Depends(get_password_proofs),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Удаляет ссылку вместе с историей переходов по ней.

    Returns:
        None: Пустой ответ с HTTP статусом 204 (No Content) при успешном удалении.
    """

    store.delete(shortcode, current_user.id)
    proofs.revoke_all(shortcode)
    return Response(status_code=204)
