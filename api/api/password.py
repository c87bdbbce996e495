from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from api.deps import get_password_proofs, get_resolver
from api.links import CamelModel
from api.redirect import click_request
from core.errors import ForbiddenError, GoneError, NotFoundError, UnauthorizedError, ValidationError
from core.logger import get_logger
from services.passwords import PasswordProofs, verify_password
from services.resolver import RedirectResolver, ResolutionState

router = APIRouter()
logger = get_logger(__name__)


class PasswordVerifyIn(BaseModel):
    shortcode: str
    password: str


class PasswordVerifyOut(CamelModel):
    success: bool
    session_token: str
    url: str
    message: str


@router.post("/verify", response_model=PasswordVerifyOut)
def verify_link_password(
    payload: PasswordVerifyIn,
    request: Request,
    response: Response,
    resolver: RedirectResolver = Depends(get_resolver),
    proofs: PasswordProofs = Depends(get_password_proofs),
):
    """
    Проверяет пароль защищённой ссылки и выдаёт токен подтверждения.

    Переход при этом не засчитывается: клик запишется, когда клиент перейдёт по ссылке с токеном.

    Returns:
        PasswordVerifyOut: Токен (также ставится в cookie pwd_session_<shortcode>) и адрес назначения.
    """

    shortcode = payload.shortcode.strip()
    resolution = resolver.resolve(shortcode, click_request(request))

    if resolution.state == ResolutionState.NOT_FOUND:
        raise NotFoundError("Link not found")
    if resolution.state == ResolutionState.NOT_YET_ACTIVE:
        raise ForbiddenError("Link is not yet active")
    if resolution.state == ResolutionState.EXPIRED:
        raise GoneError("Link expired")
    if resolution.state == ResolutionState.REDIRECT:
        raise ValidationError("Link is not password protected")

    link = resolution.link
    if not verify_password(payload.password, link.password_hash):
        logger.info(f"Invalid password attempt for {shortcode}")
        raise UnauthorizedError("Invalid password")

    token = proofs.issue(shortcode)
    response.set_cookie(
        key=f"pwd_session_{shortcode}",
        value=token,
        max_age=proofs.ttl,
        httponly=True,
        samesite="lax",
        path=f"/{shortcode}",
    )
    return PasswordVerifyOut(
        success=True,
        session_token=token,
        url=link.url,
        message="Password verified",
    )
