import html
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse

from api.deps import client_ip, get_rate_limiter, get_recorder, get_resolver
from core.config import Settings, get_settings
from core.errors import RateLimitedError
from services.classifier import ClickRequest
from services.rate_limit import RateLimiter
from services.recorder import ClickRecorder
from services.resolver import RedirectResolver, ResolutionState

router = APIRouter()

PASSWORD_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Password required</title>
</head>
<body>
  <h1>Password required</h1>
  <p>The link <strong>{shortcode}</strong> is password protected.</p>
  <form id="password-form">
    <input type="password" id="password" placeholder="Password" autofocus required>
    <button type="submit">Continue</button>
  </form>
  <p id="error" style="color: red"></p>
  <script>
    const shortcode = {shortcode_json};
    document.getElementById("password-form").addEventListener("submit", async (event) => {{
      event.preventDefault();
      const response = await fetch("/api/password/verify", {{
        method: "POST",
        headers: {{"Content-Type": "application/json"}},
        body: JSON.stringify({{shortcode, password: document.getElementById("password").value}}),
      }});
      const data = await response.json();
      if (response.ok && data.sessionToken) {{
        window.location.href = "/" + encodeURIComponent(shortcode) + "?session=" + data.sessionToken;
      }} else {{
        document.getElementById("error").textContent = data.error || "Invalid password";
      }}
    }});
  </script>
</body>
</html>
"""


def password_page(shortcode: str) -> HTMLResponse:
    content = PASSWORD_PAGE.format(
        shortcode=html.escape(shortcode),
        shortcode_json=json.dumps(shortcode).replace("<", "\\u003c"),
    )
    return HTMLResponse(content=content, status_code=401)


def click_request(request: Request) -> ClickRequest:
    return ClickRequest(
        url=str(request.url),
        user_agent=request.headers.get("user-agent", ""),
        referrer=request.headers.get("referer"),
        country=request.headers.get("cf-ipcountry") or request.headers.get("x-country-code"),
    )


@router.get("/", response_class=PlainTextResponse)
def index():
    return "Link shortener"


@router.get("/{shortcode}")
def follow_link(
    shortcode: str,
    request: Request,
    background_tasks: BackgroundTasks,
    resolver: RedirectResolver = Depends(get_resolver),
    recorder: ClickRecorder = Depends(get_recorder),
    limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_settings),
):
    """
    Перенаправляет по короткой ссылке.

    - Архивная, несуществующая или ещё не активная ссылка: 404; истёкшая: 410.
    - Для защищённой ссылки без подтверждения пароля возвращается страница ввода пароля (401).
    - Переход записывается в фоне после отправки ответа, только если он состоялся.

    Подтверждение пароля принимается из параметра session или cookie pwd_session_<shortcode>.
    """

    if not limiter.allow(f"redirect:{client_ip(request)}", settings.rate_limit_redirect_per_minute, 60):
        raise RateLimitedError("Rate limit exceeded")

    proof = request.query_params.get("session") or request.cookies.get(f"pwd_session_{shortcode}")
    resolution = resolver.resolve(
        shortcode,
        click_request(request),
        proof=proof,
        on_click=lambda event: background_tasks.add_task(recorder.record, event),
    )

    if resolution.state == ResolutionState.REDIRECT:
        return RedirectResponse(url=resolution.location, status_code=resolution.status_code)
    if resolution.state == ResolutionState.PASSWORD_REQUIRED:
        return password_page(shortcode)
    if resolution.state == ResolutionState.EXPIRED:
        return PlainTextResponse("Link expired", status_code=resolution.status_code)
    return PlainTextResponse("Link not found", status_code=resolution.status_code)
