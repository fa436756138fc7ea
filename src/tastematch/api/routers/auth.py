from __future__ import annotations

import html
import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse

from ...domain.errors import InvalidInputError, UpstreamFailure
from ...services.orchestrator import get_orchestrator

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger("tastematch.api.auth")


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    content = (
        "<!DOCTYPE html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title, quote=False)}</title>"
        "<style>body{font-family:sans-serif;text-align:center;padding:3rem;"
        "background:#fff0f3;color:#7a1f3d}</style></head>"
        f"<body><h1>{html.escape(title, quote=False)}</h1><p>{html.escape(body, quote=False)}</p>"
        "<script>setTimeout(function(){window.close()},3000)</script>"
        "</body></html>"
    )
    return HTMLResponse(content=content, status_code=status_code)


@router.get("/callback", response_class=HTMLResponse)
async def auth_callback(
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
):
    if error:
        logger.warning("oauth_callback_error room=%s error=%s", state, error)
        return _page("Authorization failed", f"The provider returned: {error}", status_code=400)
    if not code or not state:
        return _page("Authorization failed", "Missing code or state parameter.", status_code=400)
    try:
        await get_orchestrator().authorization_callback(code, state)
    except InvalidInputError as exc:
        return _page("Authorization failed", exc.message, status_code=400)
    except UpstreamFailure as exc:
        logger.warning("oauth_exchange_failed room=%s err=%s", state, exc.message)
        return _page("Authorization failed", "Could not complete sign-in with the food provider.", status_code=502)
    return _page("You're connected!", "You can close this window and head back to your chat.")
