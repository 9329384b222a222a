"""
CSRF router — hands out the per-session synchronizer token.

  GET /csrf-token — {"csrfToken": ...} plus the http-only session cookie

Browsers call this once after page load and send the token back in the
X-CSRF-Token header on every POST/PUT/PATCH/DELETE.
"""

from fastapi import APIRouter, Depends, Request, Response

from portal.config import settings
from portal.dependencies import GuardedRequest, RequestGuard, get_kv_store
from portal.kvstore import KeyValueStore
from portal.schemas.auth import CsrfTokenResponse
from portal.services import csrf_service

router = APIRouter()

csrf_guard = RequestGuard()


@router.get(
    "/csrf-token",
    response_model=CsrfTokenResponse,
    summary="Get a CSRF token for this session",
)
async def get_csrf_token(
    request: Request,
    response: Response,
    guarded: GuardedRequest = Depends(csrf_guard),
    store: KeyValueStore = Depends(get_kv_store),
):
    session_id, token = await csrf_service.issue_token(
        store, request.cookies.get(settings.CSRF_COOKIE_NAME)
    )
    response.set_cookie(
        key=settings.CSRF_COOKIE_NAME,
        value=session_id,
        max_age=settings.CSRF_TOKEN_TTL_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
    )
    return CsrfTokenResponse(csrf_token=token)
