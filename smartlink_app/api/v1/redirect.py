from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.responses import RedirectResponse
from smartlink_app.config import settings
from smartlink_app.dependencies import get_url_service
from smartlink_app.enrichment.visit import build_visit_context, forward_utm_params
from smartlink_app.services.url_service import URLService

router = APIRouter(tags=["redirect"])


@router.get("/{short_code}")
async def redirect_to_target(
    short_code: str,
    request: Request,
    url_service: URLService = Depends(get_url_service),
):
    """
    Redirect a visitor to wherever the link's routing sends them.

    1. Build the visit context from headers and query string
    2. Resolve: matching rule, default URL, A/B variant or original URL
    3. Queue a click event (counters and analytics are written by the worker)
    4. 302 to the target, with the visitor's utm_* params and the link's presets
    """
    ctx = build_visit_context(request.headers, request.query_params)
    resolved = await url_service.resolve_redirect(short_code, ctx)

    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL not found or inactive"
        )
    if not resolved.decision.has_target:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Short URL has no destination"
        )

    await url_service.publish_click(
        resolved,
        ctx,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

    incoming = request.query_params if settings.forward_utm_params else {}
    target_url = forward_utm_params(resolved.decision.target_url, incoming, resolved.url.utm_presets)
    return RedirectResponse(url=target_url, status_code=status.HTTP_302_FOUND)
