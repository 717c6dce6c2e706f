from fastapi import APIRouter, Depends, HTTPException, status
from smartlink_app.dependencies import get_url_service
from smartlink_app.schemas.url import URLCreate, URLResponse, URLStats, URLUpdate
from smartlink_app.services.url_service import URLService

router = APIRouter(prefix="/urls", tags=["urls"])

URL_NOT_FOUND = "Short URL not found"


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=URL_NOT_FOUND)


@router.post("/", response_model=URLResponse, status_code=status.HTTP_201_CREATED)
async def create_short_url(
    url_data: URLCreate,
    url_service: URLService = Depends(get_url_service)
):
    """Shorten a URL, optionally with a default target, an expiry and preset UTM values"""
    return await url_service.create_short_url(**url_data.model_dump())


@router.get("/{short_code}", response_model=URLResponse)
async def get_url_info(
    short_code: str,
    url_service: URLService = Depends(get_url_service)
):
    """Link details, including whether smart routing and A/B testing are on"""
    url = await url_service.get_url_by_short_code(short_code)
    if url is None:
        raise _not_found()
    return url


@router.patch("/{short_code}", response_model=URLResponse)
async def update_url(
    short_code: str,
    url_data: URLUpdate,
    url_service: URLService = Depends(get_url_service)
):
    """Change a link's targets, expiry, preset UTM values or active flag"""
    url = await url_service.update_url(short_code, url_data)
    if url is None:
        raise _not_found()
    return url


@router.get("/{short_code}/stats", response_model=URLStats)
async def get_url_stats(
    short_code: str,
    url_service: URLService = Depends(get_url_service)
):
    """Counters plus click breakdowns (by routing mechanism, device, country, referer)"""
    stats = await url_service.get_url_stats(short_code)
    if stats is None:
        raise _not_found()
    return stats


@router.delete("/{short_code}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_url(
    short_code: str,
    url_service: URLService = Depends(get_url_service)
):
    """Deactivate a short URL. Rules, variants and counters are kept."""
    if not await url_service.delete_url(short_code):
        raise _not_found()
