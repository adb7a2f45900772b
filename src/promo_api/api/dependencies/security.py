from secrets import compare_digest

from fastapi import Header, HTTPException, status

from promo_api.core.settings import settings


async def require_checkout_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard order-side endpoints; open when no key is configured."""

    if not settings.checkout_api_key:
        return

    if not compare_digest(x_api_key, settings.checkout_api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
