from stickershop.config import settings


def money(cents: int, currency: str | None = None) -> str:
    return f"{cents / 100:.2f} {currency or settings.currency}"


def truncate(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."
