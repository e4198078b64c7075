from ridepromo.core.config import settings


def format_money(amount: float) -> str:
    """Render an amount for display. Internal amounts are never rounded."""
    return f"{settings.CURRENCY_SYMBOL}{amount:.2f}"
