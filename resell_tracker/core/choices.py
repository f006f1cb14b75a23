"""Shared catalog constants: currencies, platforms, statuses and plans."""

DEFAULT_CURRENCY = "GBP"

CURRENCY_SYMBOLS = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
    "CAD": "$",
    "AUD": "$",
    "JPY": "¥",
}
CURRENCIES = frozenset(CURRENCY_SYMBOLS)

PLATFORM_NONE = "NONE"
PLATFORM_OTHER = "OTHER"
PLATFORMS = frozenset(
    {
        PLATFORM_NONE,
        "EBAY",
        "VINTED",
        "DEPOP",
        "STOCKX",
        "GOAT",
        "GRAILED",
        "FACEBOOK",
        "ETSY",
        PLATFORM_OTHER,
    }
)

STATUS_UNLISTED = "UNLISTED"
STATUS_LISTED = "LISTED"
STATUS_SOLD = "SOLD"
LISTING_STATUSES = (STATUS_UNLISTED, STATUS_LISTED, STATUS_SOLD)
PRICED_BY_LISTING = frozenset({STATUS_LISTED, STATUS_SOLD})

CONDITIONS = frozenset({"NEW", "LIKE_NEW", "GOOD", "FAIR", "POOR"})
CATEGORIES = frozenset(
    {
        "CLOTHING",
        "SHOES",
        "TECH",
        "COLLECTIBLES",
        "TRADING_CARDS",
        "WATCHES",
        "BAGS",
        "HOME",
        "BOOKS",
        "TOYS",
        "BEAUTY",
        "OTHER",
    }
)


def normalize_currency(value: object | None) -> str:
    """Upper-case a currency code, falling back to GBP when blank."""

    text = str(value or "").strip().upper()
    return text or DEFAULT_CURRENCY


__all__ = [
    "CATEGORIES",
    "CONDITIONS",
    "CURRENCIES",
    "CURRENCY_SYMBOLS",
    "DEFAULT_CURRENCY",
    "LISTING_STATUSES",
    "PLATFORMS",
    "PLATFORM_NONE",
    "PLATFORM_OTHER",
    "PRICED_BY_LISTING",
    "STATUS_LISTED",
    "STATUS_SOLD",
    "STATUS_UNLISTED",
    "normalize_currency",
]
