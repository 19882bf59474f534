# checkout/domain/money.py
from decimal import Decimal, ROUND_HALF_UP

DEFAULT_CURRENCY = "USD"

# stripe zero-decimal list
ZERO_DECIMAL = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}

CRYPTO_EXPONENTS = {"ETH": 18, "BTC": 8, "USDC": 6, "USDT": 6}


def normalize_currency(code: str | None) -> str:
    code = (code or "").strip().upper()
    return code or DEFAULT_CURRENCY


def minor_exponent(currency: str) -> int:
    currency = normalize_currency(currency)
    if currency in ZERO_DECIMAL:
        return 0
    return CRYPTO_EXPONENTS.get(currency, 2)


def to_minor_units(amount, currency: str) -> int:
    """Major -> minor units, exact Decimal arithmetic, half-up on the last unit."""
    scaled = Decimal(str(amount)).scaleb(minor_exponent(currency))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int, currency: str) -> Decimal:
    return Decimal(int(amount_minor)).scaleb(-minor_exponent(currency))


def format_amount(value) -> str | None:
    """Decimal -> string bez notacji wykladniczej i zbednych zer (JSON)."""
    if value is None:
        return None
    return format(Decimal(str(value)).normalize(), "f")
