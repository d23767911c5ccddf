"""ETH/wei conversions for amounts crossing the API boundary."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from web3 import Web3

from app.errors import InvalidAmountError

WEI_PER_ETH = 10**18
ETH_DECIMALS = 18


def parse_ether(value: Any, *, field: str = "amount") -> int:
    """Convert a decimal ETH string (or number) into integer wei.

    Rejects negatives, non-finite values and more than 18 fractional digits
    instead of silently truncating them.
    """

    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"Invalid {field}")
    text = str(value).strip()
    if not text:
        raise InvalidAmountError(f"Invalid {field}")
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise InvalidAmountError(f"Invalid {field}") from exc
    if not amount.is_finite() or amount < 0:
        raise InvalidAmountError(f"Invalid {field}")
    with localcontext() as ctx:
        ctx.prec = 100
        exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -ETH_DECIMALS:
        raise InvalidAmountError(f"Invalid {field}: more than {ETH_DECIMALS} decimals")
    try:
        return int(Web3.to_wei(amount, "ether"))
    except ValueError as exc:
        raise InvalidAmountError(f"Invalid {field}") from exc


def format_ether(wei: int) -> str:
    """Render wei as a plain decimal ETH string ("1.5", "0")."""

    value = Decimal(Web3.from_wei(int(wei), "ether"))
    if value == 0:
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def wei_to_eth(wei: int) -> float:
    """Floating ETH value, for display-grade math only."""

    return int(wei) / WEI_PER_ETH


__all__ = ["ETH_DECIMALS", "WEI_PER_ETH", "format_ether", "parse_ether", "wei_to_eth"]
