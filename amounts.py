from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Sequence, Union

MAX_AMOUNT_CENTS = 99_999_999_900
_QUANTIZE_CEILING = Decimal(MAX_AMOUNT_CENTS) / 100 + 1

AmountLike = Union[Decimal, str, int, float]


def to_cents(value: AmountLike, *, allow_zero: bool = False) -> int:
    """Convert a money amount in units ("1.234,50", 12.5, Decimal("3")) to cents."""
    if isinstance(value, bool):
        raise ValueError("must be a number")
    if isinstance(value, str):
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("must be a number") from exc
    if not amount.is_finite():
        raise ValueError("must be a number")
    if abs(amount) > _QUANTIZE_CEILING:
        # Quantizing this far past the limit overflows the decimal context.
        cents = MAX_AMOUNT_CENTS + 1 if amount > 0 else -1
    else:
        cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and allow_zero:
        raise ValueError("must not be negative")
    if cents <= 0 and not allow_zero:
        raise ValueError("must be greater than 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValueError("exceeds the allowed limit")
    return cents


def cents_to_units(cents: int) -> float:
    return cents / 100


def divide_cents(total_cents: int, parts: int) -> int:
    return int(
        (Decimal(total_cents) / Decimal(parts)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )


def proportional_shares(total_cents: int, weights: Sequence[int]) -> list[int]:
    """Split ``total_cents`` by weight, each share rounded half-up to the cent.

    Rounding residue is left in place, so the shares may differ from the total
    by up to half a cent per share.
    """
    weight_sum = sum(weights)
    if weight_sum <= 0:
        raise ValueError("Weights must sum to a positive value")
    total = Decimal(total_cents)
    return [
        int(
            (total * Decimal(weight) / Decimal(weight_sum)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
        for weight in weights
    ]
