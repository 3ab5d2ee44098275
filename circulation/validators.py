from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from circulation.errors import InvalidArgument

CENTS = Decimal("0.01")


class MoneyValidator:
    """Parses user-supplied money amounts into cent-quantized Decimals."""

    @staticmethod
    def parse_amount(raw: Union[Decimal, int, float, str, None], *, field: str = "amount") -> Decimal:
        if raw is None:
            raise InvalidArgument(f"{field} is required.")
        try:
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
        except InvalidOperation as exc:
            raise InvalidArgument(f"{field} must be a number, got {raw!r}.") from exc
        if not value.is_finite():
            raise InvalidArgument(f"{field} must be a finite number.")
        if value < 0:
            raise InvalidArgument(f"{field} cannot be negative.")
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)

    @staticmethod
    def parse_optional(raw: Union[Decimal, int, float, str, None], *, field: str = "amount") -> Optional[Decimal]:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return None
        return MoneyValidator.parse_amount(raw, field=field)


class PolicyValidator:
    """Sanity checks for administrative policy values."""

    @staticmethod
    def positive_int(value: int, *, field: str, maximum: Optional[int] = None) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgument(f"{field} must be an integer.")
        if value <= 0:
            raise InvalidArgument(f"{field} must be greater than zero.")
        if maximum is not None and value > maximum:
            raise InvalidArgument(f"{field} cannot exceed {maximum}.")
        return value
