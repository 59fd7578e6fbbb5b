from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

Number = Union[Decimal, int, float, str, None]


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() first so floats coming back from the driver keep their printed value
    return Decimal(str(value))


@dataclass(frozen=True)
class Money:
    """A USD / LBP pair. The two currencies are never converted into each other."""

    usd: Decimal = Decimal("0")
    lbp: Decimal = Decimal("0")

    def __post_init__(self):
        object.__setattr__(self, "usd", to_decimal(self.usd))
        object.__setattr__(self, "lbp", to_decimal(self.lbp))

    @classmethod
    def zero(cls) -> "Money":
        return cls()

    @classmethod
    def of(cls, usd: Number = None, lbp: Number = None) -> "Money":
        return cls(to_decimal(usd), to_decimal(lbp))

    @classmethod
    def from_row(cls, row: Any, prefix: str) -> "Money":
        """Read the ``<prefix>_usd`` / ``<prefix>_lbp`` column pair of an ORM row."""
        return cls.of(getattr(row, f"{prefix}_usd"), getattr(row, f"{prefix}_lbp"))

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.usd + other.usd, self.lbp + other.lbp)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.usd - other.usd, self.lbp - other.lbp)

    def __neg__(self) -> "Money":
        return Money(-self.usd, -self.lbp)

    @property
    def is_zero(self) -> bool:
        return self.usd == 0 and self.lbp == 0

    @property
    def is_positive(self) -> bool:
        """True when at least one currency is above zero."""
        return self.usd > 0 or self.lbp > 0

    @property
    def has_negative(self) -> bool:
        return self.usd < 0 or self.lbp < 0

    def split(self) -> tuple:
        """Return ``(positive part, magnitude of the negative part)``, per currency."""
        zero = Decimal("0")
        return (
            Money(max(self.usd, zero), max(self.lbp, zero)),
            Money(max(-self.usd, zero), max(-self.lbp, zero)),
        )

    def to_columns(self, prefix: str) -> dict:
        return {f"{prefix}_usd": self.usd, f"{prefix}_lbp": self.lbp}

    def describe(self) -> str:
        return f"${self.usd:,.2f} / {self.lbp:,.0f} LBP"


def total(amounts) -> Money:
    result = Money.zero()
    for amount in amounts:
        result = result + amount
    return result
