"""Shared income-versus-principal classification contract.

Every adapter routes raw records through :data:`default_classifier` so the
same rules decide what counts as income across providers.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from portfolio_hub.schemas.income import IncomeCategory

# Principal movements: never income, whatever else the description says.
EXCLUSION_KEYWORDS: tuple[str, ...] = (
    "deposit",
    "withdraw",
    "redeem",
    "unstake",
    "unsubscribe",
    "subscribe",
    "purchase",
    "sell",
    "swap",
    "convert",
    "transfer_in",
    "transfer_out",
    "transfer in",
    "transfer out",
    "transfer-in",
    "transfer-out",
)

# Evaluated in order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS: tuple[tuple[IncomeCategory, tuple[str, ...]], ...] = (
    (IncomeCategory.DIVIDEND, ("dividend",)),
    (IncomeCategory.STAKING, ("staking", "stake")),
    (
        IncomeCategory.YIELD,
        ("yield", "interest", "earn", "reward", "savings", "rebate", "realtime", "bonus"),
    ),
)

RECORD_TEXT_FIELDS = ("description", "type", "enInfo", "journal_type", "transaction_type")


def record_text(record: str | Mapping[str, Any]) -> str:
    """Flatten a raw record into the lowercase text used for matching."""

    if isinstance(record, str):
        return record.lower()
    parts = [str(record[key]) for key in RECORD_TEXT_FIELDS if record.get(key)]
    return " ".join(parts).lower()


class IncomeClassifier:
    def __init__(
        self,
        exclusions: Iterable[str] = EXCLUSION_KEYWORDS,
        categories: Iterable[tuple[IncomeCategory, Iterable[str]]] = CATEGORY_KEYWORDS,
    ) -> None:
        self._exclusions = tuple(keyword.lower() for keyword in exclusions)
        self._categories = tuple((category, tuple(k.lower() for k in words)) for category, words in categories)

    def is_income(self, description: str | Mapping[str, Any]) -> bool:
        text = record_text(description)
        return not any(keyword in text for keyword in self._exclusions)

    def classify(self, record: str | Mapping[str, Any]) -> IncomeCategory:
        """Return the category of an income record.

        Raises ``ValueError`` for principal movements; callers filter with
        :meth:`is_income` first.
        """

        text = record_text(record)
        if not self.is_income(text):
            raise ValueError(f"Not an income record: {text!r}")
        for category, keywords in self._categories:
            if any(keyword in text for keyword in keywords):
                return category
        return IncomeCategory.DISTRIBUTION

    @staticmethod
    def describe_categories() -> list[str]:
        return [category.value for category in IncomeCategory]


default_classifier = IncomeClassifier()


__all__ = [
    "CATEGORY_KEYWORDS",
    "EXCLUSION_KEYWORDS",
    "IncomeClassifier",
    "default_classifier",
    "record_text",
]
