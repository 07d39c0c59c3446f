"""Normalize raw supplier price-list rows into canonical products."""

import logging
import re
import statistics
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pricescan.config import settings
from pricescan.domain import NormalizedProduct

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("brand", "productName", "wholesalePrice", "currency")
OPTIONAL_FIELDS = (
    "variantSize",
    "ean",
    "packSize",
    "supplier",
    "lastPurchasePrice",
    "availability",
    "notes",
)

CENT = Decimal("0.01")

# One number: digits separated only by thousands/decimal separators or spaces
NUMBER_RUN = re.compile(r"[.,]?\d[\d.,\s]*")


class NormalizationError(Exception):
    """Raised when a cell cannot be parsed."""

    pass


@dataclass
class ValidationIssue:
    """A row-level error or warning."""

    row: int
    field: str
    message: str
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        issue = {"row": self.row, "field": self.field, "message": self.message}
        if self.data is not None:
            issue["data"] = self.data
        return issue


@dataclass
class RowResult:
    normalized: NormalizedProduct | None
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)


@dataclass
class ImportSummary:
    """Outcome of normalizing a whole price list."""

    products: list[NormalizedProduct]
    errors: list[ValidationIssue]
    warnings: list[ValidationIssue]
    total_rows: int

    @property
    def valid_rows(self) -> int:
        return len(self.products)

    @property
    def invalid_rows(self) -> int:
        return self.total_rows - self.valid_rows

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class CleaningRules:
    trim_whitespace: bool = True
    normalize_case: str | None = "titlecase"  # "lowercase", "uppercase", "titlecase" or None
    normalize_sizes: bool = True
    parse_multipacks: bool = True
    remove_special_chars: bool = False


class DataNormalizer:
    """Map supplier rows to NormalizedProduct through a column mapping."""

    CURRENCY_ALIASES = {
        "EURO": "EUR",
        "EUROS": "EUR",
        "€": "EUR",
        "DOLLAR": "USD",
        "DOLLARS": "USD",
        "US$": "USD",
        "$": "USD",
        "POUND": "GBP",
        "POUNDS": "GBP",
        "£": "GBP",
    }

    PACK_INDICATORS = {
        "single": 1,
        "twin": 2,
        "duo": 2,
        "triple": 3,
        "trio": 3,
        "quad": 4,
    }

    # Checked before the available indicators since "unavailable" contains "available"
    UNAVAILABLE_INDICATORS = ["unavailable", "out of stock", "inactive", "no", "nee", "false", "0"]
    AVAILABLE_INDICATORS = ["available", "in stock", "active", "yes", "ja", "true", "1"]

    SIZE_UNITS = {
        "ml": "ml",
        "milliliter": "ml",
        "milliliters": "ml",
        "l": "l",
        "liter": "l",
        "liters": "l",
        "litre": "l",
        "g": "g",
        "gr": "g",
        "gram": "g",
        "grams": "g",
        "kg": "kg",
        "oz": "oz",
    }

    SIZE_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)\s*([a-z]+)", re.IGNORECASE)

    def __init__(self, rules: CleaningRules | None = None):
        self.rules = rules or CleaningRules()

    def normalize_row(
        self,
        row: dict[str, Any],
        column_mapping: dict[str, str],
        row_number: int,
        reference_median: Decimal | None = None,
    ) -> RowResult:
        """
        Normalize a single supplier row.

        Args:
            row: Raw cell values keyed by spreadsheet column name
            column_mapping: Canonical field name -> spreadsheet column name
            row_number: 1-based row number used in errors and warnings
            reference_median: Median wholesale price of the batch, for plausibility warnings

        Returns:
            RowResult with ``normalized`` set to None when any required field fails
        """
        result = RowResult(normalized=None)

        def cell(field_name: str) -> str:
            column = column_mapping.get(field_name)
            if not column:
                return ""
            value = row.get(column)
            return "" if value is None else str(value)

        def error(field_name: str, message: str):
            result.errors.append(ValidationIssue(row_number, field_name, message, dict(row)))

        def warning(field_name: str, message: str):
            result.warnings.append(ValidationIssue(row_number, field_name, message))

        brand = self.clean_string(cell("brand"))
        if not brand:
            error("brand", "Brand is required")

        product_name = self.clean_string(cell("productName"))
        if not product_name:
            error("productName", "Product name is required")

        wholesale_price = None
        raw_price = cell("wholesalePrice")
        if not raw_price.strip():
            error("wholesalePrice", "Wholesale price is required")
        else:
            try:
                wholesale_price = self.parse_price(raw_price)
            except NormalizationError as e:
                error("wholesalePrice", str(e))

        currency = self.normalize_currency(cell("currency"))
        if not currency:
            error("currency", "Currency is required")
        elif not re.fullmatch(r"[A-Z]{3}", currency):
            error("currency", f"Unrecognized currency '{cell('currency').strip()}'")

        # Optional cells that are mapped but empty
        for field_name in OPTIONAL_FIELDS:
            if column_mapping.get(field_name) and not cell(field_name).strip():
                warning(field_name, f"Mapped column '{column_mapping[field_name]}' is empty")

        ean = None
        raw_ean = cell("ean")
        if raw_ean.strip():
            ean = self.clean_ean(raw_ean)
            if ean is None:
                warning("ean", f"EAN '{raw_ean.strip()}' has an invalid length (expected 8, 12, 13 or 14 digits)")
            elif not self.is_valid_gtin(ean):
                warning("ean", f"EAN '{ean}' fails the GTIN checksum")
        elif not column_mapping.get("ean"):
            warning("ean", "No EAN provided; matching will rely on title similarity")

        last_purchase_price = None
        raw_last = cell("lastPurchasePrice")
        if raw_last.strip():
            try:
                last_purchase_price = self.parse_price(raw_last)
            except NormalizationError as e:
                warning("lastPurchasePrice", f"Ignored: {e}")

        if result.errors:
            return result

        if reference_median and reference_median > 0:
            factor = Decimal(str(settings.price_plausibility_factor))
            if wholesale_price > reference_median * factor:
                warning(
                    "wholesalePrice",
                    f"Price {wholesale_price} is more than {factor}x the batch median {reference_median}",
                )
            elif wholesale_price * factor < reference_median:
                warning(
                    "wholesalePrice",
                    f"Price {wholesale_price} is less than 1/{factor} of the batch median {reference_median}",
                )

        result.normalized = NormalizedProduct(
            brand=brand,
            product_name=product_name,
            wholesale_price=wholesale_price,
            currency=currency,
            variant_size=self.normalize_size(cell("variantSize")),
            ean=ean,
            pack_size=self.parse_pack_size(cell("packSize")),
            supplier_name=self.clean_string(cell("supplier")),
            last_purchase_price=last_purchase_price,
            availability=self.parse_availability(cell("availability")),
            notes=cell("notes").strip() or None,
        )
        return result

    def normalize_rows(
        self,
        rows: list[dict[str, Any]],
        column_mapping: dict[str, str],
    ) -> ImportSummary:
        """Normalize a whole price list, checking plausibility against the batch median."""
        prices = []
        for row in rows:
            column = column_mapping.get("wholesalePrice")
            raw = row.get(column) if column else None
            if raw is None or not str(raw).strip():
                continue
            try:
                prices.append(self.parse_price(str(raw)))
            except NormalizationError:
                continue
        median = statistics.median(prices) if prices else None

        products = []
        errors = []
        warnings = []
        for index, row in enumerate(rows, start=1):
            result = self.normalize_row(row, column_mapping, index, reference_median=median)
            errors.extend(result.errors)
            warnings.extend(result.warnings)
            if result.normalized is not None:
                products.append(result.normalized)

        logger.info(
            f"Normalized {len(products)}/{len(rows)} rows "
            f"({len(errors)} errors, {len(warnings)} warnings)"
        )
        return ImportSummary(
            products=products,
            errors=errors,
            warnings=warnings,
            total_rows=len(rows),
        )

    def clean_string(self, value: str) -> str:
        if not value:
            return ""

        cleaned = value
        if self.rules.trim_whitespace:
            cleaned = " ".join(cleaned.split())
        if self.rules.remove_special_chars:
            cleaned = re.sub(r"[^\w\s\-.]", "", cleaned)

        if self.rules.normalize_case == "lowercase":
            cleaned = cleaned.lower()
        elif self.rules.normalize_case == "uppercase":
            cleaned = cleaned.upper()
        elif self.rules.normalize_case == "titlecase":
            cleaned = self._title_case(cleaned)

        return cleaned

    @staticmethod
    def _title_case(value: str) -> str:
        return " ".join(word[:1].upper() + word[1:].lower() for word in value.split(" "))

    def normalize_size(self, value: str) -> str | None:
        """Normalize a size cell, e.g. "100 ML" -> "100ml"."""
        if not value or not value.strip():
            return None
        if not self.rules.normalize_sizes:
            return value.strip()

        match = self.SIZE_PATTERN.search(value)
        if match:
            number, unit = match.groups()
            unit = self.SIZE_UNITS.get(unit.lower())
            if unit:
                return f"{number.replace(',', '.')}{unit}"

        return re.sub(r"\s+", "", value.lower())

    @staticmethod
    def clean_ean(value: str) -> str | None:
        digits = re.sub(r"\D", "", value or "")
        if len(digits) in (8, 12, 13, 14):
            return digits
        return None

    @staticmethod
    def is_valid_gtin(code: str) -> bool:
        """Validate the GTIN mod-10 check digit (EAN-8, UPC-A, EAN-13, GTIN-14)."""
        if not code.isdigit() or len(code) not in (8, 12, 13, 14):
            return False
        body, check = code[:-1], int(code[-1])
        total = 0
        for position, digit in enumerate(reversed(body)):
            weight = 3 if position % 2 == 0 else 1
            total += int(digit) * weight
        return (10 - total % 10) % 10 == check

    @staticmethod
    def parse_number(value: str) -> Decimal:
        """
        Parse a human-entered number.

        Currency symbols and words around the number are ignored, but the digits
        must form one run separated only by '.', ',' or spaces, so "12-15" and
        "1e5" are rejected. When both '.' and ',' appear, the right-most one is
        the decimal separator. A single ',' or '.' is a decimal separator; a
        separator that occurs more than once is a thousands separator.

        Raises:
            NormalizationError: If no single number can be read
        """
        raw = str(value).strip()
        negative = raw.startswith("-") or (raw.startswith("(") and raw.endswith(")"))
        match = NUMBER_RUN.search(raw)
        if match is None or re.search(r"\d", raw[match.end():]):
            raise NormalizationError(f"'{raw}' is not a valid number")
        cleaned = re.sub(r"\s", "", match.group(0)).rstrip(".,")

        if "," in cleaned and "." in cleaned:
            decimal_sep = "," if cleaned.rfind(",") > cleaned.rfind(".") else "."
            thousands_sep = "." if decimal_sep == "," else ","
            cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
        elif "," in cleaned or "." in cleaned:
            sep = "," if "," in cleaned else "."
            if cleaned.count(sep) > 1:
                cleaned = cleaned.replace(sep, "")
            else:
                cleaned = cleaned.replace(sep, ".")

        try:
            number = Decimal(cleaned)
        except InvalidOperation as e:
            raise NormalizationError(f"'{raw}' is not a valid number") from e

        return -number if negative else number

    def parse_price(self, value: str) -> Decimal:
        price = self.parse_number(value)
        if price < 0:
            raise NormalizationError(f"Price '{value.strip()}' must not be negative")
        return price.quantize(CENT, rounding=ROUND_HALF_UP)

    def normalize_currency(self, value: str) -> str:
        normalized = (value or "").strip().upper()
        return self.CURRENCY_ALIASES.get(normalized, normalized)

    def parse_pack_size(self, value: str) -> int:
        if not value or not self.rules.parse_multipacks:
            return 1

        match = re.search(r"(\d+)", value)
        if match:
            size = int(match.group(1))
            return size if size > 0 else 1

        lower_value = value.lower()
        for indicator, size in self.PACK_INDICATORS.items():
            if indicator in lower_value:
                return size
        return 1

    def parse_availability(self, value: str) -> bool:
        """Unclear values default to available."""
        if not value or not value.strip():
            return True

        lower_value = value.strip().lower()
        words = set(re.findall(r"\w+", lower_value))

        for indicator in self.UNAVAILABLE_INDICATORS:
            if " " in indicator or len(indicator) > 3:
                if indicator in lower_value:
                    return False
            elif indicator in words:
                return False

        for indicator in self.AVAILABLE_INDICATORS:
            if " " in indicator or len(indicator) > 3:
                if indicator in lower_value:
                    return True
            elif indicator in words:
                return True

        return True
