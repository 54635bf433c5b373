# catalog_etl/core/record_codec.py
"""
Record Codec: one NDJSON line -> typed ProductRecord

Intent
- Parse a single catalog export line into a validated, typed record.
- Forward compatible: unknown fields are ignored.
- Strict on the fields we use: a present-but-wrong-typed field rejects the line
  (RecordRejected), never the stream.

Source field mapping (catalog export -> ProductRecord)
- code                       -> barcode (int or digit string; absent allowed here,
                                the loader decides importability)
- brands                     -> name (display name; blank -> "Unknown")
- image_url                  -> image_url
- ingredients_analysis_tags  -> tag list
- categories_tags            -> category list
- allergens_hierarchy        -> allergen list
- countries_hierarchy        -> country list
- additives_tags             -> additive list
- nutriments                 -> NutrientFacts (hyphenated export keys accepted)

Notes
- Empty strings in numeric slots are read as missing values; booleans in
  numeric slots reject the line.
- A nutriments object whose values are all missing counts as absent.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

UNKNOWN_NAME = "Unknown"

_MAX_BARCODE = 2**63 - 1


class RecordRejected(ValueError):
    """A line that cannot be turned into a ProductRecord."""


def _numeric_slot(v: Any) -> Any:
    # JSON true/false would otherwise be coerced to 1/0
    if isinstance(v, bool):
        raise ValueError("boolean is not a number")
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _num(name: str, *aliases: str) -> Any:
    return Field(default=None, validation_alias=AliasChoices(name, *aliases))


class NutrientFacts(BaseModel):
    model_config = ConfigDict(extra="ignore")

    carbohydrates: Optional[float] = _num("carbohydrates")
    carbohydrates_100g: Optional[float] = _num("carbohydrates_100g")
    energy: Optional[float] = _num("energy")
    energy_kj_100g: Optional[float] = _num("energy_kj_100g", "energy-kj_100g")
    fat: Optional[float] = _num("fat")
    fat_100g: Optional[float] = _num("fat_100g")
    fiber: Optional[float] = _num("fiber")
    fiber_100g: Optional[float] = _num("fiber_100g")
    proteins: Optional[float] = _num("proteins")
    proteins_100g: Optional[float] = _num("proteins_100g")
    salt: Optional[float] = _num("salt")
    salt_100g: Optional[float] = _num("salt_100g")
    saturated_fat: Optional[float] = _num("saturated_fat", "saturated-fat")
    saturated_fat_100g: Optional[float] = _num("saturated_fat_100g", "saturated-fat_100g")
    sodium: Optional[float] = _num("sodium")
    sodium_100g: Optional[float] = _num("sodium_100g")
    sugars: Optional[float] = _num("sugars")
    sugars_100g: Optional[float] = _num("sugars_100g")

    @field_validator("*", mode="before")
    @classmethod
    def _empty_string_is_missing(cls, v: Any) -> Any:
        return _numeric_slot(v)

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())

    def as_row(self) -> dict[str, Optional[float]]:
        return self.model_dump()


NUTRIENT_COLUMNS: List[str] = list(NutrientFacts.model_fields.keys())


class ProductRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    barcode: Optional[int] = Field(default=None, validation_alias="code")
    brands: Optional[str] = None
    image_url: Optional[str] = None

    ingredients_analysis_tags: Optional[List[str]] = None
    categories_tags: Optional[List[str]] = None
    allergens_hierarchy: Optional[List[str]] = None
    countries_hierarchy: Optional[List[str]] = None
    additives_tags: Optional[List[str]] = None

    nutriments: Optional[NutrientFacts] = None

    @field_validator("barcode", mode="before")
    @classmethod
    def _barcode_digits(cls, v: Any) -> Any:
        v = _numeric_slot(v)
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator("barcode")
    @classmethod
    def _barcode_fits_bigint(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v > _MAX_BARCODE:
            raise ValueError("barcode does not fit a 64-bit integer")
        return v

    @property
    def name(self) -> str:
        s = (self.brands or "").strip()
        return s or UNKNOWN_NAME

    @property
    def clean_image_url(self) -> Optional[str]:
        if self.image_url is None:
            return None
        return self.image_url.strip() or None

    @property
    def nutrient_facts(self) -> Optional[NutrientFacts]:
        if self.nutriments is None or self.nutriments.is_empty():
            return None
        return self.nutriments

    def is_importable(self) -> bool:
        return self.barcode is not None and self.barcode > 0


def parse_record(line: Union[bytes, str]) -> ProductRecord:
    """
    Parse one NDJSON line. Raises RecordRejected for malformed JSON,
    non-object JSON, or wrong-typed fields.
    """
    try:
        obj = json.loads(line)
    except (ValueError, TypeError) as e:  # JSONDecodeError, UnicodeDecodeError
        raise RecordRejected(f"Invalid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise RecordRejected(f"Expected a JSON object, got {type(obj).__name__}")

    try:
        return ProductRecord.model_validate(obj)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise RecordRejected(f"Invalid field(s): {fields}") from e


__all__ = [
    "UNKNOWN_NAME",
    "RecordRejected",
    "NutrientFacts",
    "NUTRIENT_COLUMNS",
    "ProductRecord",
    "parse_record",
]
