"""Catalog file definitions and JSON (de)serialization."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import Field

from storesync.core.base import BaseConfig
from storesync.core.errors import CatalogIOError

Record = dict[str, Any]

ID_FIELD = "id"

# Synthetic field used when one side deleted a record the other edited
EXISTENCE_FIELD = "_exists"


class CatalogSpec(BaseConfig):
    """One well-known catalog document in the repository."""

    path: str = Field(description="Repository-relative path")
    noun: str = Field(description="What one record is called")
    name_field: str = Field(
        default="name",
        description="Field used to refer to a record in messages",
    )
    money_fields: list[str] = Field(
        default_factory=list,
        description="Fields rendered with two decimals",
    )
    labels: dict[str, str] = Field(
        default_factory=dict,
        description="Display labels for fields",
    )

    def label(self, field: str) -> str:
        if field == EXISTENCE_FIELD:
            return f"{self.noun.capitalize()} Existence"
        return self.labels.get(field, field)

    def display_name(self, record: Record | None) -> str:
        if not record:
            return f"Unnamed {self.noun}"
        value = record.get(self.name_field)
        if value in (None, ""):
            return f"{self.noun.capitalize()} {record.get(ID_FIELD)}"
        return str(value)


PRODUCTS = CatalogSpec(
    path="products.json",
    noun="product",
    name_field="name",
    money_fields=["price", "discountedPrice"],
    labels={
        "name": "Product Name",
        "price": "Price",
        "description": "Description",
        "category": "Category",
        "stock": "Stock Quantity",
        "isNew": "New Badge",
        "discount": "Discount",
        "discountedPrice": "Discounted Price",
        "images": "Images",
        "image": "Image",
    },
)

COUPONS = CatalogSpec(
    path="coupons.json",
    noun="coupon",
    name_field="code",
    money_fields=["amount", "minSpend"],
    labels={
        "code": "Coupon Code",
        "type": "Type",
        "amount": "Amount",
        "minSpend": "Minimum Spend",
        "category": "Category",
        "description": "Description",
        "enabled": "Enabled",
    },
)

DEFAULT_CATALOGS = [PRODUCTS, COUPONS]


class CatalogRegistry:
    """Lookup of catalog specs by repository-relative path."""

    def __init__(self, specs: list[CatalogSpec] | None = None):
        specs = DEFAULT_CATALOGS if specs is None else specs
        self._by_path = {_normalize(spec.path): spec for spec in specs}

    def get(self, path: str) -> CatalogSpec | None:
        return self._by_path.get(_normalize(path))

    def __contains__(self, path: str) -> bool:
        return _normalize(path) in self._by_path

    def __iter__(self):
        return iter(self._by_path.values())

    @property
    def paths(self) -> list[str]:
        return list(self._by_path)


def _normalize(path: str) -> str:
    path = path.replace("\\", "/")
    return path[2:] if path.startswith("./") else path


def parse_records(text: str | None, path: str = "<catalog>") -> list[Record]:
    """Parse catalog JSON text; None (file absent) means no records.

    Raises:
        CatalogIOError: Malformed JSON, a non-array document, or a
            record without an integer id
    """
    if text is None:
        return []
    if not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CatalogIOError(
            f"{path} is not valid JSON (line {e.lineno}: {e.msg})"
        ) from e
    if not isinstance(data, list):
        raise CatalogIOError(f"{path} must contain a JSON array")
    for index, record in enumerate(data):
        if not isinstance(record, dict):
            raise CatalogIOError(f"{path}[{index}] is not an object")
        record_id = record.get(ID_FIELD)
        if isinstance(record_id, bool) or not isinstance(record_id, int):
            raise CatalogIOError(f"{path}[{index}] has no integer id")
    return data


def dump_records(records: list[Record]) -> str:
    """Serialize records the way the catalog editor writes them."""
    return json.dumps(records, indent=2, ensure_ascii=False) + "\n"


def read_catalog(path: Path) -> list[Record] | None:
    """Read a catalog from disk; None if the file does not exist."""
    if not path.exists():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CatalogIOError(f"Cannot read {path}: {e}") from e
    return parse_records(text, str(path))


def write_catalog(path: Path, records: list[Record]) -> None:
    """Write a catalog atomically so readers never see a partial file."""
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(dump_records(records), encoding="utf-8")
        os.replace(tmp, path)
    except OSError as e:
        raise CatalogIOError(f"Cannot write {path}: {e}") from e


def index_by_id(records: list[Record]) -> dict[int, Record]:
    return {record[ID_FIELD]: record for record in records}
