"""
Catalog snapshot loading.

The assistant never owns product data; it reads a snapshot exported by
the storefront and treats it as immutable for the life of the process.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml


@dataclass(frozen=True)
class CatalogItem:
    """Read-only view of a storefront product.

    Price is kept in integer minor-currency units.
    """
    id: str
    name: str
    price: int
    category: str
    brand: str
    description: Optional[str] = None

    def as_context_product(self) -> Dict[str, Any]:
        """Payload shown to the presentation layer next to a reply."""
        return {"id": self.id, "name": self.name, "price": self.price}


_REQUIRED_KEYS = ("id", "name", "price", "category", "brand")
_ALLOWED_KEYS = set(_REQUIRED_KEYS) | {"description"}


def parse_catalog_item(data: Dict[str, Any], path: str) -> CatalogItem:
    """Parse and validate a single catalog entry.

    Args:
        data: Raw item mapping
        path: Location used in error messages

    Returns:
        Validated CatalogItem

    Raises:
        ValueError: If the entry is malformed
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a mapping")

    unknown_keys = set(data.keys()) - _ALLOWED_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key in _REQUIRED_KEYS:
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")

    price = data["price"]
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise ValueError(f"'price' in {path} must be a non-negative integer (minor units)")

    description = data.get("description")
    return CatalogItem(
        id=str(data["id"]),
        name=str(data["name"]),
        price=price,
        category=str(data["category"]),
        brand=str(data["brand"]),
        description=str(description) if description is not None else None
    )


def load_catalog(path: str) -> Tuple[CatalogItem, ...]:
    """Load a catalog snapshot from a JSON or YAML file.

    The file holds either a bare list of items or ``{"items": [...]}``.
    Item ids must be unique.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the content is invalid
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    with open(catalog_path, "r", encoding="utf-8") as f:
        if catalog_path.suffix.lower() == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)

    if isinstance(raw, dict):
        unknown_keys = set(raw.keys()) - {"items"}
        if unknown_keys:
            raise ValueError(f"Unknown catalog keys: {unknown_keys}")
        raw = raw.get("items")

    if not isinstance(raw, list):
        raise ValueError("Catalog must be a list of items or a mapping with 'items'")

    items: List[CatalogItem] = []
    seen = set()
    for index, entry in enumerate(raw):
        item = parse_catalog_item(entry, f"items[{index}]")
        if item.id in seen:
            raise ValueError(f"Duplicate catalog item id: {item.id}")
        seen.add(item.id)
        items.append(item)

    return tuple(items)
