from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    category_id: Optional[str] = None
    stock: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Product":
        price = float(row["price"])
        if price < 0:
            raise ValueError("price must be >= 0")
        stock = row.get("stock")
        return cls(
            id=str(row["id"]),
            name=str(row["name"]),
            price=price,
            category_id=row.get("category_id"),
            stock=int(stock) if stock is not None else None,
            description=row.get("description"),
            image_url=row.get("image_url"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CartEntry:
    product: Product
    quantity: int

    def to_dict(self) -> Dict[str, Any]:
        return {"product": self.product.to_dict(), "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartEntry":
        qty = int(data["quantity"])
        if qty < 1:
            raise ValueError("quantity must be >= 1")
        return cls(product=Product.from_row(data["product"]), quantity=qty)


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: str
    address: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomerInfo":
        return cls(name=str(data["name"]), phone=str(data["phone"]), address=str(data["address"]))
