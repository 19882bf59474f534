# checkout/domain/schemas.py
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AddItemIn(_CamelIn):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, alias="productId", description="ID produktu (musi byc > 0)")
    quantity: int = Field(1, gt=0, description="Ilosc produktu (musi byc > 0)")


class UpdateQuantityIn(_CamelIn):
    quantity: int = Field(..., gt=0)


class RefreshPaymentIn(_CamelIn):
    """Odswiezenie statusu jednej platnosci w koszyku."""

    payment_method: Literal["stripe", "flutterwave", "crypto", "nft"] = Field(..., alias="paymentMethod")
    payment_details: Dict[str, Any] = Field(..., alias="paymentDetails")


class CheckoutIn(_CamelIn):
    """paymentDetails: jeden obiekt albo lista, po jednym dowodzie na walute."""

    payment_method: Literal["stripe", "flutterwave", "crypto", "nft"] = Field(..., alias="paymentMethod")
    payment_details: List[Dict[str, Any]] | Dict[str, Any] | None = Field(None, alias="paymentDetails")


class ProcessedItemOut(BaseModel):
    product_id: int = Field(..., serialization_alias="productId")
    name: str
    quantity: int
    unit_price: str = Field(..., serialization_alias="unitPrice")
    amount: str
    currency: str
    is_nft: bool = Field(..., serialization_alias="isNFT")
    payment_method: str = Field(..., serialization_alias="paymentMethod")
    status: str


class CheckoutOut(BaseModel):
    order_id: int = Field(..., serialization_alias="orderId")
    order_number: str = Field(..., serialization_alias="orderNumber")
    processed_items: List[ProcessedItemOut] = Field(..., serialization_alias="processedItems")
