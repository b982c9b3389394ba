"""请求输入校验

在进入领域逻辑前显式校验原始 JSON，返回 Validated（值或字段错误列表），
不依赖隐式的模型强制转换。unwrap() 在有错误时抛出 ValidationError（400）。
"""

import math
from decimal import InvalidOperation
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from .config import MAX_ITEM_QUANTITY, MAX_UNIT_PRICE, ORDER_NOTES_MAX_LENGTH
from .exceptions import ValidationError
from .models.enums import OrderStatus
from .models.order import Order, OrderItem, ShippingAddress

T = TypeVar("T")

_REQUIRED_ADDRESS_FIELDS = ("street", "city", "postal_code", "country")


class FieldError(BaseModel):
    """字段级错误"""

    field: str
    message: str


class Validated(BaseModel, Generic[T]):
    """校验结果：value 与 errors 二选一"""

    value: T | None = None
    errors: list[FieldError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def unwrap(self) -> T:
        if self.errors or self.value is None:
            raise ValidationError(
                "Request validation failed",
                details=[e.model_dump() for e in self.errors],
            )
        return self.value


class CreateOrderInput(BaseModel):
    """已校验的下单输入"""

    items: list[OrderItem]
    shipping_address: ShippingAddress
    notes: str = ""


class StatusUpdateInput(BaseModel):
    """已校验的管理员状态更新输入"""

    status: OrderStatus
    message: str = ""


class CheckoutInput(BaseModel):
    """已校验的支付会话请求"""

    order_id: str


def _is_number(value: Any) -> bool:
    """有限数值（排除 bool、NaN 与 Infinity）"""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return not isinstance(value, float) or math.isfinite(value)


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _validate_item(index: int, raw: Any, errors: list[FieldError]) -> OrderItem | None:
    prefix = f"items[{index}]"
    if not isinstance(raw, dict):
        errors.append(FieldError(field=prefix, message="must be an object"))
        return None

    item_errors: list[FieldError] = []
    if not _non_empty_str(raw.get("product_ref")):
        item_errors.append(
            FieldError(field=f"{prefix}.product_ref", message="is required")
        )
    if not _non_empty_str(raw.get("name")):
        item_errors.append(FieldError(field=f"{prefix}.name", message="is required"))
    quantity = raw.get("quantity")
    if (
        not isinstance(quantity, int)
        or isinstance(quantity, bool)
        or not 1 <= quantity <= MAX_ITEM_QUANTITY
    ):
        item_errors.append(
            FieldError(
                field=f"{prefix}.quantity",
                message=f"must be an integer between 1 and {MAX_ITEM_QUANTITY}",
            )
        )
    unit_price = raw.get("unit_price")
    if not _is_number(unit_price) or not 0 <= unit_price <= MAX_UNIT_PRICE:
        item_errors.append(
            FieldError(
                field=f"{prefix}.unit_price",
                message=f"must be a finite number between 0 and {MAX_UNIT_PRICE}",
            )
        )

    if item_errors:
        errors.extend(item_errors)
        return None
    return OrderItem(
        product_ref=raw["product_ref"].strip(),
        name=raw["name"].strip(),
        quantity=quantity,
        unit_price=float(unit_price),
    )


def _validate_address(raw: Any, errors: list[FieldError]) -> ShippingAddress | None:
    if not isinstance(raw, dict):
        errors.append(FieldError(field="shipping_address", message="is required"))
        return None

    missing = [
        name for name in _REQUIRED_ADDRESS_FIELDS if not _non_empty_str(raw.get(name))
    ]
    for name in missing:
        errors.append(FieldError(field=f"shipping_address.{name}", message="is required"))
    state = raw.get("state")
    if state is not None and not isinstance(state, str):
        errors.append(FieldError(field="shipping_address.state", message="must be a string"))
        return None
    if missing:
        return None
    return ShippingAddress(
        street=raw["street"].strip(),
        city=raw["city"].strip(),
        postal_code=raw["postal_code"].strip(),
        country=raw["country"].strip(),
        state=state.strip() if state else None,
    )


def validate_create_order(data: Any) -> Validated[CreateOrderInput]:
    """校验下单请求体"""
    if not isinstance(data, dict):
        return Validated(errors=[FieldError(field="body", message="must be a JSON object")])

    errors: list[FieldError] = []

    raw_items = data.get("items")
    items: list[OrderItem] = []
    if not isinstance(raw_items, list) or not raw_items:
        errors.append(FieldError(field="items", message="cart is empty"))
    else:
        for index, raw in enumerate(raw_items):
            item = _validate_item(index, raw, errors)
            if item is not None:
                items.append(item)

    address = _validate_address(data.get("shipping_address"), errors)

    notes = data.get("notes", "")
    if notes is None:
        notes = ""
    if not isinstance(notes, str):
        errors.append(FieldError(field="notes", message="must be a string"))
    elif len(notes) > ORDER_NOTES_MAX_LENGTH:
        errors.append(
            FieldError(
                field="notes",
                message=f"must be at most {ORDER_NOTES_MAX_LENGTH} characters",
            )
        )

    if not errors:
        try:
            total = Order.compute_total(items)
        except InvalidOperation:
            errors.append(FieldError(field="items", message="order total is out of range"))
        else:
            if total <= 0:
                errors.append(
                    FieldError(field="items", message="order total must be positive")
                )

    if errors:
        return Validated(errors=errors)
    return Validated(
        value=CreateOrderInput(items=items, shipping_address=address, notes=notes)
    )


def validate_status_update(data: Any) -> Validated[StatusUpdateInput]:
    """校验管理员状态更新请求体"""
    if not isinstance(data, dict):
        return Validated(errors=[FieldError(field="body", message="must be a JSON object")])

    errors: list[FieldError] = []
    raw_status = data.get("status")
    status: OrderStatus | None = None
    try:
        status = OrderStatus(raw_status)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        errors.append(FieldError(field="status", message=f"must be one of: {allowed}"))

    message = data.get("message") or ""
    if not isinstance(message, str):
        errors.append(FieldError(field="message", message="must be a string"))
    elif len(message) > ORDER_NOTES_MAX_LENGTH:
        errors.append(
            FieldError(
                field="message",
                message=f"must be at most {ORDER_NOTES_MAX_LENGTH} characters",
            )
        )

    if errors:
        return Validated(errors=errors)
    return Validated(value=StatusUpdateInput(status=status, message=message))


def validate_checkout(data: Any) -> Validated[CheckoutInput]:
    """校验支付会话请求体"""
    if not isinstance(data, dict):
        return Validated(errors=[FieldError(field="body", message="must be a JSON object")])
    order_id = data.get("order_id")
    if not _non_empty_str(order_id):
        return Validated(errors=[FieldError(field="order_id", message="is required")])
    return Validated(value=CheckoutInput(order_id=order_id.strip()))
