"""Order 聚合模型

订单 + 支付引用。items 与 shipping_address 为下单时的快照，
total_amount 在创建时计算一次，之后不再根据商品价格重算。
tracking_history 只追加，不修改、不删除。
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from ..exceptions import ConflictError
from .enums import OrderStatus, PaymentStatus, validate_transition

_CENT = Decimal("0.01")


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """金额转 Decimal（经 str 转换，避免二进制浮点误差）"""
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: float | int | str | Decimal) -> int:
    """金额转最小货币单位（分）"""
    return int(to_decimal(value) * 100)


class OrderItem(BaseModel):
    """订单行（下单时快照）"""

    product_ref: str = Field(description="商品引用")
    name: str = Field(description="下单时的商品名称")
    quantity: int = Field(ge=1, description="数量")
    unit_price: float = Field(ge=0, description="下单时单价")


class ShippingAddress(BaseModel):
    """收货地址快照"""

    street: str
    city: str
    postal_code: str
    country: str
    state: str | None = None


class TrackingEntry(BaseModel):
    """物流/状态追踪条目"""

    status: OrderStatus
    ts: datetime
    message: str = ""


class Order(BaseModel):
    """订单聚合"""

    order_id: str = Field(description="唯一标识，ULID 格式")
    order_number: str = Field(description="面向用户的订单号")
    user_id: str = Field(description="下单用户 ID")
    status: OrderStatus = Field(default=OrderStatus.PENDING_PAYMENT)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    items: list[OrderItem]
    total_amount: float = Field(ge=0)
    currency: str = "ILS"
    shipping_address: ShippingAddress
    tracking_history: list[TrackingEntry] = Field(default_factory=list)
    payment_provider: str = ""
    payment_intent_id: str | None = None
    notes: str = ""
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def compute_total(items: list[OrderItem]) -> float:
        """sum(unit_price * quantity)，保留两位小数"""
        total = sum(
            (to_decimal(item.unit_price) * item.quantity for item in items),
            Decimal("0"),
        )
        return float(total.quantize(_CENT, rounding=ROUND_HALF_UP))

    @property
    def amount_minor(self) -> int:
        return to_minor_units(self.total_amount)

    def transition(
        self,
        to_status: OrderStatus,
        message: str,
        ts: datetime,
        payment_status: PaymentStatus | None = None,
    ) -> tuple["Order", TrackingEntry]:
        """按状态机推进订单，返回新的 Order 与追加的追踪条目

        当前实例保持不变；非法流转抛出 ConflictError。
        """
        if not validate_transition(self.status, to_status):
            raise ConflictError(
                f"Cannot transition order {self.order_number} "
                f"from {self.status} to {to_status}",
                code="INVALID_STATUS_TRANSITION",
            )
        entry = TrackingEntry(status=to_status, ts=ts, message=message)
        updated = self.model_copy(
            update={
                "status": to_status,
                "payment_status": payment_status or self.payment_status,
                "tracking_history": [*self.tracking_history, entry],
                "updated_at": ts,
            }
        )
        return updated, entry
