from decimal import Decimal
from typing import Optional, Union

from storefront.config import Config

ORDER_STATUS_LABELS = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "packed": "Packed",
    "out-for-delivery": "Out for Delivery",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}

DELIVERY_TIME_LABELS = {
    "morning": "7 AM - 10 AM",
    "afternoon": "12 PM - 3 PM",
    "evening": "5 PM - 8 PM",
}


def format_currency(amount: Union[Decimal, int, float]) -> str:
    """₨1,234.5 style: grouped thousands, at most two decimals"""
    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    text = f"{value:,.2f}".rstrip("0").rstrip(".")
    return f"{Config.CURRENCY_SYMBOL}{text}"


def format_order_status(status: Optional[str]) -> str:
    return ORDER_STATUS_LABELS.get(status or "", status or "")


def format_delivery_time(slot: Optional[str]) -> str:
    return DELIVERY_TIME_LABELS.get(slot or "", "Flexible")


def format_shelf_life(days: Optional[int]) -> str:
    if not days:
        return "N/A"
    if days == 1:
        return "1 day"
    if days <= 7:
        return f"{days} days"
    if days <= 30:
        return f"{days // 7} weeks"
    return f"{days // 30} months"


def format_order_number(order_number: Optional[str]) -> str:
    return f"#{order_number}" if order_number else ""
