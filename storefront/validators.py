"""
Form validators. Each returns a FieldCheck or a dict of field errors; nothing
here touches the network.
"""
import re
from datetime import date
from typing import Any, Dict, Mapping, NamedTuple, Optional

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(\+\d{1,3}[- ]?)?\d{10}$")
ZIP_RE = re.compile(r"^\d{6}$")
CVC_RE = re.compile(r"^\d{3,4}$")


class FieldCheck(NamedTuple):
    is_valid: bool
    message: str


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


def validate_phone(phone: Optional[str]) -> bool:
    return bool(phone) and PHONE_RE.match(phone) is not None


def validate_password(password: Optional[str]) -> FieldCheck:
    if not password:
        return FieldCheck(False, "Password is required")
    if len(password) < 6:
        return FieldCheck(False, "Password must be at least 6 characters long")
    if len(password) > 50:
        return FieldCheck(False, "Password must be less than 50 characters")
    return FieldCheck(True, "Password is valid")


def validate_name(name: Optional[str]) -> FieldCheck:
    if not name or not name.strip():
        return FieldCheck(False, "Name is required")
    if len(name) < 2:
        return FieldCheck(False, "Name must be at least 2 characters long")
    if len(name) > 50:
        return FieldCheck(False, "Name must be less than 50 characters")
    return FieldCheck(True, "Name is valid")


def validate_quantity(quantity: Optional[int], available_quantity: int) -> FieldCheck:
    if not quantity or quantity < 1:
        return FieldCheck(False, "Quantity must be at least 1")
    if quantity > available_quantity:
        return FieldCheck(False, f"Only {available_quantity} items available in stock")
    return FieldCheck(True, "Quantity is valid")


def _blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def validate_address(address: Mapping[str, Any]) -> Dict[str, str]:
    """Field errors for a delivery address (keys use the API's names)"""
    errors = {}
    if _blank(address.get("street")):
        errors["street"] = "Street address is required"
    if _blank(address.get("city")):
        errors["city"] = "City is required"
    if _blank(address.get("state")):
        errors["state"] = "State is required"
    zip_code = address.get("zipCode")
    if _blank(zip_code):
        errors["zipCode"] = "ZIP code is required"
    elif not ZIP_RE.match(str(zip_code).strip()):
        errors["zipCode"] = "ZIP code must be 6 digits"
    if _blank(address.get("country")):
        errors["country"] = "Country is required"
    return errors


def validate_review(review: Mapping[str, Any]) -> Dict[str, str]:
    errors = {}
    rating = review.get("rating")
    if not rating or rating < 1 or rating > 5:
        errors["rating"] = "Rating must be between 1 and 5"
    comment = review.get("comment")
    if _blank(comment):
        errors["comment"] = "Review comment is required"
    elif len(comment) > 500:
        errors["comment"] = "Comment must be less than 500 characters"
    title = review.get("title")
    if title and len(title) > 100:
        errors["title"] = "Title must be less than 100 characters"
    return errors


def validate_order(order: Mapping[str, Any], today: Optional[date] = None) -> Dict[str, str]:
    """Field errors for an order payload about to be sent to the API"""
    errors = {}
    today = today or date.today()

    items = order.get("items")
    if not items:
        errors["items"] = "Order must have at least one item"
    else:
        for index, item in enumerate(items):
            if not item.get("product"):
                errors[f"items[{index}].product"] = "Product is required"
            if not item.get("quantity") or item["quantity"] < 1:
                errors[f"items[{index}].quantity"] = "Quantity must be at least 1"

    address = order.get("deliveryAddress")
    if not address:
        errors["deliveryAddress"] = "Delivery address is required"
    else:
        for key, message in validate_address(address).items():
            errors[f"deliveryAddress.{key}"] = message

    contact = order.get("contactNumber")
    if not contact:
        errors["contactNumber"] = "Contact number is required"
    elif not validate_phone(contact):
        errors["contactNumber"] = "Invalid phone number"

    delivery_date = order.get("deliveryDate")
    if not delivery_date:
        errors["deliveryDate"] = "Delivery date is required"
    else:
        if isinstance(delivery_date, str):
            delivery_date = date.fromisoformat(delivery_date[:10])
        if delivery_date < today:
            errors["deliveryDate"] = "Delivery date cannot be in the past"

    return errors


def luhn_valid(number: str) -> bool:
    digits = [int(d) for d in number]
    checksum = 0
    for i, digit in enumerate(reversed(digits)):
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        checksum += digit
    return checksum % 10 == 0


def validate_card(
    number: Optional[str],
    exp_month: Optional[int],
    exp_year: Optional[int],
    cvc: Optional[str],
    today: Optional[date] = None
) -> Dict[str, str]:
    """Field errors for raw card input"""
    errors = {}
    today = today or date.today()

    digits = re.sub(r"[\s-]", "", number or "")
    if not digits:
        errors["number"] = "Card number is required"
    elif not digits.isdigit() or not 12 <= len(digits) <= 19 or not luhn_valid(digits):
        errors["number"] = "Your card number is invalid."

    if not exp_month or not exp_year:
        errors["expiry"] = "Expiry date is required"
    elif not 1 <= exp_month <= 12:
        errors["expiry"] = "Your card's expiration month is invalid."
    else:
        year = exp_year + 2000 if exp_year < 100 else exp_year
        if (year, exp_month) < (today.year, today.month):
            errors["expiry"] = "Your card's expiration date is in the past."

    if not cvc:
        errors["cvc"] = "Security code is required"
    elif not CVC_RE.match(cvc):
        errors["cvc"] = "Your card's security code is invalid."

    return errors
