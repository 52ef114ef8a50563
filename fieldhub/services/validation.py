"""
Field validation shared by create and partial-update paths.

Each rule cleans one field (trim, lower-case, coerce) or raises a
ValidationError naming the field and a stable code. Create treats an absent
or blank required field as MISSING_*, update validates only what is present.
"""
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import ImmutableFieldError, ValidationError
from ..models.enums import InventoryStatus, OrderStatus, Priority, ServiceType, values


_EMAIL = TypeAdapter(EmailStr)
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class FieldRule:
    def __init__(
        self,
        clean: Callable[[Any, str], Any],
        required: bool = False,
        missing_code: Optional[str] = None,
        default: Any = None,
    ):
        self.clean = clean
        self.required = required
        self.missing_code = missing_code
        self.default = default


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value)


def is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


# Cleaners

def text(code: str, label: str) -> Callable[[Any, str], str]:
    def _clean(value: Any, field: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{label} must be a non-empty string", code=code, field=field)
        return value.strip()
    return _clean


def optional_text(code: str, label: str) -> Callable[[Any, str], Optional[str]]:
    def _clean(value: Any, field: str) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(f"{label} must be a string", code=code, field=field)
        return value.strip() or None
    return _clean


def email(code: str) -> Callable[[Any, str], str]:
    def _clean(value: Any, field: str) -> str:
        if not isinstance(value, str):
            raise ValidationError("Invalid email format", code=code, field=field)
        try:
            _EMAIL.validate_python(value.strip())
        except PydanticValidationError:
            raise ValidationError("Invalid email format", code=code, field=field)
        return value.strip().lower()
    return _clean


def number_in_range(type_code: str, range_code: str, label: str, low: float, high: float):
    def _clean(value: Any, field: str) -> float:
        if not is_number(value):
            raise ValidationError(f"{label} must be a number", code=type_code, field=field)
        if value < low or value > high:
            raise ValidationError(
                f"{label} must be between {low:g} and {high:g}", code=range_code, field=field
            )
        return float(value)
    return _clean


def positive_int(code: str, label: str) -> Callable[[Any, str], int]:
    def _clean(value: Any, field: str) -> int:
        if not is_integer(value) or value <= 0:
            raise ValidationError(f"{label} must be a positive integer", code=code, field=field)
        return int(value)
    return _clean


def choice(options: Iterable[str], code: str, label: str) -> Callable[[Any, str], str]:
    options = list(options)

    def _clean(value: Any, field: str) -> str:
        if not isinstance(value, str) or value not in options:
            raise ValidationError(
                f"{label} must be one of: {', '.join(options)}", code=code, field=field
            )
        return value
    return _clean


def boolean(code: str, label: str) -> Callable[[Any, str], bool]:
    def _clean(value: Any, field: str) -> bool:
        if not isinstance(value, bool):
            raise ValidationError(f"{label} must be a boolean", code=code, field=field)
        return value
    return _clean


def timestamp(code: str, label: str) -> Callable[[Any, str], datetime]:
    def _clean(value: Any, field: str) -> datetime:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValidationError(f"Invalid {label} format", code=code, field=field)
        return parsed
    return _clean


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 dates or datetimes; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_slot_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_slot_time(value: Any) -> bool:
    return isinstance(value, str) and bool(TIME_RE.match(value))


def inventory_items(value: Any, field: str) -> list:
    if not isinstance(value, list):
        raise ValidationError(
            "Inventory items must be an array", code="INVALID_INVENTORY_ITEMS", field=field
        )
    cleaned = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError(
                "Each inventory item must be an object", code="INVALID_INVENTORY_ITEM", field=field
            )
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(
                "Each inventory item must have a valid name", code="INVALID_INVENTORY_ITEM", field=field
            )
        quantity = item.get("quantity")
        if not is_number(quantity) or quantity < 0:
            raise ValidationError(
                "Each inventory item must have a valid quantity", code="INVALID_INVENTORY_ITEM", field=field
            )
        in_stock = item.get("in_stock")
        if not isinstance(in_stock, bool):
            raise ValidationError(
                "Each inventory item must have in_stock boolean", code="INVALID_INVENTORY_ITEM", field=field
            )
        cleaned.append({"name": name.strip(), "quantity": quantity, "in_stock": in_stock})
    return cleaned


def service_areas(value: Any, field: str) -> list:
    if not isinstance(value, list) or len(value) == 0:
        raise ValidationError(
            "Service areas must be a non-empty array", code="INVALID_SERVICE_AREAS", field=field
        )
    if not all(isinstance(area, str) and area.strip() for area in value):
        raise ValidationError(
            "All service areas must be non-empty strings", code="INVALID_SERVICE_AREA_FORMAT", field=field
        )
    return [area.strip() for area in value]


ORDER_RULES: Dict[str, FieldRule] = {
    "customer_name": FieldRule(text("INVALID_CUSTOMER_NAME", "Customer name"), True, "MISSING_CUSTOMER_NAME"),
    "customer_email": FieldRule(email("INVALID_EMAIL"), True, "MISSING_CUSTOMER_EMAIL"),
    "customer_phone": FieldRule(text("INVALID_CUSTOMER_PHONE", "Customer phone"), True, "MISSING_CUSTOMER_PHONE"),
    "address": FieldRule(text("INVALID_ADDRESS", "Address"), True, "MISSING_ADDRESS"),
    "city": FieldRule(text("INVALID_CITY", "City"), True, "MISSING_CITY"),
    "location_lat": FieldRule(
        number_in_range("INVALID_LOCATION_LAT", "INVALID_LATITUDE", "Location latitude", -90, 90),
        True, "INVALID_LOCATION_LAT",
    ),
    "location_lng": FieldRule(
        number_in_range("INVALID_LOCATION_LNG", "INVALID_LONGITUDE", "Location longitude", -180, 180),
        True, "INVALID_LOCATION_LNG",
    ),
    "service_type": FieldRule(
        choice(values(ServiceType), "INVALID_SERVICE_TYPE", "Service type"), True, "MISSING_SERVICE_TYPE"
    ),
    "inventory_items": FieldRule(inventory_items, True, "INVALID_INVENTORY_ITEMS"),
    "inventory_status": FieldRule(
        choice(values(InventoryStatus), "INVALID_INVENTORY_STATUS", "Inventory status"),
        default=InventoryStatus.pending.value,
    ),
    "priority": FieldRule(
        choice(values(Priority), "INVALID_PRIORITY", "Priority"), default=Priority.medium.value
    ),
    "estimated_duration": FieldRule(
        positive_int("INVALID_ESTIMATED_DURATION", "Estimated duration"), True, "INVALID_ESTIMATED_DURATION"
    ),
    "special_instructions": FieldRule(optional_text("INVALID_SPECIAL_INSTRUCTIONS", "Special instructions")),
    "status": FieldRule(
        choice(values(OrderStatus), "INVALID_STATUS", "Status"), default=OrderStatus.unassigned.value
    ),
    "due_date": FieldRule(timestamp("INVALID_DUE_DATE", "due date"), True, "MISSING_DUE_DATE"),
}

SUBCONTRACTOR_RULES: Dict[str, FieldRule] = {
    "name": FieldRule(text("INVALID_NAME", "Name"), True, "MISSING_NAME"),
    "email": FieldRule(email("INVALID_EMAIL_FORMAT"), True, "MISSING_EMAIL"),
    "phone": FieldRule(text("INVALID_PHONE", "Phone"), True, "MISSING_PHONE"),
    "service_areas": FieldRule(service_areas, True, "INVALID_SERVICE_AREAS"),
    "max_daily_jobs": FieldRule(
        positive_int("INVALID_MAX_DAILY_JOBS", "Max daily jobs"), True, "INVALID_MAX_DAILY_JOBS"
    ),
    "rating": FieldRule(number_in_range("INVALID_RATING", "INVALID_RATING", "Rating", 0, 5), default=0.0),
    "active": FieldRule(boolean("INVALID_ACTIVE", "Active"), default=True),
}

IMMUTABLE_FIELDS = ("id", "created_at")


def validate_create(rules: Mapping[str, FieldRule], payload: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for field, rule in rules.items():
        value = payload.get(field)
        if is_blank(value):
            if rule.required:
                raise ValidationError(
                    f"{field} is required", code=rule.missing_code, field=field
                )
            cleaned[field] = rule.default
            continue
        cleaned[field] = rule.clean(value, field)
    return cleaned


def validate_update(rules: Mapping[str, FieldRule], payload: Mapping[str, Any]) -> Dict[str, Any]:
    for field in IMMUTABLE_FIELDS:
        if field in payload:
            raise ImmutableFieldError(f"{field} cannot be updated", field=field)
    unknown = [k for k in payload if k not in rules]
    if unknown:
        raise ValidationError(
            f"Unknown field(s): {', '.join(sorted(unknown))}", code="UNKNOWN_FIELD", field=sorted(unknown)[0]
        )
    if not payload:
        raise ValidationError("No fields to update", code="NO_UPDATES")

    cleaned: Dict[str, Any] = {}
    for field, value in payload.items():
        rule = rules[field]
        if value is None and not rule.required and rule.default is None:
            cleaned[field] = None
            continue
        cleaned[field] = rule.clean(value, field)
    return cleaned


def clamp_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    return max(1, min(limit, maximum))


def clean_choice_filter(value: Optional[str], options: Iterable[str], code: str, field: str) -> Optional[str]:
    """Query-string enum filter; empty means no filter."""
    if not value:
        return None
    options = list(options)
    if value not in options:
        raise ValidationError(f"Invalid {field}. Must be one of: {', '.join(options)}", code=code, field=field)
    return value
