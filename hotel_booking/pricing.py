"""
Night-based pricing.

A stay costs the room rate for every night between check-in and check-out,
plus the package add-on for every night when a package is chosen. Amounts are
whole currency units and the arithmetic stays in integers, so a total computed
at booking time and one recomputed later for a receipt are always equal.
"""
from collections import namedtuple
from datetime import date, datetime
from decimal import Decimal

from rest_framework.exceptions import ValidationError

Quote = namedtuple("Quote", ["nights", "room_subtotal", "package_subtotal", "total"])


def _as_date(value, field):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise ValidationError({field: "A valid date is required."})


def _as_amount(value, field):
    if value is None or isinstance(value, bool):
        raise ValidationError({field: "A price is required."})
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValidationError({field: "Prices must be whole currency units."})
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError({field: "Prices must be whole currency units."})
    if value < 0:
        raise ValidationError({field: "Prices cannot be negative."})
    return value


def nights_between(check_in, check_out):
    check_in = _as_date(check_in, "check_in_date")
    check_out = _as_date(check_out, "check_out_date")
    nights = (check_out - check_in).days
    if nights <= 0:
        raise ValidationError("check_out must be after check_in")
    return nights


def compute_total(room_price, nights, package_addon=None):
    room_price = _as_amount(room_price, "room_price")
    if nights is None or isinstance(nights, bool) or not isinstance(nights, int):
        raise ValidationError({"nights": "Number of nights must be a whole number."})
    if nights <= 0:
        raise ValidationError({"nights": "A stay must be at least one night."})
    addon = 0 if package_addon is None else _as_amount(package_addon, "package_addon")
    return room_price * nights + addon * nights


def quote(room, check_in, check_out, package=None):
    """Price a stay of ``room`` (and optional ``package``) between two dates."""
    nights = nights_between(check_in, check_out)
    addon = package.price_addon if package is not None else None
    total = compute_total(room.price, nights, addon)
    room_subtotal = room.price * nights
    return Quote(
        nights=nights,
        room_subtotal=room_subtotal,
        package_subtotal=total - room_subtotal,
        total=total,
    )
