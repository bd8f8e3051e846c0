"""
Room availability over half-open date intervals.

A booking occupies ``[check_in_date, check_out_date)``: the check-out day is
free for the next arrival. Cancelled bookings never occupy anything.
"""
import logging
from datetime import timedelta

from django.db import DatabaseError
from django.utils import timezone

from .exceptions import AvailabilityError, OverlapError
from .models import Booking
from .pricing import nights_between

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)
CANCELLED = "cancelled"


def _field(booking, name):
    if isinstance(booking, dict):
        return booking[name]
    return getattr(booking, name)


def _daterange(start, end):
    day = start
    while day < end:
        yield day
        day += ONE_DAY


class RoomAvailability:
    """Snapshot of one room's bookings, used to gate date selection."""

    def __init__(self, bookings=(), fetch_failed=False):
        self.fetch_failed = fetch_failed
        self.intervals = sorted(
            (_field(b, "check_in_date"), _field(b, "check_out_date"))
            for b in bookings
            if _field(b, "status") != CANCELLED
        )

    @classmethod
    def unavailable(cls):
        """A snapshot for a room whose bookings could not be loaded."""
        return cls(fetch_failed=True)

    def is_date_booked(self, day):
        return any(check_in <= day < check_out for check_in, check_out in self.intervals)

    def is_date_selectable_as_check_in(self, day, today=None):
        if self.fetch_failed:
            return False
        today = today or timezone.localdate()
        if day < today:
            return False
        return not self.is_date_booked(day)

    def is_date_selectable_as_check_out(self, check_in, day):
        if self.fetch_failed or check_in is None or day <= check_in:
            return False
        for night in _daterange(check_in + ONE_DAY, day):
            if self.is_date_booked(night):
                return False
        return not self.is_date_booked(day)

    def first_conflict(self, check_in, check_out):
        for night in _daterange(check_in, check_out):
            if self.is_date_booked(night):
                return night
        return None

    def validate_range(self, check_in, check_out):
        """Raise unless every night of ``[check_in, check_out)`` is free."""
        nights_between(check_in, check_out)
        if self.fetch_failed:
            raise AvailabilityError()
        conflict = self.first_conflict(check_in, check_out)
        if conflict is not None:
            raise OverlapError(conflict)

    def booked_dates(self, start, end):
        return [day for day in _daterange(start, end) if self.is_date_booked(day)]


def active_bookings(room, exclude=None):
    qs = Booking.objects.filter(room=room).exclude(status=Booking.Status.CANCELLED)
    if exclude is not None:
        qs = qs.exclude(pk=exclude.pk)
    return qs.values("check_in_date", "check_out_date", "status")


def load_room_availability(room, exclude=None):
    """
    Build a snapshot of ``room``'s bookings.

    If the bookings cannot be read the snapshot fails closed: no date is
    offered and ``validate_range`` refuses every stay.
    """
    try:
        bookings = list(active_bookings(room, exclude=exclude))
    except DatabaseError:
        logger.exception("Could not load bookings for room %s", getattr(room, "pk", room))
        return RoomAvailability.unavailable()
    return RoomAvailability(bookings)
