"""
Dashboard figures for the admin panel.

Occupancy is occupied room-nights over available room-nights in the trailing
window; it ignores rooms added or removed during the window, so treat it as an
approximation.
"""
from datetime import timedelta

from django.db.models import Sum
from django.utils import timezone

from .models import Booking, Package, Room, RoomNight

WINDOW_DAYS = 30
TIMEFRAMES = ('week', 'month', 'year')


def percent_change(current, previous):
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) * 100.0 / previous, 1)


def occupancy_rate(start, end):
    """Percentage of room-nights in ``[start, end)`` held by active bookings."""
    days = (end - start).days
    room_count = Room.objects.count()
    if days <= 0 or not room_count:
        return 0.0
    occupied = RoomNight.objects.filter(night__gte=start, night__lt=end).count()
    return round(occupied * 100.0 / (room_count * days), 1)


def _created_between(qs, start, end):
    return qs.filter(created_at__date__gte=start, created_at__date__lt=end)


def _revenue(qs):
    return qs.filter(status__in=[Booking.Status.CONFIRMED, Booking.Status.COMPLETED]).aggregate(
        total=Sum('total_price'))['total'] or 0


def dashboard_stats(today=None):
    today = today or timezone.localdate()
    window_start = today - timedelta(days=WINDOW_DAYS - 1)
    previous_start = window_start - timedelta(days=WINDOW_DAYS)
    bookings = Booking.objects.all()
    active = bookings.exclude(status=Booking.Status.CANCELLED)

    current = _created_between(bookings, window_start, today + timedelta(days=1))
    previous = _created_between(bookings, previous_start, window_start)

    return {
        'total_bookings': bookings.count(),
        'pending_bookings': bookings.filter(status=Booking.Status.PENDING).count(),
        'room_count': Room.objects.count(),
        'package_count': Package.objects.count(),
        'today_check_ins': active.filter(check_in_date=today).count(),
        'today_check_outs': active.filter(check_out_date=today).count(),
        'total_revenue': _revenue(bookings),
        'occupancy_rate': occupancy_rate(window_start, today + timedelta(days=1)),
        'booking_trend': percent_change(current.count(), previous.count()),
        'revenue_trend': percent_change(_revenue(current), _revenue(previous)),
        'recent_bookings': list(bookings.select_related('room', 'package')[:5]),
    }


def _month_start(day, months_back):
    month = day.month - months_back
    year = day.year
    while month <= 0:
        month += 12
        year -= 1
    return day.replace(year=year, month=month, day=1)


def _label(day, timeframe):
    if timeframe == 'year':
        return day.strftime('%b')
    if timeframe == 'week':
        return day.strftime('%a')
    return str(day.day)


def revenue_series(timeframe='week', today=None):
    """Confirmed revenue per day (week, month) or per calendar month (year), oldest first."""
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"Unknown timeframe {timeframe!r}")
    today = today or timezone.localdate()

    if timeframe == 'year':
        buckets = [_month_start(today, i) for i in range(11, -1, -1)]
    else:
        days = 7 if timeframe == 'week' else 30
        buckets = [today - timedelta(days=i) for i in range(days - 1, -1, -1)]

    totals = dict.fromkeys(buckets, 0)
    rows = Booking.objects.filter(
        status__in=[Booking.Status.CONFIRMED, Booking.Status.COMPLETED],
        created_at__date__gte=buckets[0],
        created_at__date__lte=today,
    ).values_list('created_at', 'total_price')
    for created_at, total_price in rows:
        day = timezone.localtime(created_at).date()
        bucket = day.replace(day=1) if timeframe == 'year' else day
        if bucket in totals:
            totals[bucket] += total_price

    return [
        {'label': _label(bucket, timeframe), 'date': bucket.isoformat(), 'revenue': totals[bucket]}
        for bucket in buckets
    ]
