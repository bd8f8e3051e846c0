import logging
import uuid
from datetime import timedelta

from django.db import IntegrityError, transaction

from . import emails
from .availability import RoomAvailability, active_bookings
from .exceptions import InvalidTransition, OverlapError, StaleAvailabilityError
from .models import Booking, Room, RoomNight
from .pricing import quote

logger = logging.getLogger(__name__)

UNCHANGED = object()


def _reserve_nights(booking):
    """Write the booking's nights to the ledger; the unique constraint refuses taken nights."""
    nights = []
    night = booking.check_in_date
    while night < booking.check_out_date:
        nights.append(RoomNight(room_id=booking.room_id, booking=booking, night=night))
        night += timedelta(days=1)
    try:
        with transaction.atomic():
            RoomNight.objects.bulk_create(nights)
    except IntegrityError:
        taken = (
            RoomNight.objects.filter(
                room_id=booking.room_id,
                night__gte=booking.check_in_date,
                night__lt=booking.check_out_date,
            )
            .exclude(booking=booking)
            .order_by('night')
            .first()
        )
        conflict = taken.night if taken else booking.check_in_date
        logger.warning("Room %s night %s was taken by a concurrent booking", booking.room_id, conflict)
        raise StaleAvailabilityError(conflict)


def _booking_for_token(client_token):
    if client_token is None:
        return None
    return Booking.objects.filter(client_token=client_token).first()


def create_booking(*, room, guest_name, guest_email, check_in, check_out, package=None,
                   guest_phone='', adults=1, children=0, special_requests='', client_token=None):
    """
    Create a pending, unpaid booking.

    Availability is checked again against the live bookings while the room row
    is locked, and the nights are written to the ledger in the same
    transaction, so of two overlapping requests only one can commit.
    A repeated ``client_token`` returns the booking created with it.
    """
    existing = _booking_for_token(client_token)
    if existing is not None:
        return existing

    with transaction.atomic():
        room = Room.objects.select_for_update().get(pk=room.pk)

        # a retry may have committed while we waited for the lock
        existing = _booking_for_token(client_token)
        if existing is not None:
            return existing

        availability = RoomAvailability(active_bookings(room))
        try:
            availability.validate_range(check_in, check_out)
        except OverlapError as exc:
            logger.warning("Room %s was booked for %s before this request committed", room.pk, exc.conflicting_date)
            raise StaleAvailabilityError(exc.conflicting_date)

        price = quote(room, check_in, check_out, package)

        try:
            with transaction.atomic():
                booking = Booking.objects.create(
                    room=room,
                    package=package,
                    guest_name=guest_name,
                    guest_email=guest_email,
                    guest_phone=guest_phone or '',
                    check_in_date=check_in,
                    check_out_date=check_out,
                    adults=adults,
                    children=children,
                    special_requests=special_requests or '',
                    total_price=price.total,
                    status=Booking.Status.PENDING,
                    payment_status=Booking.PaymentStatus.UNPAID,
                    client_token=client_token,
                )
        except IntegrityError:
            existing = Booking.objects.filter(client_token=client_token).first() if client_token else None
            if existing is None:
                raise
            logger.info("Client token %s was used by a concurrent request; returning booking %s",
                        client_token, existing.reference)
            return existing
        _reserve_nights(booking)

        transaction.on_commit(lambda: emails.send_booking_confirmation(booking))

    logger.info("Created booking %s for room %s (%s nights, total %s)", booking.reference, room.pk, price.nights, price.total)
    return booking


def confirm_payment(booking, success=True, payment_id=None):
    """Mark a pending booking as paid and confirmed; a failed payment changes nothing."""
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking.pk)

        if booking.status not in (Booking.Status.PENDING, Booking.Status.CONFIRMED):
            raise InvalidTransition(f"A {booking.status} booking cannot be paid.")
        if booking.payment_status == Booking.PaymentStatus.PAID:
            return booking

        if not success:
            logger.info("Payment failed for booking %s", booking.reference)
            return booking

        booking.status = Booking.Status.CONFIRMED
        booking.payment_status = Booking.PaymentStatus.PAID
        booking.payment_id = payment_id or f"sim_{uuid.uuid4().hex[:13]}"
        booking.save(update_fields=['status', 'payment_status', 'payment_id', 'updated_at'])

        transaction.on_commit(lambda: emails.send_payment_receipt(booking))

    logger.info("Booking %s paid (%s)", booking.reference, booking.payment_id)
    return booking


def cancel_booking(booking):
    """Cancel a booking and free its nights; paid bookings are marked refunded."""
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking.pk)

        if booking.status == Booking.Status.CANCELLED:
            return booking
        if booking.status == Booking.Status.COMPLETED:
            raise InvalidTransition("A completed booking cannot be cancelled.")

        booking.status = Booking.Status.CANCELLED
        if booking.payment_status == Booking.PaymentStatus.PAID:
            booking.payment_status = Booking.PaymentStatus.REFUNDED
        booking.save(update_fields=['status', 'payment_status', 'updated_at'])
        RoomNight.objects.filter(booking=booking).delete()

    logger.info("Cancelled booking %s", booking.reference)
    return booking


def complete_booking(booking):
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking.pk)
        if booking.status != Booking.Status.CONFIRMED:
            raise InvalidTransition("Only confirmed bookings can be completed.")
        booking.status = Booking.Status.COMPLETED
        booking.save(update_fields=['status', 'updated_at'])
    return booking


def reschedule_booking(booking, room=None, check_in=None, check_out=None, package=UNCHANGED):
    """Move a booking to another room, other dates or another package, repricing it."""
    with transaction.atomic():
        booking = Booking.objects.select_for_update().get(pk=booking.pk)
        if booking.status in (Booking.Status.CANCELLED, Booking.Status.COMPLETED):
            raise InvalidTransition(f"A {booking.status} booking cannot be changed.")

        room = Room.objects.select_for_update().get(pk=(room or booking.room).pk)
        check_in = check_in or booking.check_in_date
        check_out = check_out or booking.check_out_date
        if package is UNCHANGED:
            package = booking.package

        RoomAvailability(active_bookings(room, exclude=booking)).validate_range(check_in, check_out)

        booking.room = room
        booking.check_in_date = check_in
        booking.check_out_date = check_out
        booking.package = package
        booking.total_price = quote(room, check_in, check_out, package).total
        booking.save()

        RoomNight.objects.filter(booking=booking).delete()
        _reserve_nights(booking)

    logger.info("Rescheduled booking %s to room %s %s-%s", booking.reference, room.pk, check_in, check_out)
    return booking
