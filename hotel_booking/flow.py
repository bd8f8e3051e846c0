"""
Reservation wizard: room selection, guest details, payment.

Progress is stored on a ``ReservationSession`` row so the client only has to
remember the session id. Moves between steps go through ``advance``.
"""
import logging

from rest_framework.exceptions import ValidationError

from . import services
from .availability import load_room_availability
from .exceptions import InvalidTransition
from .models import Booking, ReservationSession
from .pricing import quote

logger = logging.getLogger(__name__)

State = ReservationSession.State

TRANSITIONS = {
    State.SELECTING_ROOM: {State.ENTERING_GUEST_DETAILS},
    State.ENTERING_GUEST_DETAILS: {State.SELECTING_ROOM, State.AWAITING_PAYMENT},
    State.AWAITING_PAYMENT: {State.CONFIRMED},
    State.CONFIRMED: set(),
}


def can_advance(session, target):
    return target in TRANSITIONS[session.state]


def advance(session, target):
    if not can_advance(session, target):
        raise InvalidTransition(f"Cannot move a reservation from {session.state} to {target}.")
    session.state = target
    session.save()
    return session


def select_room(session, room, check_in, check_out, package=None, adults=1, children=0, today=None):
    """Record the chosen room and dates and move on to guest details."""
    if session.state == State.ENTERING_GUEST_DETAILS:
        advance(session, State.SELECTING_ROOM)
    elif session.state != State.SELECTING_ROOM:
        raise InvalidTransition("The room can no longer be changed for this reservation.")

    if adults + children > room.capacity:
        raise ValidationError(f"{room.name} sleeps at most {room.capacity} guests.")

    availability = load_room_availability(room)
    availability.validate_range(check_in, check_out)
    if not availability.is_date_selectable_as_check_in(check_in, today=today):
        raise ValidationError("Check-in date cannot be in the past.")

    price = quote(room, check_in, check_out, package)

    session.room = room
    session.package = package
    session.check_in_date = check_in
    session.check_out_date = check_out
    session.adults = adults
    session.children = children
    advance(session, State.ENTERING_GUEST_DETAILS)
    return price


def submit_guest_details(session, guest_name, guest_email, guest_phone='', special_requests=''):
    """Create the pending booking for the selection and wait for payment."""
    if not can_advance(session, State.AWAITING_PAYMENT):
        raise InvalidTransition("Select a room and dates before entering guest details.")

    booking = services.create_booking(
        room=session.room,
        package=session.package,
        guest_name=guest_name,
        guest_email=guest_email,
        guest_phone=guest_phone,
        check_in=session.check_in_date,
        check_out=session.check_out_date,
        adults=session.adults,
        children=session.children,
        special_requests=special_requests,
        client_token=session.id,
    )
    session.booking = booking
    advance(session, State.AWAITING_PAYMENT)
    return booking


def pay(session, success=True, payment_id=None):
    if not can_advance(session, State.CONFIRMED):
        raise InvalidTransition("This reservation is not awaiting payment.")

    booking = services.confirm_payment(session.booking, success=success, payment_id=payment_id)
    if booking.payment_status == Booking.PaymentStatus.PAID:
        session.booking = booking
        advance(session, State.CONFIRMED)
    else:
        logger.info("Reservation %s payment declined; still awaiting payment", session.id)
    return booking
