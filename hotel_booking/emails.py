import logging
from smtplib import SMTPException

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from .pricing import quote
from .utils import format_currency

logger = logging.getLogger(__name__)


def booking_email_context(booking):
    """
    Template context for booking mails.

    The amount shown is always the stored ``total_price``, the amount charged.
    The rate breakdown is recomputed from current prices and is only shown
    while it still adds up to that amount.
    """
    price = quote(booking.room, booking.check_in_date, booking.check_out_date, booking.package)
    itemized = price.total == booking.total_price
    if not itemized:
        logger.warning(
            "Booking %s stored total %s differs from recomputed total %s; omitting rate breakdown",
            booking.reference, booking.total_price, price.total,
        )
    return {
        'hotel_name': settings.HOTEL_NAME,
        'booking': booking,
        'reference': booking.reference,
        'room': booking.room,
        'room_image': booking.room.display_image_url,
        'package': booking.package,
        'nights': price.nights,
        'itemized': itemized,
        'total': booking.total_price,
        'room_rate': format_currency(booking.room.price),
        'room_subtotal': format_currency(price.room_subtotal),
        'package_rate': format_currency(booking.package.price_addon) if booking.package else None,
        'package_subtotal': format_currency(price.package_subtotal),
        'total_display': format_currency(booking.total_price),
    }


def _send(subject, template, context, to, reply_to=None):
    html = render_to_string(template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=strip_tags(html),
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=to,
        reply_to=reply_to,
    )
    message.attach_alternative(html, 'text/html')
    try:
        message.send()
    except (SMTPException, OSError):
        logger.exception("Failed to send %r to %s", subject, ', '.join(to))
        return False
    logger.info("Sent %r to %s", subject, ', '.join(to))
    return True


def send_booking_confirmation(booking):
    subject = f"Booking Confirmation - {settings.HOTEL_NAME} #{booking.reference}"
    return _send(subject, 'hotel_booking/emails/confirmation.html',
                 booking_email_context(booking), [booking.guest_email])


def send_payment_receipt(booking):
    subject = f"Payment Receipt - {settings.HOTEL_NAME} #{booking.reference}"
    return _send(subject, 'hotel_booking/emails/receipt.html',
                 booking_email_context(booking), [booking.guest_email])


def send_contact_message(name, email, subject, message, phone=''):
    context = {
        'hotel_name': settings.HOTEL_NAME,
        'name': name,
        'email': email,
        'phone': phone or 'Not provided',
        'subject': subject,
        'message': message,
    }
    return _send(f"Contact Form: {subject}", 'hotel_booking/emails/contact.html',
                 context, [settings.HOTEL_CONTACT_EMAIL], reply_to=[email])
