import shutil
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, timedelta
from decimal import Decimal
from unittest import mock, skipUnless

from django.contrib.auth.models import User
from django.core import mail
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.test import APITestCase
from svix.webhooks import WebhookVerificationError

from . import flow, services, stats
from .availability import RoomAvailability, load_room_availability
from .emails import booking_email_context
from .exceptions import AvailabilityError, InvalidTransition, OverlapError, StaleAvailabilityError
from .models import Booking, HotelUser, Package, ReservationSession, Room, RoomNight
from .pricing import compute_total, nights_between, quote
from .serializers import BookingSerializer
from .utils import parse_amenities


def make_booking(room, check_in, check_out, package=None, email='guest@example.com', **kwargs):
    return services.create_booking(
        room=room,
        package=package,
        guest_name='Test Guest',
        guest_email=email,
        check_in=check_in,
        check_out=check_out,
        **kwargs
    )


class PricingTestCase(SimpleTestCase):
    """Night-based price arithmetic"""

    def test_room_and_package_are_charged_per_night(self):
        self.assertEqual(compute_total(10000, 3, 2000), 36000)
        self.assertEqual(compute_total(10000, 3), 30000)
        self.assertEqual(compute_total(10000, 3, None), 30000)

    def test_compute_total_is_deterministic(self):
        self.assertEqual(compute_total(8500, 4, 1000), compute_total(8500, 4, 1000))

    def test_zero_and_negative_nights_are_rejected(self):
        for nights in (0, -1):
            with self.subTest(nights=nights):
                with self.assertRaises(ValidationError):
                    compute_total(10000, nights, 2000)

    def test_missing_or_invalid_amounts_are_rejected(self):
        for room_price in (None, -1, 99.5, True, '100'):
            with self.subTest(room_price=room_price):
                with self.assertRaises(ValidationError):
                    compute_total(room_price, 2)
        with self.assertRaises(ValidationError):
            compute_total(10000, None)
        with self.assertRaises(ValidationError):
            compute_total(10000, 2, -500)

    def test_integral_decimals_are_accepted(self):
        self.assertEqual(compute_total(Decimal('1000.00'), 2, Decimal('250')), 2500)
        with self.assertRaises(ValidationError):
            compute_total(Decimal('1000.50'), 2)

    def test_nights_between(self):
        self.assertEqual(nights_between(date(2024, 6, 1), date(2024, 6, 5)), 4)
        with self.assertRaises(ValidationError):
            nights_between(date(2024, 6, 5), date(2024, 6, 5))
        with self.assertRaises(ValidationError):
            nights_between(date(2024, 6, 5), date(2024, 6, 1))
        with self.assertRaises(ValidationError):
            nights_between(None, date(2024, 6, 1))

    def test_quote_splits_room_and_package(self):
        room = Room(name='Deluxe', price=10000)
        package = Package(name='Half Board', price_addon=2000)
        price = quote(room, date(2024, 6, 1), date(2024, 6, 4), package)
        self.assertEqual(price.nights, 3)
        self.assertEqual(price.room_subtotal, 30000)
        self.assertEqual(price.package_subtotal, 6000)
        self.assertEqual(price.total, 36000)


class RoomAvailabilityTestCase(SimpleTestCase):
    """Half-open interval occupancy"""

    def setUp(self):
        self.availability = RoomAvailability([
            {'check_in_date': date(2024, 6, 1), 'check_out_date': date(2024, 6, 5), 'status': 'confirmed'},
            {'check_in_date': date(2024, 6, 10), 'check_out_date': date(2024, 6, 12), 'status': 'pending'},
            {'check_in_date': date(2024, 6, 20), 'check_out_date': date(2024, 6, 25), 'status': 'cancelled'},
        ])
        self.today = date(2024, 5, 20)

    def test_checkout_day_is_free(self):
        self.assertTrue(self.availability.is_date_booked(date(2024, 6, 1)))
        self.assertTrue(self.availability.is_date_booked(date(2024, 6, 4)))
        self.assertFalse(self.availability.is_date_booked(date(2024, 6, 5)))
        self.assertFalse(self.availability.is_date_booked(date(2024, 5, 31)))

    def test_cancelled_bookings_do_not_occupy(self):
        self.assertFalse(self.availability.is_date_booked(date(2024, 6, 21)))

    def test_check_in_selection(self):
        self.assertFalse(self.availability.is_date_selectable_as_check_in(date(2024, 5, 19), today=self.today))
        self.assertTrue(self.availability.is_date_selectable_as_check_in(date(2024, 5, 20), today=self.today))
        self.assertFalse(self.availability.is_date_selectable_as_check_in(date(2024, 6, 2), today=self.today))
        # same-day turnover
        self.assertTrue(self.availability.is_date_selectable_as_check_in(date(2024, 6, 5), today=self.today))

    def test_check_out_selection(self):
        check_in = date(2024, 6, 5)
        self.assertFalse(self.availability.is_date_selectable_as_check_out(check_in, check_in))
        self.assertFalse(self.availability.is_date_selectable_as_check_out(check_in, date(2024, 6, 4)))
        self.assertTrue(self.availability.is_date_selectable_as_check_out(check_in, date(2024, 6, 9)))
        # the calendar never offers a booked day, even as a check-out
        self.assertFalse(self.availability.is_date_selectable_as_check_out(check_in, date(2024, 6, 10)))
        # the range may not run through another booking
        self.assertFalse(self.availability.is_date_selectable_as_check_out(check_in, date(2024, 6, 11)))
        self.assertFalse(self.availability.is_date_selectable_as_check_out(check_in, date(2024, 6, 14)))

    def test_validate_range_reports_first_conflict(self):
        with self.assertRaises(OverlapError) as ctx:
            self.availability.validate_range(date(2024, 5, 30), date(2024, 6, 3))
        self.assertEqual(ctx.exception.conflicting_date, date(2024, 6, 1))
        self.assertEqual(ctx.exception.status_code, status.HTTP_409_CONFLICT)

        self.availability.validate_range(date(2024, 6, 5), date(2024, 6, 10))
        self.availability.validate_range(date(2024, 6, 20), date(2024, 6, 25))

    def test_validate_range_rejects_empty_stays(self):
        with self.assertRaises(ValidationError):
            self.availability.validate_range(date(2024, 7, 1), date(2024, 7, 1))
        with self.assertRaises(ValidationError):
            self.availability.validate_range(date(2024, 7, 2), date(2024, 7, 1))

    def test_booked_dates(self):
        self.assertEqual(
            self.availability.booked_dates(date(2024, 6, 3), date(2024, 6, 12)),
            [date(2024, 6, 3), date(2024, 6, 4), date(2024, 6, 10), date(2024, 6, 11)],
        )

    def test_unavailable_snapshot_fails_closed(self):
        snapshot = RoomAvailability.unavailable()
        for offset in range(0, 60, 7):
            day = self.today + timedelta(days=offset)
            self.assertFalse(snapshot.is_date_selectable_as_check_in(day, today=self.today))
            self.assertFalse(snapshot.is_date_selectable_as_check_out(day, day + timedelta(days=2)))
        with self.assertRaises(AvailabilityError):
            snapshot.validate_range(date(2024, 7, 1), date(2024, 7, 3))

    @mock.patch('hotel_booking.availability.active_bookings', side_effect=DatabaseError('connection lost'))
    def test_fetch_failure_fails_closed(self, _active_bookings):
        snapshot = load_room_availability(Room(pk=1, name='Any', price=1))
        self.assertTrue(snapshot.fetch_failed)
        self.assertFalse(snapshot.is_date_selectable_as_check_in(date(2030, 1, 1), today=self.today))


class AmenitiesTestCase(SimpleTestCase):

    def test_list(self):
        self.assertEqual(parse_amenities(['WiFi', ' Pool ', 'WiFi', '']), ['WiFi', 'Pool'])

    def test_json_string(self):
        self.assertEqual(parse_amenities('["WiFi", "Mini Bar"]'), ['WiFi', 'Mini Bar'])

    def test_comma_string(self):
        self.assertEqual(parse_amenities('WiFi, Mini Bar ,Balcony'), ['WiFi', 'Mini Bar', 'Balcony'])
        self.assertEqual(parse_amenities('WiFi'), ['WiFi'])

    def test_empty_and_unknown(self):
        self.assertEqual(parse_amenities(None), [])
        self.assertEqual(parse_amenities('  '), [])
        self.assertEqual(parse_amenities({'wifi': True}), [])


class BookingServiceTestCase(TestCase):
    """Booking creation, repricing and cancellation against the database"""

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=10000, capacity=2)
        self.other_room = Room.objects.create(name='Garden Room', price=8000, capacity=2)
        self.package = Package.objects.create(name='Half Board', price_addon=2000)
        self.today = timezone.localdate()

    def test_total_is_room_plus_package_per_night(self):
        booking = make_booking(self.room, self.today + timedelta(days=1), self.today + timedelta(days=4), self.package)
        self.assertEqual(booking.total_price, 36000)
        self.assertEqual(booking.status, Booking.Status.PENDING)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.UNPAID)
        self.assertEqual(booking.booked_nights.count(), 3)

    def test_overlap_rejected_only_for_the_same_room(self):
        make_booking(self.room, date(2030, 7, 1), date(2030, 7, 10))

        with self.assertRaises(OverlapError):
            make_booking(self.room, date(2030, 7, 5), date(2030, 7, 8))

        booking = make_booking(self.other_room, date(2030, 7, 5), date(2030, 7, 8))
        self.assertEqual(booking.total_price, 24000)

    def test_active_bookings_stay_disjoint(self):
        stays = [
            (date(2030, 8, 1), date(2030, 8, 4)),
            (date(2030, 8, 4), date(2030, 8, 6)),
            (date(2030, 8, 3), date(2030, 8, 5)),
            (date(2030, 7, 28), date(2030, 8, 2)),
            (date(2030, 8, 6), date(2030, 8, 9)),
        ]
        for check_in, check_out in stays:
            try:
                make_booking(self.room, check_in, check_out)
            except OverlapError:
                pass

        bookings = list(Booking.objects.filter(room=self.room).exclude(status=Booking.Status.CANCELLED))
        self.assertEqual(len(bookings), 3)
        for a in bookings:
            for b in bookings:
                if a.pk != b.pk:
                    self.assertTrue(a.check_out_date <= b.check_in_date or b.check_out_date <= a.check_in_date)

    def test_stale_snapshot_is_caught_by_the_night_ledger(self):
        make_booking(self.room, date(2030, 9, 1), date(2030, 9, 5))

        # The in-transaction check sees a snapshot taken before the other booking committed
        with mock.patch('hotel_booking.services.active_bookings', return_value=[]):
            with self.assertRaises(StaleAvailabilityError) as ctx:
                make_booking(self.room, date(2030, 9, 3), date(2030, 9, 6), email='late@example.com')

        self.assertEqual(ctx.exception.conflicting_date, date(2030, 9, 3))
        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)
        self.assertEqual(RoomNight.objects.filter(room=self.room).count(), 4)

    def test_cancellation_frees_the_nights(self):
        booking = make_booking(self.room, date(2030, 10, 1), date(2030, 10, 4))
        services.confirm_payment(booking, payment_id='pay_1')

        booking = services.cancel_booking(booking)
        self.assertEqual(booking.status, Booking.Status.CANCELLED)
        self.assertEqual(booking.payment_status, Booking.PaymentStatus.REFUNDED)
        self.assertFalse(RoomNight.objects.filter(booking=booking).exists())

        replacement = make_booking(self.room, date(2030, 10, 2), date(2030, 10, 3), email='next@example.com')
        self.assertEqual(replacement.status, Booking.Status.PENDING)

    def test_lifecycle_guards(self):
        booking = make_booking(self.room, date(2030, 11, 1), date(2030, 11, 2))
        with self.assertRaises(InvalidTransition):
            services.complete_booking(booking)

        services.confirm_payment(booking)
        booking = services.complete_booking(booking)
        self.assertEqual(booking.status, Booking.Status.COMPLETED)

        with self.assertRaises(InvalidTransition):
            services.cancel_booking(booking)

    def test_reschedule_reprices_and_moves_nights(self):
        booking = make_booking(self.room, date(2030, 12, 1), date(2030, 12, 3))
        booking = services.reschedule_booking(booking, room=self.other_room, check_out=date(2030, 12, 5),
                                              package=self.package)
        self.assertEqual(booking.room, self.other_room)
        self.assertEqual(booking.total_price, 4 * (8000 + 2000))
        self.assertEqual(
            set(RoomNight.objects.filter(booking=booking).values_list('room_id', flat=True)),
            {self.other_room.pk},
        )
        self.assertEqual(RoomNight.objects.filter(booking=booking).count(), 4)
        self.assertFalse(RoomNight.objects.filter(room=self.room).exists())

    def test_email_totals_match_the_stored_total(self):
        booking = make_booking(self.room, date(2031, 1, 1), date(2031, 1, 6), self.package)
        context = booking_email_context(booking)
        self.assertEqual(context['nights'], 5)
        self.assertEqual(context['total'], booking.total_price)

    def test_confirmation_and_receipt_emails(self):
        with self.captureOnCommitCallbacks(execute=True):
            booking = make_booking(self.room, date(2031, 2, 1), date(2031, 2, 3), self.package)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(booking.reference, mail.outbox[0].subject)
        self.assertIn('KES 24,000', mail.outbox[0].alternatives[0][0])

        with self.captureOnCommitCallbacks(execute=True):
            services.confirm_payment(booking, payment_id='pay_42')
        self.assertEqual(len(mail.outbox), 2)
        self.assertTrue(mail.outbox[1].subject.startswith('Payment Receipt'))
        self.assertIn('pay_42', mail.outbox[1].alternatives[0][0])

    def test_receipt_shows_the_charged_total_after_a_rate_change(self):
        booking = make_booking(self.room, date(2031, 3, 1), date(2031, 3, 3))
        self.assertEqual(booking.total_price, 20000)

        self.room.price = 15000
        self.room.save()

        with self.captureOnCommitCallbacks(execute=True):
            booking = services.confirm_payment(booking, payment_id='pay_7')
        html = mail.outbox[0].alternatives[0][0]
        self.assertIn('Amount paid: KES 20,000', html)
        self.assertIn('Total: KES 20,000', html)
        self.assertNotIn('KES 30,000', html)

        context = booking_email_context(booking)
        self.assertEqual(context['total'], 20000)
        self.assertFalse(context['itemized'])

    def test_repeated_client_token_inside_the_transaction(self):
        token = uuid.uuid4()
        first = make_booking(self.room, date(2031, 4, 1), date(2031, 4, 3), client_token=token)

        # both lookups miss, as for a retry racing the original request
        with mock.patch('hotel_booking.services._booking_for_token', return_value=None):
            again = make_booking(self.room, date(2031, 4, 10), date(2031, 4, 12), client_token=token)

        self.assertEqual(again.pk, first.pk)
        self.assertEqual(Booking.objects.filter(client_token=token).count(), 1)
        self.assertEqual(RoomNight.objects.filter(room=self.room).count(), 2)


class BookingAdminTestCase(TestCase):
    """Django admin changes keep the night ledger in step"""

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=10000, capacity=2)
        self.staff = User.objects.create_superuser('staff', 'staff@example.com', 'secret-password')
        self.client.force_login(self.staff)
        self.booking = make_booking(self.room, date(2031, 2, 1), date(2031, 2, 4))
        self.changelist = reverse('admin:hotel_booking_booking_changelist')

    def test_cancel_action_frees_the_nights(self):
        response = self.client.post(self.changelist, {
            'action': 'cancel_bookings',
            '_selected_action': [str(self.booking.pk)],
        })
        self.assertEqual(response.status_code, 302)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CANCELLED)
        self.assertFalse(RoomNight.objects.filter(booking=self.booking).exists())

        replacement = make_booking(self.room, date(2031, 2, 2), date(2031, 2, 3), email='next@example.com')
        self.assertEqual(replacement.status, Booking.Status.PENDING)

    def test_complete_action_respects_the_lifecycle(self):
        self.client.post(self.changelist, {
            'action': 'complete_bookings',
            '_selected_action': [str(self.booking.pk)],
        })
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)

    def test_change_form_cannot_edit_status_or_dates(self):
        url = reverse('admin:hotel_booking_booking_change', args=[self.booking.pk])
        response = self.client.post(url, {
            'guest_name': 'Renamed Guest',
            'guest_email': 'guest@example.com',
            'guest_phone': '',
            'adults': 1,
            'children': 0,
            'special_requests': '',
            'status': 'cancelled',
            'check_in_date': '2031-03-01',
            'check_out_date': '2031-03-05',
            '_save': 'Save',
        })
        self.assertEqual(response.status_code, 302)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.guest_name, 'Renamed Guest')
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.booking.check_in_date, date(2031, 2, 1))
        self.assertEqual(RoomNight.objects.filter(booking=self.booking).count(), 3)

    def test_bookings_and_nights_are_not_added_by_hand(self):
        self.assertEqual(self.client.get(reverse('admin:hotel_booking_booking_add')).status_code, 403)
        self.assertEqual(self.client.get(reverse('admin:hotel_booking_roomnight_add')).status_code, 403)


class RaceConditionTestCase(TransactionTestCase):
    """Concurrent booking creation for the same room and dates"""

    def setUp(self):
        self.room = Room.objects.create(name='Standard Room', price=10000, capacity=2)
        self.check_in = timezone.localdate() + timedelta(days=1)
        self.check_out = timezone.localdate() + timedelta(days=3)

    @skipUnless(connection.vendor == 'postgresql', 'needs row locks and concurrent writers')
    def test_concurrent_booking_attempts_race_condition(self):
        """Only one of several simultaneous requests for the same nights may succeed"""

        def create_booking(guest_email):
            try:
                serializer = BookingSerializer(data={
                    'room_id': self.room.id,
                    'guest_name': f'Test Guest {guest_email}',
                    'guest_email': guest_email,
                    'check_in_date': self.check_in,
                    'check_out_date': self.check_out,
                    'client_token': str(uuid.uuid4()),
                })
                if serializer.is_valid():
                    booking = serializer.save()
                    return {'success': True, 'booking_id': booking.id}
                return {'success': False, 'errors': serializer.errors}
            except OverlapError as e:
                return {'success': False, 'error': str(e)}
            finally:
                connection.close()

        num_attempts = 5
        results = []
        with ThreadPoolExecutor(max_workers=num_attempts) as executor:
            futures = [executor.submit(create_booking, f'test{i}@example.com') for i in range(num_attempts)]
            for future in as_completed(futures):
                results.append(future.result())

        successful_bookings = [r for r in results if r['success']]
        self.assertEqual(len(successful_bookings), 1,
                         f"Expected exactly 1 successful booking, got {len(successful_bookings)}")
        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)

    def test_ledger_rejects_a_second_writer(self):
        """The unique night constraint holds outside any test transaction"""
        make_booking(self.room, self.check_in, self.check_out)
        with mock.patch('hotel_booking.services.active_bookings', return_value=[]):
            with self.assertRaises(StaleAvailabilityError):
                make_booking(self.room, self.check_in, self.check_out, email='second@example.com')
        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)


class BookingConflictTestCase(APITestCase):
    """Test booking conflict scenarios"""

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=15000, capacity=2)
        self.today = timezone.localdate()

    def booking_data(self, check_in, check_out, **extra):
        data = {
            'room_id': self.room.id,
            'guest_name': 'Another Guest',
            'guest_email': 'another@example.com',
            'check_in_date': check_in,
            'check_out_date': check_out,
        }
        data.update(extra)
        return data

    def test_overlapping_date_booking_conflict(self):
        """Test that overlapping date bookings are rejected"""
        make_booking(self.room, self.today + timedelta(days=1), self.today + timedelta(days=5))

        overlap_scenarios = [
            (self.today, self.today + timedelta(days=3), 'starts before and overlaps'),
            (self.today + timedelta(days=2), self.today + timedelta(days=6), 'starts during existing booking'),
            (self.today + timedelta(days=2), self.today + timedelta(days=4), 'completely within existing booking'),
            (self.today, self.today + timedelta(days=6), 'completely encompasses existing booking'),
        ]

        for check_in, check_out, description in overlap_scenarios:
            with self.subTest(scenario=description):
                serializer = BookingSerializer(data=self.booking_data(check_in, check_out))
                self.assertFalse(serializer.is_valid())
                self.assertIn('Room is not available', str(serializer.errors))

    def test_non_overlapping_bookings_allowed(self):
        """Same-day turnover on either side of an existing booking is allowed"""
        make_booking(self.room, self.today + timedelta(days=5), self.today + timedelta(days=10))

        valid_scenarios = [
            (self.today + timedelta(days=1), self.today + timedelta(days=5), 'before existing booking'),
            (self.today + timedelta(days=10), self.today + timedelta(days=15), 'after existing booking'),
        ]

        for check_in, check_out, description in valid_scenarios:
            with self.subTest(scenario=description):
                serializer = BookingSerializer(data=self.booking_data(
                    check_in, check_out, guest_email=f'valid_{uuid.uuid4().hex[:8]}@example.com'))
                self.assertTrue(serializer.is_valid(), f"Serializer errors: {serializer.errors}")
                self.assertIsInstance(serializer.save(), Booking)

    def test_cancelled_booking_allows_overlap(self):
        """Test that cancelled bookings don't block new bookings"""
        services.cancel_booking(make_booking(self.room, self.today + timedelta(days=1), self.today + timedelta(days=5)))

        serializer = BookingSerializer(data=self.booking_data(self.today + timedelta(days=2), self.today + timedelta(days=4)))
        self.assertTrue(serializer.is_valid(), f"Serializer errors: {serializer.errors}")
        booking = serializer.save()
        self.assertEqual(booking.status, Booking.Status.PENDING)

    def test_invalid_ranges_and_past_dates(self):
        serializer = BookingSerializer(data=self.booking_data(self.today + timedelta(days=3), self.today + timedelta(days=3)))
        self.assertFalse(serializer.is_valid())
        self.assertIn('check_out must be after check_in', str(serializer.errors))

        serializer = BookingSerializer(data=self.booking_data(self.today - timedelta(days=2), self.today + timedelta(days=1)))
        self.assertFalse(serializer.is_valid())
        self.assertIn('past', str(serializer.errors))

    def test_capacity_is_enforced(self):
        serializer = BookingSerializer(data=self.booking_data(
            self.today + timedelta(days=1), self.today + timedelta(days=2), adults=2, children=1))
        self.assertFalse(serializer.is_valid())
        self.assertIn('sleeps at most 2 guests', str(serializer.errors))

    def test_create_booking_over_http(self):
        response = self.client.post('/api/bookings/', self.booking_data(
            self.today + timedelta(days=1), self.today + timedelta(days=3), guest_phone='+254700000000'), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data['total_price'], 30000)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['payment_status'], 'unpaid')
        self.assertEqual(response.data['nights'], 2)


class IdempotencyTestCase(APITestCase):
    """Test client token idempotency mechanism"""

    def setUp(self):
        self.room = Room.objects.create(name='Suite', price=25000, capacity=4)
        self.today = timezone.localdate()
        self.booking_data = {
            'room_id': self.room.id,
            'guest_name': 'Idempotency Test Guest',
            'guest_email': 'idempotency@example.com',
            'check_in_date': self.today + timedelta(days=1),
            'check_out_date': self.today + timedelta(days=3),
        }

    def test_duplicate_client_token_returns_same_booking(self):
        client_token = str(uuid.uuid4())

        serializer1 = BookingSerializer(data={**self.booking_data, 'client_token': client_token})
        self.assertTrue(serializer1.is_valid())
        booking1 = serializer1.save()

        serializer2 = BookingSerializer(data={**self.booking_data, 'client_token': client_token})
        self.assertTrue(serializer2.is_valid(), serializer2.errors)
        booking2 = serializer2.save()

        self.assertEqual(booking1.id, booking2.id)
        self.assertEqual(Booking.objects.filter(room=self.room).count(), 1)

    def test_different_client_tokens_create_separate_bookings(self):
        booking1 = BookingSerializer(data={**self.booking_data, 'client_token': str(uuid.uuid4())})
        self.assertTrue(booking1.is_valid())
        booking1 = booking1.save()

        booking2 = BookingSerializer(data={
            **self.booking_data,
            'check_in_date': self.today + timedelta(days=5),
            'check_out_date': self.today + timedelta(days=7),
            'client_token': str(uuid.uuid4()),
        })
        self.assertTrue(booking2.is_valid())
        booking2 = booking2.save()

        self.assertNotEqual(booking1.id, booking2.id)
        self.assertEqual(Booking.objects.filter(room=self.room).count(), 2)


class PaymentAndBookingStatusTestCase(APITestCase):
    """Test payment processing and booking status changes"""

    def setUp(self):
        self.room = Room.objects.create(name='Presidential Suite', price=50000, capacity=6)
        self.admin = HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        today = timezone.localdate()
        self.booking = make_booking(self.room, today + timedelta(days=1), today + timedelta(days=3),
                                    email='payment@example.com')

    def test_successful_payment_confirms_booking(self):
        url = f'/api/bookings/{self.booking.id}/confirm_payment/'
        response = self.client.post(url, {'success': True, 'payment_id': 'payment_12345'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['amount'], 100000)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.PAID)
        self.assertEqual(self.booking.payment_id, 'payment_12345')

    def test_failed_payment_keeps_booking_pending(self):
        url = f'/api/bookings/{self.booking.id}/confirm_payment/'
        response = self.client.post(url, {'success': False}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.booking.payment_status, Booking.PaymentStatus.UNPAID)

    def test_cancelled_booking_cannot_be_paid(self):
        services.cancel_booking(self.booking)
        response = self.client.post(f'/api/bookings/{self.booking.id}/confirm_payment/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_only_admins_cancel(self):
        url = f'/api/bookings/{self.booking.id}/'
        response = self.client.patch(url, {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)
        response = self.client.patch(url, {'status': 'cancelled'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cancelled')

    def test_admin_lists_bookings_with_pagination(self):
        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)
        response = self.client.get('/api/bookings/', {'limit': 5})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['room']['name'], 'Presidential Suite')

    def test_my_bookings_uses_the_signed_in_user(self):
        guest = HotelUser.objects.create(external_id='user_guest', email='payment@example.com')
        self.client.credentials(HTTP_X_USER_ID=guest.external_id)
        response = self.client.get('/api/bookings/my_bookings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

        self.client.credentials(HTTP_X_USER_ID='user_unknown')
        response = self.client.get('/api/bookings/my_bookings/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class BookingUpdateTestCase(APITestCase):
    """Test booking update scenarios"""

    def setUp(self):
        self.room1 = Room.objects.create(name='Room 501', price=10000, capacity=2)
        self.room2 = Room.objects.create(name='Room 502', price=15000, capacity=2)
        self.admin = HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)
        self.today = timezone.localdate()
        self.booking = make_booking(self.room1, self.today + timedelta(days=1), self.today + timedelta(days=3),
                                    email='update@example.com')

    def test_room_change_with_availability_check(self):
        response = self.client.patch(f'/api/bookings/{self.booking.id}/', {'room_id': self.room2.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['room']['id'], self.room2.id)
        # 2 nights * 15000
        self.assertEqual(response.data['total_price'], 30000)

    def test_date_change_with_conflict_check(self):
        make_booking(self.room1, self.today + timedelta(days=5), self.today + timedelta(days=8),
                     email='conflict@example.com')

        response = self.client.patch(f'/api/bookings/{self.booking.id}/', {
            'check_in_date': self.today + timedelta(days=4),
            'check_out_date': self.today + timedelta(days=6),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('Room is not available', str(response.data))

    def test_status_change_cannot_carry_other_fields(self):
        response = self.client.patch(f'/api/bookings/{self.booking.id}/', {
            'status': 'cancelled',
            'guest_phone': '+254722222222',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('guest_phone', str(response.data))
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.booking.guest_phone, '')

    def test_guest_details_edit_keeps_price(self):
        response = self.client.patch(f'/api/bookings/{self.booking.id}/', {'guest_phone': '+254711111111'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.guest_phone, '+254711111111')
        self.assertEqual(self.booking.total_price, 20000)


class ReservationFlowTestCase(APITestCase):
    """The room -> guest details -> payment wizard"""

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=10000, capacity=3)
        self.package = Package.objects.create(name='All Inclusive', price_addon=4000)
        self.today = timezone.localdate()
        self.check_in = self.today + timedelta(days=7)
        self.check_out = self.today + timedelta(days=10)
        response = self.client.post('/api/reservations/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.session_id = response.data['id']
        self.assertEqual(response.data['state'], 'selecting_room')

    def url(self, step):
        return f'/api/reservations/{self.session_id}/{step}/'

    def select(self, **extra):
        data = {
            'room_id': self.room.id,
            'package_id': self.package.id,
            'check_in_date': self.check_in,
            'check_out_date': self.check_out,
            'adults': 2,
        }
        data.update(extra)
        return self.client.post(self.url('select_room'), data, format='json')

    def guest_details(self):
        return self.client.post(self.url('guest_details'), {
            'guest_name': 'Amina Otieno',
            'guest_email': 'amina@example.com',
        }, format='json')

    def test_full_reservation(self):
        response = self.select()
        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertEqual(response.data['state'], 'entering_guest_details')
        self.assertEqual(response.data['quote']['total'], 42000)

        response = self.guest_details()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(response.data['state'], 'awaiting_payment')
        self.assertEqual(response.data['booking']['total_price'], 42000)
        self.assertEqual(response.data['booking']['status'], 'pending')

        response = self.client.post(self.url('pay'), {'success': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'confirmed')
        self.assertEqual(response.data['booking']['status'], 'confirmed')
        self.assertEqual(response.data['booking']['payment_status'], 'paid')

    def test_steps_cannot_be_skipped(self):
        response = self.guest_details()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        response = self.client.post(self.url('pay'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_selection_can_be_changed_before_guest_details(self):
        self.select()
        response = self.select(package_id=None)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['quote']['total'], 30000)

    def test_declined_payment_keeps_awaiting_payment(self):
        self.select()
        self.guest_details()
        response = self.client.post(self.url('pay'), {'success': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'awaiting_payment')

    def test_booked_dates_cannot_be_selected(self):
        make_booking(self.room, self.check_in + timedelta(days=1), self.check_out + timedelta(days=2))
        response = self.select()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        session = ReservationSession.objects.get(pk=self.session_id)
        self.assertEqual(session.state, ReservationSession.State.SELECTING_ROOM)

    def test_room_booked_between_steps_is_reported_as_just_booked(self):
        self.select()
        make_booking(self.room, self.check_in, self.check_out, email='faster@example.com')

        response = self.guest_details()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIn('just booked', str(response.data))

    def test_past_dates_cannot_be_selected(self):
        response = self.select(check_in_date=self.today - timedelta(days=1))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class FlowStateMachineTestCase(TestCase):

    def test_transitions(self):
        session = ReservationSession.objects.create()
        self.assertFalse(flow.can_advance(session, ReservationSession.State.AWAITING_PAYMENT))
        flow.advance(session, ReservationSession.State.ENTERING_GUEST_DETAILS)
        flow.advance(session, ReservationSession.State.SELECTING_ROOM)
        with self.assertRaises(InvalidTransition):
            flow.advance(session, ReservationSession.State.CONFIRMED)
        session.refresh_from_db()
        self.assertEqual(session.state, ReservationSession.State.SELECTING_ROOM)


class RoomApiTestCase(APITestCase):

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=12000, capacity=3,
                                        amenities='WiFi, Mini Bar')
        self.cheap_room = Room.objects.create(name='Standard Room', price=8000, capacity=2,
                                              amenities='["WiFi"]')
        self.admin = HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        self.today = timezone.localdate()

    def test_amenities_are_normalized_on_read(self):
        response = self.client.get(f'/api/rooms/{self.room.id}/')
        self.assertEqual(response.data['amenities'], ['WiFi', 'Mini Bar'])
        self.assertEqual(response.data['display_image_url'], '/static/images/room-placeholder.jpg')

    def test_search_excludes_booked_rooms(self):
        make_booking(self.room, self.today + timedelta(days=2), self.today + timedelta(days=4))
        response = self.client.get('/api/rooms/', {
            'check_in': (self.today + timedelta(days=3)).isoformat(),
            'check_out': (self.today + timedelta(days=5)).isoformat(),
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['id'] for r in response.data], [self.cheap_room.id])

        response = self.client.get('/api/rooms/', {'guests': 3})
        self.assertEqual([r['id'] for r in response.data], [self.room.id])

    def test_availability_lists_booked_dates(self):
        make_booking(self.room, self.today + timedelta(days=2), self.today + timedelta(days=4))
        response = self.client.get(f'/api/rooms/{self.room.id}/availability/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['booked_dates'],
                         [self.today + timedelta(days=2), self.today + timedelta(days=3)])

    @mock.patch('hotel_booking.views.load_room_availability', return_value=RoomAvailability.unavailable())
    def test_availability_fails_closed(self, _load):
        response = self.client.get(f'/api/rooms/{self.room.id}/availability/')
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)

    def test_availability_window_is_bounded(self):
        url = f'/api/rooms/{self.room.id}/availability/'
        bad_windows = [
            ({'start': '9999-12-31'}, 'start at the end of the calendar'),
            ({'start': '2030-01-01', 'end': '2032-01-01'}, 'longer than a year'),
            ({'start': '2030-01-10', 'end': '2030-01-10'}, 'empty'),
            ({'start': '2030-01-10', 'end': '2030-01-01'}, 'inverted'),
            ({'start': '2030-13-01'}, 'not a date'),
        ]
        for params, description in bad_windows:
            with self.subTest(window=description):
                response = self.client.get(url, params)
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.get(url, {'start': '2030-01-01', 'end': '2031-01-01'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_quote(self):
        package = Package.objects.create(name='Bed & Breakfast', price_addon=1000)
        response = self.client.get(f'/api/rooms/{self.room.id}/quote/', {
            'check_in': '2030-01-01', 'check_out': '2030-01-04', 'package_id': package.id,
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'nights': 3, 'room_subtotal': 36000, 'package_subtotal': 3000, 'total': 39000})

    def test_only_admins_manage_rooms(self):
        data = {'name': 'Garden Suite', 'price': 20000, 'capacity': 2, 'amenities': 'Garden, WiFi'}
        response = self.client.post('/api/rooms/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)
        response = self.client.post('/api/rooms/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED, response.data)
        self.assertEqual(Room.objects.get(pk=response.data['id']).amenities, ['Garden', 'WiFi'])

    def test_image_upload_stores_public_url(self):
        media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, media_root, ignore_errors=True)
        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)

        with override_settings(MEDIA_ROOT=media_root, MEDIA_URL='/media/'):
            upload = SimpleUploadedFile('room.jpg', b'not-really-a-jpeg', content_type='image/jpeg')
            response = self.client.post(f'/api/rooms/{self.room.id}/image/', {'image': upload}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_200_OK, response.data)
        self.assertTrue(response.data['image_url'].startswith('http://testserver/media/rooms/'))
        self.room.refresh_from_db()
        self.assertEqual(self.room.display_image_url, response.data['image_url'])


class DashboardTestCase(APITestCase):

    def setUp(self):
        self.room = Room.objects.create(name='Deluxe Room', price=10000, capacity=2)
        Package.objects.create(name='Half Board', price_addon=2500)
        self.admin = HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        self.today = timezone.localdate()

    def test_dashboard_stats(self):
        paid = make_booking(self.room, self.today - timedelta(days=2), self.today + timedelta(days=1))
        services.confirm_payment(paid)
        make_booking(self.room, self.today + timedelta(days=5), self.today + timedelta(days=6))

        data = stats.dashboard_stats(today=self.today)
        self.assertEqual(data['total_bookings'], 2)
        self.assertEqual(data['pending_bookings'], 1)
        self.assertEqual(data['room_count'], 1)
        self.assertEqual(data['package_count'], 1)
        self.assertEqual(data['total_revenue'], 30000)
        # three ledger nights in a 30 night window for one room
        self.assertEqual(data['occupancy_rate'], 10.0)
        self.assertEqual(data['booking_trend'], 100.0)
        self.assertEqual(len(data['recent_bookings']), 2)

    def test_revenue_series(self):
        booking = make_booking(self.room, self.today + timedelta(days=1), self.today + timedelta(days=2))
        services.confirm_payment(booking)

        week = stats.revenue_series('week', today=self.today)
        self.assertEqual(len(week), 7)
        self.assertEqual(week[-1]['revenue'], 10000)
        self.assertEqual(sum(point['revenue'] for point in week), 10000)

        year = stats.revenue_series('year', today=self.today)
        self.assertEqual(len(year), 12)
        self.assertEqual(year[-1]['date'], self.today.replace(day=1).isoformat())
        self.assertEqual(year[-1]['revenue'], 10000)

        with self.assertRaises(ValueError):
            stats.revenue_series('decade')

    def test_dashboard_requires_admin(self):
        response = self.client.get('/api/admin/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

        self.client.credentials(HTTP_X_USER_ID=self.admin.external_id)
        response = self.client.get('/api/admin/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        response = self.client.get('/api/admin/revenue/', {'timeframe': 'month'})
        self.assertEqual(len(response.data['series']), 30)


class IdentityTestCase(APITestCase):

    webhook_headers = {
        'HTTP_SVIX_ID': 'msg_1',
        'HTTP_SVIX_TIMESTAMP': '1700000000',
        'HTTP_SVIX_SIGNATURE': 'v1,signature',
    }

    def test_user_role_defaults_to_user(self):
        response = self.client.get('/api/user-role/', {'userId': 'user_missing'})
        self.assertEqual(response.data, {'role': 'user'})

        HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        response = self.client.get('/api/user-role/', {'userId': 'user_admin'})
        self.assertEqual(response.data, {'role': 'admin'})

        response = self.client.get('/api/user-role/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(USER_WEBHOOK_SECRET='whsec_dGVzdA==')
    @mock.patch('hotel_booking.views.Webhook')
    def test_user_created_webhook(self, webhook):
        webhook.return_value.verify.return_value = {
            'type': 'user.created',
            'data': {
                'id': 'user_123',
                'email_addresses': [{'email_address': 'new@example.com'}],
                'public_metadata': {'role': 'admin'},
            },
        }
        response = self.client.post('/api/webhooks/users/', {'type': 'user.created'}, format='json',
                                    **self.webhook_headers)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        user = HotelUser.objects.get(external_id='user_123')
        self.assertEqual(user.email, 'new@example.com')
        self.assertTrue(user.is_admin)

    @override_settings(USER_WEBHOOK_SECRET='whsec_dGVzdA==')
    @mock.patch('hotel_booking.views.Webhook')
    def test_webhook_rejects_bad_signatures(self, webhook):
        webhook.return_value.verify.side_effect = WebhookVerificationError('bad signature')
        response = self.client.post('/api/webhooks/users/', {}, format='json', **self.webhook_headers)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post('/api/webhooks/users/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(HotelUser.objects.exists())

    def test_admin_changes_roles(self):
        admin = HotelUser.objects.create(external_id='user_admin', email='admin@example.com', role='admin')
        guest = HotelUser.objects.create(external_id='user_guest', email='guest@example.com')

        self.client.credentials(HTTP_X_USER_ID=guest.external_id)
        response = self.client.get('/api/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.credentials(HTTP_X_USER_ID=admin.external_id)
        response = self.client.patch(f'/api/users/{guest.id}/', {'role': 'admin'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        guest.refresh_from_db()
        self.assertEqual(guest.role, HotelUser.Role.ADMIN)


class ContactTestCase(APITestCase):

    def test_contact_message_is_relayed(self):
        response = self.client.post('/api/contact/', {
            'name': 'Jane Doe',
            'email': 'jane@example.com',
            'subject': 'Airport transfer',
            'message': 'Do you offer airport pickups?',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Contact Form: Airport transfer')
        self.assertEqual(mail.outbox[0].reply_to, ['jane@example.com'])

    @mock.patch('hotel_booking.emails.EmailMultiAlternatives.send', side_effect=OSError('relay down'))
    def test_relay_failure_is_reported(self, _send):
        response = self.client.post('/api/contact/', {
            'name': 'Jane Doe',
            'email': 'jane@example.com',
            'subject': 'Hello',
            'message': 'Hi',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
