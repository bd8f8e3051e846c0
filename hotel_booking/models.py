import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


class Room(models.Model):
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    price = models.PositiveIntegerField(validators=[MinValueValidator(0)])  # whole KES per night
    capacity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    amenities = models.JSONField(default=list, blank=True)
    image_url = models.URLField(max_length=500, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['price', 'name']

    def __str__(self):
        return self.name

    @property
    def display_image_url(self):
        return self.image_url or settings.ROOM_PLACEHOLDER_IMAGE


class Package(models.Model):
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True)
    price_addon = models.PositiveIntegerField(default=0)  # per night
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['price_addon', 'name']

    def __str__(self):
        return self.name


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        CANCELLED = "cancelled"
        COMPLETED = "completed"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid"
        PAID = "paid"
        REFUNDED = "refunded"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name="bookings")
    package = models.ForeignKey(Package, on_delete=models.SET_NULL, null=True, blank=True, related_name="bookings")
    guest_name = models.CharField(max_length=150)
    guest_email = models.EmailField()
    guest_phone = models.CharField(max_length=50, blank=True)
    check_in_date = models.DateField()
    check_out_date = models.DateField()  # exclusive
    adults = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    children = models.PositiveIntegerField(default=0)
    special_requests = models.TextField(blank=True)
    total_price = models.PositiveIntegerField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID)
    payment_id = models.CharField(max_length=100, blank=True)
    client_token = models.UUIDField(null=True, blank=True, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['room', 'check_in_date', 'check_out_date'], name='booking_room_dates_idx'),
            models.Index(fields=['status'], name='booking_status_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(check_out_date__gt=models.F('check_in_date')),
                name='booking_check_out_after_check_in',
            ),
        ]

    def __str__(self):
        return f"{self.guest_name} - {self.room} ({self.check_in_date} to {self.check_out_date})"

    @property
    def nights(self):
        return (self.check_out_date - self.check_in_date).days

    @property
    def reference(self):
        return str(self.id)[:8].upper()


class RoomNight(models.Model):
    """One occupied night of a room.

    Rows mirror the half-open ``[check_in_date, check_out_date)`` range of every
    non-cancelled booking. The unique ``(room, night)`` constraint makes the
    database reject the second of two overlapping bookings even when both passed
    the availability check.
    """
    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name="booked_nights")
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="booked_nights")
    night = models.DateField()

    class Meta:
        ordering = ['room', 'night']
        constraints = [
            models.UniqueConstraint(fields=['room', 'night'], name='unique_room_night'),
        ]

    def __str__(self):
        return f"{self.room} {self.night}"


class ReservationSession(models.Model):
    class State(models.TextChoices):
        SELECTING_ROOM = "selecting_room"
        ENTERING_GUEST_DETAILS = "entering_guest_details"
        AWAITING_PAYMENT = "awaiting_payment"
        CONFIRMED = "confirmed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    state = models.CharField(max_length=30, choices=State.choices, default=State.SELECTING_ROOM)
    room = models.ForeignKey(Room, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    package = models.ForeignKey(Package, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    check_in_date = models.DateField(null=True, blank=True)
    check_out_date = models.DateField(null=True, blank=True)
    adults = models.PositiveIntegerField(default=1)
    children = models.PositiveIntegerField(default=0)
    booking = models.OneToOneField(Booking, on_delete=models.SET_NULL, null=True, blank=True, related_name="session")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Reservation {self.id} ({self.state})"


class HotelUser(models.Model):
    """A user known to the external identity provider."""

    class Role(models.TextChoices):
        USER = "user"
        ADMIN = "admin"

    external_id = models.CharField(max_length=100, unique=True)
    email = models.EmailField()
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.USER)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.email} ({self.role})"

    @property
    def is_authenticated(self):
        return True

    @property
    def is_admin(self):
        return self.role == self.Role.ADMIN
