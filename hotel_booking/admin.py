from django.contrib import admin, messages

from . import services
from .exceptions import InvalidTransition
from .models import Booking, HotelUser, Package, ReservationSession, Room, RoomNight


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ('name', 'price', 'capacity', 'updated_at')
    search_fields = ('name',)


@admin.register(Package)
class PackageAdmin(admin.ModelAdmin):
    list_display = ('name', 'price_addon')


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    """
    Guest details are editable here. Status, room, dates and package change
    only through the actions below or the API, which keep the night ledger
    in step.
    """
    list_display = ('reference', 'guest_name', 'room', 'check_in_date', 'check_out_date',
                    'total_price', 'status', 'payment_status', 'created_at')
    list_filter = ('status', 'payment_status', 'room')
    search_fields = ('guest_name', 'guest_email', 'id')
    readonly_fields = ('room', 'package', 'check_in_date', 'check_out_date', 'status', 'payment_status',
                       'payment_id', 'total_price', 'client_token', 'created_at', 'updated_at')
    actions = ['cancel_bookings', 'complete_bookings']

    def has_add_permission(self, request):
        return False

    def _apply(self, request, queryset, change, verb):
        done = 0
        for booking in queryset:
            try:
                change(booking)
            except InvalidTransition as exc:
                self.message_user(request, f"{booking.reference}: {exc.detail}", messages.ERROR)
            else:
                done += 1
        if done:
            self.message_user(request, f"{verb} {done} booking(s).", messages.SUCCESS)

    @admin.action(description="Cancel selected bookings")
    def cancel_bookings(self, request, queryset):
        self._apply(request, queryset, services.cancel_booking, "Cancelled")

    @admin.action(description="Mark selected bookings as completed")
    def complete_bookings(self, request, queryset):
        self._apply(request, queryset, services.complete_booking, "Completed")


@admin.register(RoomNight)
class RoomNightAdmin(admin.ModelAdmin):
    list_display = ('room', 'night', 'booking')
    list_filter = ('room',)

    # ledger rows are written by the booking services only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ReservationSession)
class ReservationSessionAdmin(admin.ModelAdmin):
    list_display = ('id', 'state', 'room', 'check_in_date', 'check_out_date', 'booking')
    list_filter = ('state',)


@admin.register(HotelUser)
class HotelUserAdmin(admin.ModelAdmin):
    list_display = ('email', 'external_id', 'role', 'created_at')
    list_filter = ('role',)
