from django.utils import timezone
from rest_framework import serializers

from . import services
from .availability import RoomAvailability, active_bookings
from .models import Booking, HotelUser, Package, ReservationSession, Room
from .pricing import quote
from .utils import format_currency, parse_amenities


class AmenitiesField(serializers.Field):
    """Accepts a list, a JSON list or a comma separated string; always returns a list."""

    def to_representation(self, value):
        return parse_amenities(value)

    def to_internal_value(self, data):
        if not isinstance(data, (str, list, tuple)):
            raise serializers.ValidationError("Amenities must be a list or a comma separated string.")
        return parse_amenities(data)


class RoomSerializer(serializers.ModelSerializer):
    amenities = AmenitiesField(required=False)
    display_image_url = serializers.CharField(read_only=True)

    class Meta:
        model = Room
        fields = '__all__'

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['price_display'] = format_currency(instance.price)
        return data

    def validate_name(self, value):
        if len(value.strip()) < 2:
            raise serializers.ValidationError("Name must be at least 2 characters.")
        return value

    def validate_price(self, value):
        if value <= 0:
            raise serializers.ValidationError("Price must be a positive number.")
        return value


class PackageSerializer(serializers.ModelSerializer):

    class Meta:
        model = Package
        fields = '__all__'

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['price_addon_display'] = format_currency(instance.price_addon)
        return data


class RoomSummarySerializer(serializers.ModelSerializer):

    class Meta:
        model = Room
        fields = ['id', 'name', 'price', 'display_image_url']


class PackageSummarySerializer(serializers.ModelSerializer):

    class Meta:
        model = Package
        fields = ['id', 'name', 'price_addon']


class BookingSerializer(serializers.ModelSerializer):
    room_id = serializers.PrimaryKeyRelatedField(source='room', queryset=Room.objects.all())
    package_id = serializers.PrimaryKeyRelatedField(
        source='package', queryset=Package.objects.all(), required=False, allow_null=True)
    room = RoomSummarySerializer(read_only=True)
    package = PackageSummarySerializer(read_only=True)
    client_token = serializers.UUIDField(write_only=True, required=False)
    nights = serializers.IntegerField(read_only=True)
    reference = serializers.CharField(read_only=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'reference', 'room_id', 'room', 'package_id', 'package',
            'guest_name', 'guest_email', 'guest_phone', 'check_in_date', 'check_out_date',
            'adults', 'children', 'special_requests', 'nights', 'total_price',
            'status', 'payment_status', 'payment_id', 'client_token', 'created_at', 'updated_at',
        ]
        read_only_fields = ['total_price', 'status', 'payment_status', 'payment_id', 'created_at', 'updated_at']

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['total_display'] = format_currency(instance.total_price)
        return data

    def validate_guest_name(self, value):
        if len(value.strip()) < 2:
            raise serializers.ValidationError("Name must be at least 2 characters.")
        return value

    def validate(self, data):
        room = data.get('room')
        check_in = data.get('check_in_date')
        check_out = data.get('check_out_date')

        # For updates, fall back to the current values
        if self.instance:
            room = room or self.instance.room
            check_in = check_in or self.instance.check_in_date
            check_out = check_out or self.instance.check_out_date

        if check_in and check_out and check_out <= check_in:
            raise serializers.ValidationError("check_out must be after check_in")

        adults = data.get('adults', self.instance.adults if self.instance else 1)
        children = data.get('children', self.instance.children if self.instance else 0)
        if room and adults + children > room.capacity:
            raise serializers.ValidationError(f"{room.name} sleeps at most {room.capacity} guests.")

        if not self.instance:
            # A repeated client_token returns the original booking in create()
            token = data.get('client_token')
            if token is not None and Booking.objects.filter(client_token=token).exists():
                return data
            RoomAvailability(active_bookings(room)).validate_range(check_in, check_out)
            if check_in < timezone.localdate():
                raise serializers.ValidationError("Check-in date cannot be in the past.")

        elif data.keys() & {'room', 'check_in_date', 'check_out_date'}:
            RoomAvailability(active_bookings(room, exclude=self.instance)).validate_range(check_in, check_out)

        return data

    def create(self, validated):
        return services.create_booking(
            room=validated['room'],
            package=validated.get('package'),
            guest_name=validated['guest_name'],
            guest_email=validated['guest_email'],
            guest_phone=validated.get('guest_phone', ''),
            check_in=validated['check_in_date'],
            check_out=validated['check_out_date'],
            adults=validated.get('adults', 1),
            children=validated.get('children', 0),
            special_requests=validated.get('special_requests', ''),
            client_token=validated.get('client_token'),
        )

    def update(self, instance, validated_data):
        """Admin edit: guest details in place, room, dates and package through a reschedule."""
        validated_data.pop('client_token', None)
        schedule = {}
        for field, arg in (('room', 'room'), ('check_in_date', 'check_in'), ('check_out_date', 'check_out')):
            if field in validated_data:
                schedule[arg] = validated_data.pop(field)
        if 'package' in validated_data:
            schedule['package'] = validated_data.pop('package')

        if schedule:
            instance = services.reschedule_booking(instance, **schedule)

        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()
        return instance


class BookingStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[Booking.Status.CANCELLED, Booking.Status.COMPLETED])


class PaymentSerializer(serializers.Serializer):
    success = serializers.BooleanField(default=True)
    payment_id = serializers.CharField(required=False, allow_blank=True, max_length=100)


class QuoteQuerySerializer(serializers.Serializer):
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    package_id = serializers.PrimaryKeyRelatedField(
        source='package', queryset=Package.objects.all(), required=False, allow_null=True)


class SelectRoomSerializer(serializers.Serializer):
    room_id = serializers.PrimaryKeyRelatedField(source='room', queryset=Room.objects.all())
    package_id = serializers.PrimaryKeyRelatedField(
        source='package', queryset=Package.objects.all(), required=False, allow_null=True)
    check_in_date = serializers.DateField()
    check_out_date = serializers.DateField()
    adults = serializers.IntegerField(min_value=1, default=1)
    children = serializers.IntegerField(min_value=0, default=0)


class GuestDetailsSerializer(serializers.Serializer):
    guest_name = serializers.CharField(min_length=2, max_length=150)
    guest_email = serializers.EmailField()
    guest_phone = serializers.CharField(required=False, allow_blank=True, max_length=50)
    special_requests = serializers.CharField(required=False, allow_blank=True)


class ReservationSessionSerializer(serializers.ModelSerializer):
    room = RoomSummarySerializer(read_only=True)
    package = PackageSummarySerializer(read_only=True)
    booking = BookingSerializer(read_only=True)
    quote = serializers.SerializerMethodField()

    class Meta:
        model = ReservationSession
        fields = [
            'id', 'state', 'room', 'package', 'check_in_date', 'check_out_date',
            'adults', 'children', 'quote', 'booking', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_quote(self, obj):
        if obj.room is None or obj.check_in_date is None or obj.check_out_date is None:
            return None
        return quote(obj.room, obj.check_in_date, obj.check_out_date, obj.package)._asdict()


class ContactSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    phone = serializers.CharField(required=False, allow_blank=True, max_length=50)
    subject = serializers.CharField(max_length=200)
    message = serializers.CharField()


class HotelUserSerializer(serializers.ModelSerializer):

    class Meta:
        model = HotelUser
        fields = ['id', 'external_id', 'email', 'role', 'created_at']
        read_only_fields = ['id', 'external_id', 'email', 'created_at']


class DashboardBookingSerializer(serializers.ModelSerializer):
    room_name = serializers.CharField(source='room.name', read_only=True)
    package_name = serializers.CharField(source='package.name', read_only=True, allow_null=True)

    class Meta:
        model = Booking
        fields = [
            'id', 'guest_name', 'check_in_date', 'check_out_date', 'total_price',
            'status', 'payment_status', 'created_at', 'room_name', 'package_name',
        ]
