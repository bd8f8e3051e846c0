import logging
from datetime import datetime, timedelta

from django.conf import settings
from django.db.models import Exists, OuterRef, Q
from django.http import JsonResponse
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view, authentication_classes, permission_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from svix.webhooks import Webhook, WebhookVerificationError

from . import flow, pricing, services, stats
from .availability import load_room_availability
from .emails import send_contact_message
from .exceptions import AvailabilityError
from .models import Booking, HotelUser, Package, ReservationSession, Room
from .permissions import IsAdminRole, ReadOnlyOrAdmin
from .serializers import (
    BookingSerializer,
    BookingStatusSerializer,
    ContactSerializer,
    DashboardBookingSerializer,
    GuestDetailsSerializer,
    HotelUserSerializer,
    PackageSerializer,
    PaymentSerializer,
    QuoteQuerySerializer,
    ReservationSessionSerializer,
    RoomSerializer,
    SelectRoomSerializer,
)
from .storage import store_room_image

logger = logging.getLogger(__name__)

AVAILABILITY_WINDOW_DAYS = 180
MAX_AVAILABILITY_WINDOW_DAYS = 366


def welcome(request):
    return JsonResponse({"message": f"Welcome to {settings.HOTEL_NAME}"})


def health_check(request):
    return JsonResponse({"status": "ok"})


def parse_date(value):
    return datetime.strptime(value, '%Y-%m-%d').date()


def available_rooms_qs(check_in, check_out, max_price=None, guests=None):
    overlap = Exists(
        Booking.objects.filter(
            room=OuterRef('pk'),
            check_in_date__lt=check_out,
            check_out_date__gt=check_in,
        ).exclude(status=Booking.Status.CANCELLED)
    )
    qs = Room.objects.annotate(has_overlap=overlap).filter(has_overlap=False)
    if max_price is not None:
        qs = qs.filter(price__lte=max_price)
    if guests is not None:
        qs = qs.filter(capacity__gte=guests)
    return qs


class BookingPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = 'limit'
    max_page_size = 100


class RoomViewSet(viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    permission_classes = [ReadOnlyOrAdmin]

    def list(self, request):
        """Search available rooms with filters"""
        check_in_str = request.query_params.get('check_in')
        check_out_str = request.query_params.get('check_out')
        max_price = request.query_params.get('max_price')
        guests = request.query_params.get('guests')

        try:
            max_price = int(max_price) if max_price else None
            guests = int(guests) if guests else None
        except ValueError:
            return Response({'error': 'max_price and guests must be whole numbers'},
                            status=status.HTTP_400_BAD_REQUEST)

        if check_in_str and check_out_str:
            try:
                check_in = parse_date(check_in_str)
                check_out = parse_date(check_out_str)
            except ValueError:
                return Response({'error': 'Invalid date format. Use YYYY-MM-DD'},
                                status=status.HTTP_400_BAD_REQUEST)
            if check_out <= check_in:
                return Response({'error': 'check_out must be after check_in'},
                                status=status.HTTP_400_BAD_REQUEST)
            rooms = available_rooms_qs(check_in, check_out, max_price, guests)
        else:
            rooms = self.get_queryset()
            if max_price is not None:
                rooms = rooms.filter(price__lte=max_price)
            if guests is not None:
                rooms = rooms.filter(capacity__gte=guests)

        serializer = self.get_serializer(rooms, many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['get'])
    def availability(self, request, pk=None):
        """Booked nights of a room, for disabling calendar dates"""
        room = self.get_object()
        try:
            start = parse_date(request.query_params['start']) if 'start' in request.query_params else timezone.localdate()
            end = (parse_date(request.query_params['end']) if 'end' in request.query_params
                   else start + timedelta(days=AVAILABILITY_WINDOW_DAYS))
        except ValueError:
            return Response({'error': 'Invalid date format. Use YYYY-MM-DD'},
                            status=status.HTTP_400_BAD_REQUEST)
        except OverflowError:
            return Response({'error': 'start is too far in the future'},
                            status=status.HTTP_400_BAD_REQUEST)
        if end <= start:
            return Response({'error': 'end must be after start'},
                            status=status.HTTP_400_BAD_REQUEST)
        if (end - start).days > MAX_AVAILABILITY_WINDOW_DAYS:
            return Response({'error': f'The window may span at most {MAX_AVAILABILITY_WINDOW_DAYS} days'},
                            status=status.HTTP_400_BAD_REQUEST)

        snapshot = load_room_availability(room)
        if snapshot.fetch_failed:
            raise AvailabilityError()

        return Response({
            'room_id': room.pk,
            'start': start,
            'end': end,
            'bookings': [
                {'check_in_date': check_in, 'check_out_date': check_out}
                for check_in, check_out in snapshot.intervals
            ],
            'booked_dates': snapshot.booked_dates(start, end),
        })

    @action(detail=True, methods=['get'])
    def quote(self, request, pk=None):
        room = self.get_object()
        query = QuoteQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data
        price = pricing.quote(room, data['check_in'], data['check_out'], data.get('package'))
        return Response(price._asdict())

    @action(detail=True, methods=['post'], parser_classes=[MultiPartParser, FormParser])
    def image(self, request, pk=None):
        room = self.get_object()
        upload = request.FILES.get('image')
        if upload is None:
            return Response({'image': 'No file was uploaded.'}, status=status.HTTP_400_BAD_REQUEST)
        room.image_url = store_room_image(upload, request)
        room.save(update_fields=['image_url', 'updated_at'])
        return Response(self.get_serializer(room).data)


class PackageViewSet(viewsets.ModelViewSet):
    queryset = Package.objects.all()
    serializer_class = PackageSerializer
    permission_classes = [ReadOnlyOrAdmin]


class BookingViewSet(viewsets.ModelViewSet):
    queryset = Booking.objects.select_related('room', 'package')
    serializer_class = BookingSerializer
    pagination_class = BookingPagination

    def get_permissions(self):
        if self.action in ('create', 'retrieve', 'confirm_payment'):
            return [AllowAny()]
        if self.action == 'my_bookings':
            return [IsAuthenticated()]
        return [IsAdminRole()]

    def get_queryset(self):
        qs = super().get_queryset()
        booking_status = self.request.query_params.get('status')
        if self.action == 'list' and booking_status:
            qs = qs.filter(status=booking_status)
        return qs

    @action(detail=False, methods=['get'])
    def by_email(self, request):
        """Get bookings by guest email"""
        email = request.query_params.get('email')
        if not email:
            return Response({'error': 'Email parameter is required'},
                            status=status.HTTP_400_BAD_REQUEST)

        bookings = self.get_queryset().filter(guest_email__iexact=email)
        serializer = self.get_serializer(bookings, many=True)
        return Response(serializer.data)

    @action(detail=False, methods=['get'])
    def my_bookings(self, request):
        """Bookings made with the signed-in user's email"""
        bookings = self.get_queryset().filter(guest_email__iexact=request.user.email)
        serializer = self.get_serializer(bookings, many=True)
        return Response(serializer.data)

    def update(self, request, *args, **kwargs):
        """Status changes go through the booking lifecycle; other fields are a staff edit."""
        booking = self.get_object()

        if 'status' in request.data:
            others = sorted(set(request.data) - {'status'})
            if others:
                return Response({'error': f"Change status on its own; also got {', '.join(others)}"},
                                status=status.HTTP_400_BAD_REQUEST)
            status_change = BookingStatusSerializer(data={'status': request.data['status']})
            status_change.is_valid(raise_exception=True)
            if status_change.validated_data['status'] == Booking.Status.CANCELLED:
                booking = services.cancel_booking(booking)
            else:
                booking = services.complete_booking(booking)
            return Response(self.get_serializer(booking).data)

        serializer = self.get_serializer(booking, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        booking = services.cancel_booking(self.get_object())
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        booking = services.complete_booking(self.get_object())
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def confirm_payment(self, request, pk=None):
        """
        Record the payment result for a booking.

        Payment is simulated: the caller reports ``success`` and there is no
        gateway callback to verify it against. A real gateway must confirm
        through a signed server-to-server callback instead.
        """
        payment = PaymentSerializer(data=request.data)
        payment.is_valid(raise_exception=True)
        booking = services.confirm_payment(
            self.get_object(),
            success=payment.validated_data['success'],
            payment_id=payment.validated_data.get('payment_id') or None,
        )
        return Response({
            'booking_id': booking.id,
            'status': booking.status,
            'payment_status': booking.payment_status,
            'payment_id': booking.payment_id,
            'amount': booking.total_price,
        })


class ReservationSessionViewSet(mixins.CreateModelMixin,
                                mixins.RetrieveModelMixin,
                                viewsets.GenericViewSet):
    """The guest-facing reservation wizard"""
    queryset = ReservationSession.objects.select_related('room', 'package', 'booking')
    serializer_class = ReservationSessionSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        session = ReservationSession.objects.create()
        return Response(self.get_serializer(session).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def select_room(self, request, pk=None):
        session = self.get_object()
        selection = SelectRoomSerializer(data=request.data)
        selection.is_valid(raise_exception=True)
        data = selection.validated_data
        flow.select_room(
            session,
            room=data['room'],
            check_in=data['check_in_date'],
            check_out=data['check_out_date'],
            package=data.get('package'),
            adults=data['adults'],
            children=data['children'],
        )
        return Response(self.get_serializer(session).data)

    @action(detail=True, methods=['post'])
    def guest_details(self, request, pk=None):
        session = self.get_object()
        details = GuestDetailsSerializer(data=request.data)
        details.is_valid(raise_exception=True)
        flow.submit_guest_details(session, **details.validated_data)
        return Response(self.get_serializer(session).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def pay(self, request, pk=None):
        session = self.get_object()
        payment = PaymentSerializer(data=request.data)
        payment.is_valid(raise_exception=True)
        flow.pay(session, success=payment.validated_data['success'],
                 payment_id=payment.validated_data.get('payment_id') or None)
        return Response(self.get_serializer(session).data)


class DashboardView(APIView):
    permission_classes = [IsAdminRole]

    def get(self, request):
        data = stats.dashboard_stats()
        data['recent_bookings'] = DashboardBookingSerializer(data['recent_bookings'], many=True).data
        return Response(data)


class RevenueView(APIView):
    permission_classes = [IsAdminRole]

    def get(self, request):
        timeframe = request.query_params.get('timeframe', 'week')
        if timeframe not in stats.TIMEFRAMES:
            return Response({'error': f"timeframe must be one of {', '.join(stats.TIMEFRAMES)}"},
                            status=status.HTTP_400_BAD_REQUEST)
        return Response({'timeframe': timeframe, 'series': stats.revenue_series(timeframe)})


class HotelUserViewSet(mixins.ListModelMixin,
                       mixins.RetrieveModelMixin,
                       mixins.UpdateModelMixin,
                       viewsets.GenericViewSet):
    queryset = HotelUser.objects.all()
    serializer_class = HotelUserSerializer
    permission_classes = [IsAdminRole]

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get('search')
        if search:
            qs = qs.filter(Q(email__icontains=search) | Q(external_id__icontains=search))
        return qs


class ContactView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = ContactSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        if not send_contact_message(**serializer.validated_data):
            return Response({'success': False, 'error': 'Failed to send message'},
                            status=status.HTTP_502_BAD_GATEWAY)
        return Response({'success': True, 'message': 'Message sent successfully'})


@api_view(['GET'])
@permission_classes([AllowAny])
def user_role(request):
    user_id = request.query_params.get('userId')
    if not user_id:
        return Response({'error': 'User ID required'}, status=status.HTTP_400_BAD_REQUEST)
    user = HotelUser.objects.filter(external_id=user_id).first()
    # Users the identity provider has not synced yet are plain users
    return Response({'role': user.role if user else HotelUser.Role.USER})


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def user_webhook(request):
    """Mirror users created in the identity provider, verified with svix"""
    headers = {name: request.headers.get(name) for name in ('svix-id', 'svix-timestamp', 'svix-signature')}
    if not all(headers.values()):
        return Response({'error': 'Missing svix headers'}, status=status.HTTP_400_BAD_REQUEST)
    if not settings.USER_WEBHOOK_SECRET:
        logger.error("USER_WEBHOOK_SECRET is not configured; rejecting user webhook")
        return Response({'error': 'Webhook not configured'}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    try:
        event = Webhook(settings.USER_WEBHOOK_SECRET).verify(request.body, headers)
    except WebhookVerificationError:
        logger.warning("Rejected user webhook %s: bad signature", headers['svix-id'])
        return Response({'error': 'Error verifying webhook'}, status=status.HTTP_400_BAD_REQUEST)

    if event.get('type') == 'user.created':
        data = event.get('data') or {}
        addresses = data.get('email_addresses') or []
        email = addresses[0].get('email_address', '') if addresses else ''
        role = (data.get('public_metadata') or {}).get('role', HotelUser.Role.USER)
        if role not in HotelUser.Role.values:
            role = HotelUser.Role.USER
        if data.get('id') and email:
            HotelUser.objects.update_or_create(
                external_id=data['id'], defaults={'email': email, 'role': role})
            logger.info("User created: %s, %s, role: %s", data['id'], email, role)

    return Response({'message': 'Webhook processed successfully'})
