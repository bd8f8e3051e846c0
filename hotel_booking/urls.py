from django.urls import path
from rest_framework.routers import DefaultRouter

from hotel_booking.views import (
    BookingViewSet,
    ContactView,
    DashboardView,
    HotelUserViewSet,
    PackageViewSet,
    ReservationSessionViewSet,
    RevenueView,
    RoomViewSet,
    user_role,
    user_webhook,
)

router = DefaultRouter()
router.register(r'rooms', RoomViewSet)
router.register(r'packages', PackageViewSet)
router.register(r'bookings', BookingViewSet)
router.register(r'reservations', ReservationSessionViewSet)
router.register(r'users', HotelUserViewSet)

urlpatterns = router.urls + [
    path('admin/dashboard/', DashboardView.as_view(), name='admin-dashboard'),
    path('admin/revenue/', RevenueView.as_view(), name='admin-revenue'),
    path('contact/', ContactView.as_view(), name='contact'),
    path('user-role/', user_role, name='user-role'),
    path('webhooks/users/', user_webhook, name='user-webhook'),
]
