from rest_framework import status
from rest_framework.exceptions import APIException, ValidationError


class OverlapError(ValidationError):
    """The requested stay collides with an existing non-cancelled booking."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Room is not available for the selected dates"
    default_code = "room_unavailable"

    def __init__(self, conflicting_date, detail=None):
        self.conflicting_date = conflicting_date
        if detail is None:
            detail = f"{self.default_detail} ({conflicting_date.isoformat()} is already booked)"
        super().__init__(detail, code=self.default_code)


class StaleAvailabilityError(OverlapError):
    """The room was taken between showing the calendar and submitting the booking."""

    default_detail = "Room is not available for the selected dates: it was just booked by another guest"
    default_code = "room_just_booked"


class AvailabilityError(APIException):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Room availability could not be loaded; booking is disabled"
    default_code = "availability_unavailable"


class InvalidTransition(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This action is not allowed in the current state"
    default_code = "invalid_transition"
