from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

from .models import HotelUser


class HeaderIdentityAuthentication(BaseAuthentication):
    """
    Resolve the caller from the user id the identity provider's frontend sends
    in the ``X-User-Id`` header. Requests without the header are anonymous.
    """

    header = 'X-User-Id'

    def authenticate(self, request):
        external_id = request.headers.get(self.header)
        if not external_id:
            return None
        try:
            user = HotelUser.objects.get(external_id=external_id)
        except HotelUser.DoesNotExist:
            raise AuthenticationFailed('Unknown user.')
        return (user, None)

    def authenticate_header(self, request):
        return self.header
