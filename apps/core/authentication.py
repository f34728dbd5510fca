"""
Custom DRF authentication classes.
"""
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed


class JWTAuthentication(BaseAuthentication):
    """
    Bearer token authentication backed by ``AuthService.validate_jwt``.

    Returns ``None`` when no bearer header is present so that other
    authenticators (session auth for the admin) can run.
    """
    keyword = 'Bearer'

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].decode().lower() != self.keyword.lower():
            return None

        if len(auth) != 2:
            raise AuthenticationFailed('Invalid authorization header.')

        from apps.rbac.services import AuthService

        user = AuthService.get_user_from_jwt(auth[1].decode())
        if user is None:
            raise AuthenticationFailed('Invalid or expired token.')

        return (user, None)

    def authenticate_header(self, request):
        return self.keyword
