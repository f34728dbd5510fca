"""
Authentication REST API views.

Implements endpoints for:
- Login (JWT issue)
- Current principal
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import ValidationError, RATE_LIMIT_RETRY_AFTER
from apps.core.logging import SecurityLogger
from apps.rbac.services import AuthService
from apps.rbac.serializers import LoginSerializer, UserSerializer, CurrentUserSerializer


@extend_schema(
    tags=['Authentication'],
    summary='Login user',
    description='''
Authenticate user with email and password.

Returns JWT token for API authentication and user information.

**No authentication required** - this is a public endpoint.

**Rate limits**:
- 5 requests/minute per IP address
- 10 requests/hour per email address
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Login Request',
            value={
                'email': 'user@example.com',
                'password': 'SecurePass123!'
            },
            request_only=True
        ),
        OpenApiExample(
            'Invalid Credentials',
            value={
                'error': 'Invalid email or password',
                'code': 'AUTHENTICATION_FAILED',
                'details': {},
                'request_id': '6f1c...'
            },
            response_only=True,
            status_codes=['401']
        ),
    ]
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key='post:email', rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    Authenticate user and return JWT token.

    No authentication required.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Login user."""
        ip_address = request.META.get('REMOTE_ADDR')

        if getattr(request, 'limited', False):
            SecurityLogger.log_rate_limit_exceeded(
                endpoint='/v1/auth/login',
                ip_address=ip_address,
                user_email=request.data.get('email'),
            )
            response = Response(
                {
                    'error': 'Rate limit exceeded. Please try again later.',
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'retry_after': RATE_LIMIT_RETRY_AFTER
                },
                status=status.HTTP_429_TOO_MANY_REQUESTS
            )
            response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
            return response

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationError('Validation error', errors=serializer.errors)

        # Raises AuthenticationError (401) on bad credentials
        result = AuthService.login(
            email=serializer.validated_data['email'],
            password=serializer.validated_data['password'],
            ip_address=ip_address,
        )

        return Response(
            {
                'user': UserSerializer(result['user']).data,
                'token': result['token'],
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Current principal',
    description='The authenticated user with global roles, permissions and memberships.',
    responses={200: CurrentUserSerializer},
)
class CurrentUserView(APIView):
    """
    GET /v1/auth/me

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return Response(CurrentUserSerializer(request.user).data, status=status.HTTP_200_OK)
