"""WebSocket authentication middleware: JWT access token or Django session."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()
logger = logging.getLogger(__name__)


def token_from_scope(scope):
    """
    Access token from ?token=... (mobile clients) or an
    "Authorization: Bearer ..." header.
    """
    params = parse_qs(scope.get("query_string", b"").decode())
    if params.get("token"):
        return params["token"][0]

    for name, value in scope.get("headers", []):
        if name == b"authorization":
            scheme, _, credentials = value.decode().partition(" ")
            if scheme.lower() == "bearer" and credentials:
                return credentials
    return None


@database_sync_to_async
def user_for_token(raw_token):
    try:
        user_id = AccessToken(raw_token)["user_id"]
    except (TokenError, KeyError) as exc:
        logger.debug("Rejected WebSocket token: %s", exc)
        return AnonymousUser()

    try:
        return User.objects.get(id=user_id, is_active=True)
    except User.DoesNotExist:
        return AnonymousUser()


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Populates scope["user"]. A token wins over the session; without either
    the connection is anonymous and the consumers close it.
    """

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        raw_token = token_from_scope(scope)

        if raw_token:
            scope["user"] = await user_for_token(raw_token)
        elif "user" not in scope:
            scope["user"] = AnonymousUser()

        return await super().__call__(scope, receive, send)
