from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hookrelay.core.exceptions import AuthenticationError
from hookrelay.core.security import decode_access_token
from hookrelay.services.delivery import DeliveryEngine
from hookrelay.services.receiver import WebhookReceiver

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentUser | None:
    """Caller identity from a bearer token, or None for anonymous requests.

    A token that is present but invalid is rejected rather than ignored.
    """
    if credentials is None:
        return None
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")
    return CurrentUser(id=str(payload["sub"]))


async def get_current_user(
    user: CurrentUser | None = Depends(get_optional_user),
) -> CurrentUser:
    if user is None:
        raise AuthenticationError()
    return user


def get_delivery_engine(request: Request) -> DeliveryEngine:
    return request.app.state.delivery_engine


def get_webhook_receiver(request: Request) -> WebhookReceiver:
    return request.app.state.webhook_receiver
