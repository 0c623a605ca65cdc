import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from .config import Settings, get_settings
from .container import Services
from .domain.payments import PaymentGateway
from .domain.repositories import ReservationRepository, SettingsStore
from .usecases.notifications import NotificationDispatcher
from .utils.auth import ADMIN_SUBJECT, decode_access_token


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_app_settings() -> Settings:
    return get_settings()


def get_reservation_repo(services: Services = Depends(get_services)) -> ReservationRepository:
    return services.repo


def get_settings_store(services: Services = Depends(get_services)) -> SettingsStore:
    return services.settings_store


def get_gateway(services: Services = Depends(get_services)) -> PaymentGateway:
    return services.gateway


def get_dispatcher(services: Services = Depends(get_services)) -> NotificationDispatcher:
    return services.dispatcher


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_admin(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> str:
    if authorization is None:
        raise _unauthorized("Authorization header required")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Bearer token required")
    try:
        subject = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("Invalid token") from exc
    if subject != ADMIN_SUBJECT:
        raise _unauthorized("Admin token required")
    return subject


def check_admin_password(provided: str, settings: Settings) -> bool:
    if not settings.admin_password:
        return False
    return secrets.compare_digest(provided.encode(), settings.admin_password.encode())
