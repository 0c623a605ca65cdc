class ReservationError(Exception):
    """Base class for reservation domain errors."""


class ValidationError(ReservationError):
    pass


class ConflictError(ReservationError):
    pass


class GatewayError(ReservationError):
    pass


class PersistenceError(ReservationError):
    pass


class NotificationError(ReservationError):
    pass


class ReservationNotFoundError(ReservationError):
    pass
