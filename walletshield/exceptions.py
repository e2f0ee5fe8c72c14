"""Domain errors raised by the services layer.

Routers translate these into HTTP responses; services never raise
HTTPException themselves.
"""


class WalletShieldError(Exception):
    """Base class for every domain error."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(WalletShieldError):
    status_code = 404


class ValidationError(WalletShieldError):
    status_code = 400


class InsufficientFundsError(ValidationError):
    pass


class CustodyStateError(WalletShieldError):
    """A transfer was asked to leave a state it is not in."""

    status_code = 409


class GroundTruthError(WalletShieldError):
    status_code = 409


class AppealError(WalletShieldError):
    status_code = 409
