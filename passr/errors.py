"""Domain errors raised by the offer, chat and listing services.

Routes never see these as 500s: ``passr.main`` maps each family to an HTTP
status through ``STATUS_CODES``.
"""


class MarketplaceError(Exception):
    """Base class for every error the marketplace core raises on purpose."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(MarketplaceError):
    pass


class InvalidOffer(ValidationError):
    pass


class SelfOffer(ValidationError):
    def __init__(self, detail: str = "You cannot make an offer on your own listing"):
        super().__init__(detail)


class InvalidTransition(ValidationError):
    pass


class AuthorizationError(MarketplaceError):
    pass


class Unauthorized(AuthorizationError):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class NotFoundError(MarketplaceError):
    pass


class DependencyError(MarketplaceError):
    """An external collaborator (object store, push provider) failed."""


STATUS_CODES = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    DependencyError: 502,
}


def status_code_for(exc: MarketplaceError) -> int:
    for error_type, status_code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            return status_code
    return 500
