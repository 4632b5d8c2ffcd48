"""Domain errors raised by the cart, checkout and image services."""
from typing import List, Optional


class StoreError(Exception):
    """Base class for storefront errors surfaced to the UI layer."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthRequired(StoreError):
    """No signed-in identity for an operation that needs one."""

    status_code = 401

    def __init__(self, message: str = "Please sign in to continue"):
        super().__init__(message)


class ValidationFailed(StoreError):
    """Missing or invalid input. `fields` names the offending form fields, if any."""

    status_code = 422

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class PersistenceFailed(StoreError):
    status_code = 503


class UploadFailed(StoreError):
    status_code = 502


class NoCropAvailable(StoreError):
    """The image pipeline has nothing to output."""

    status_code = 422

    def __init__(self, message: str = "Nothing to save: no crop has been selected"):
        super().__init__(message)


class CheckoutInProgress(StoreError):
    status_code = 409

    def __init__(self, message: str = "An order is already being placed"):
        super().__init__(message)
