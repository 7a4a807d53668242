"""Custom exceptions for the LTCF bridge."""


class BridgeError(Exception):
    """Base exception for LTCF bridge errors."""

    pass


class ValidationError(BridgeError):
    """Error during record validation, before anything is submitted."""

    pass


class MissingIdentifierError(ValidationError):
    """An UPDATE or DELETE has no previously issued resource id."""

    def __init__(self, resource_type: str, operation: str):
        self.resource_type = resource_type
        self.operation = operation
        super().__init__(
            f"{resource_type} {operation} requires an existing {resource_type} id"
        )


class InvalidOperationError(ValidationError):
    """An operation verb outside CREATE/UPDATE/CORRECTION/DELETE/USE."""

    def __init__(self, resource_type: str, value: str):
        self.resource_type = resource_type
        self.value = value
        super().__init__(f"Unknown {resource_type.lower()} operation: {value}")


class ParseError(BridgeError):
    """Error while reading a flat-file record."""

    pass


class CatalogError(BridgeError):
    """Error while loading the element catalog."""

    pass


class SubmissionError(BridgeError):
    """Error while transmitting a bundle to IRRS."""

    pass


class AuthError(BridgeError):
    """Error while obtaining an access token."""

    pass
