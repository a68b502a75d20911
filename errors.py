"""Error taxonomy shared by the license client and the control layer."""


class LicenseError(Exception):
    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(LicenseError):
    """Malformed or missing input. Detected locally, nothing sent over the network."""

    status_code = 400


class TransportError(LicenseError):
    """Network failure or timeout talking to a remote endpoint."""


class BusinessError(LicenseError):
    """The upstream provider explicitly rejected the license key."""


class ServerError(LicenseError):
    """Unexpected failure or misconfiguration inside the control layer."""

    status_code = 500
