class PeriksaKataError(Exception):
    """Base class for outcomes the HTTP layer turns into an error response."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(PeriksaKataError):
    status_code = 400
    error = "Invalid request"


class RateLimited(PeriksaKataError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message: str = "Terlalu banyak permintaan. Silakan coba lagi nanti."):
        super().__init__(message)


class ServiceMisconfigured(PeriksaKataError):
    status_code = 500
    error = "Service configuration error"
