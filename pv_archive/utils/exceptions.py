class ArchiveError(Exception):
    """Base class for all errors raised by pv_archive."""


class ConfigError(ArchiveError):
    """Raised when the archiver configuration is missing or invalid."""


class InvalidRange(ArchiveError, ValueError):
    """
    Raised for a query that can never succeed: end <= start, target width < 1
    or an empty PV list. Always raised before any request is dispatched.
    """


class FetchError(ArchiveError):
    """
    Failure of a single PV request. Fetch errors are stored in that PV's
    result slot and never abort sibling requests.
    """

    def __init__(self, pv: str, message: str = "") -> None:
        self.pv = pv
        self.message = message or self.__class__.__name__
        super().__init__(f"{pv}: {self.message}")


class Timeout(FetchError):
    def __init__(self, pv: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(pv, f"no response within {timeout:g} s")


class HttpError(FetchError):
    def __init__(self, pv: str, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(pv, f"HTTP {status_code}")


class TransportError(FetchError):
    """Connection-level failure (DNS, refused connection, reset, ...)."""


class MalformedResponse(FetchError):
    """The archive answered, but not with the expected JSON shape."""
