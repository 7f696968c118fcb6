"""STO integration error taxonomy"""

from typing import Optional

# Caller must (re-)login before scraping
AUTH_REQUIRED = "AUTH_REQUIRED"
# Portal asked for the emailed one-time code
NEEDS_VERIFICATION = "NEEDS_VERIFICATION"
INVALID_CODE = "INVALID_CODE"
AUTH_FAILED = "AUTH_FAILED"
VERIFICATION_TIMEOUT = "VERIFICATION_TIMEOUT"
# Mailbox polling window elapsed
TIMEOUT = "TIMEOUT"
ALREADY_SYNCING = "ALREADY_SYNCING"
PARSE_ERROR = "PARSE_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
NOTIFICATION_FAILED = "NOTIFICATION_FAILED"


class StoError(Exception):
    """Raised inside the portal client; converted to result models at service boundaries"""

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or code
        super().__init__(f"{code}: {self.message}")


class DetailParseError(StoError):
    """A detail page is missing a region the parser depends on"""

    def __init__(self, message: str):
        super().__init__(PARSE_ERROR, message)
