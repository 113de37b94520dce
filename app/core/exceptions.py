"""
Domain exceptions raised by the generation, ledger and payment services.

Routes translate these into HTTP errors; background boundaries (poll ticks,
webhook ingest, thumbnail tasks) catch and log them instead.
"""

from typing import Optional


class StudioError(Exception):
    """Base class for all service-level errors"""


class NotFoundError(StudioError):
    """Requested job, model or charge does not exist"""


class InsufficientBalance(StudioError):
    """User balance does not cover the cost of a generation"""

    def __init__(self, user_id: str, required, available=None):
        self.user_id = user_id
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: {required} required")


class ProviderError(StudioError):
    """Generation provider rejected a request (non-2xx or non-success code)"""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class ProviderTransientError(ProviderError):
    """Network failure or 5xx while talking to the provider; safe to retry"""


class ProviderSubmitFailure(StudioError):
    """Submission failed; the job was recorded as failed and, unless refunded is False, refunded"""

    def __init__(self, job_id: str, message: str, refunded: bool = True):
        self.job_id = job_id
        self.refunded = refunded
        super().__init__(message)


class MalformedWebhookPayload(StudioError):
    """Inbound callback is missing its correlation id or has an unknown shape"""


class PaymentError(StudioError):
    """Payment gateway call failed or is not configured"""


class InviteCodeError(StudioError):
    """Invite code cannot be redeemed (inactive, expired, used up or already redeemed)"""
