# subscription_activation/services/errors.py

from typing import Optional

# Shown to customers for every rejected code so that unknown codes and
# codes bound to another subscription cannot be told apart.
GENERIC_REJECTION_MESSAGE = "Invalid or already used code"


class ActivationError(Exception):
    """Base class for everything the activation workflows raise."""


class ConfigurationError(ActivationError):
    pass


class InvalidPayload(ActivationError):
    """The upstream event carries no usable subscription id. Never retried."""


class UpstreamCallFailed(ActivationError):
    """A pause/resume/status call to the subscription service failed.

    ``permanent`` is True for responses that retrying cannot fix (bad
    credentials, unknown subscription, missing API key).
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, permanent: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.permanent = permanent


class PersistenceFailed(ActivationError):
    pass


class MarkUsedFailed(PersistenceFailed):
    """The subscription was resumed but the code is still stored as unused.

    Nothing rolls the resume back; the reconciliation job repairs the record.
    """

    def __init__(self, message: str, *, code: str, subscription_id: str):
        super().__init__(message)
        self.code = code
        self.subscription_id = subscription_id


class CodeConflict(ActivationError):
    """An insert with replace disabled hit an existing code."""

    def __init__(self, code: str):
        super().__init__(f"Activation code {code} already exists")
        self.code = code


class RedemptionRejected(ActivationError):
    reason = "rejected"
    public_message = GENERIC_REJECTION_MESSAGE

    def __init__(self, code: str, subscription_id: str):
        super().__init__(f"{self.reason}: code={code} subscription={subscription_id}")
        self.code = code
        self.subscription_id = subscription_id


class NotFound(RedemptionRejected):
    reason = "not_found"


class Mismatch(RedemptionRejected):
    reason = "mismatch"


class AlreadyUsed(RedemptionRejected):
    reason = "already_used"
