class CallflowError(Exception):
    """Base class for errors raised by the call flow."""


class CallPlacementError(CallflowError):
    """The carrier refused or failed to place an outbound call."""


class CampaignNotFound(CallflowError):
    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign not found: {campaign_id}")
        self.campaign_id = campaign_id


class GeneratorUnavailable(CallflowError):
    """The response generator could not produce a reply.

    `transient` is set for rate limits, quota, timeouts, provider 5xx and an
    open circuit. Anything else (bad key, malformed output) is a hard failure.
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class TranscriptionError(CallflowError):
    pass
