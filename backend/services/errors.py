"""Domain errors for the onboarding and billing pipeline.

Validation errors (unknown services, bad amounts, illegal transitions) are
turned into `{ok: false, message}` responses by the handlers in server.py.
ProcessorUnavailableError never leaves the services layer; callers convert it
into a sample/demo result.
"""


class OnboardingBillingError(Exception):
    """Base class for errors that carry a user-facing message."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownServiceError(OnboardingBillingError):
    def __init__(self, keys):
        self.keys = list(keys)
        super().__init__(f"Unknown service(s): {', '.join(self.keys)}")


class InvalidAmountError(OnboardingBillingError):
    def __init__(self, message: str = "Enter a valid amount greater than zero."):
        super().__init__(message)


class InvalidTransitionError(OnboardingBillingError):
    pass


class ForbiddenTransitionError(OnboardingBillingError):
    status_code = 403


class NotFoundError(OnboardingBillingError):
    status_code = 404


class ProcessorUnavailableError(Exception):
    """Payment processor is unconfigured, unreachable or rejected the call."""
