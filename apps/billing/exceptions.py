# billing/exceptions.py

"""
Webhook processing errors that map to specific HTTP responses so Stripe
knows whether to retry a delivery.
"""


class RetryableWebhookError(Exception):
    """
    Transient failure (e.g. the subscription row does not exist yet because
    events arrived out of order). Answered with HTTP 500 so Stripe retries.
    """


class RateMismatchError(Exception):
    """
    A subscription's Stripe amount disagrees with the rate recorded in its
    metadata. Answered with HTTP 400; retrying would not help.
    """

    def __init__(self, message, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual
