"""
Tagmail Exceptions
==================

Domain errors raised by the store, the lifecycle and the routes.
All of them are ValueErrors so callers that only know about bad input
can still catch them.
"""


class TagmailError(ValueError):
    """Base class for Tagmail domain errors"""


class NotFoundError(TagmailError):
    """A tenant, subscriber, tag or campaign does not exist"""


class CampaignValidationError(TagmailError):
    """A transition was blocked because the campaign is not ready.

    ``reason`` is a short machine-readable code such as
    ``subject_required`` or ``no_recipients``.
    """

    def __init__(self, reason, message):
        super().__init__(message)
        self.reason = reason
        self.message = message


class InvalidTransitionError(TagmailError):
    """The requested transition is not legal from the campaign's status"""

    def __init__(self, campaign_id, status, action):
        message = f"Cannot {action} campaign {campaign_id} while it is {status}"
        super().__init__(message)
        self.campaign_id = campaign_id
        self.status = status
        self.action = action


class CSVImportError(TagmailError):
    """The uploaded CSV could not be imported"""
