# dualchat/nucleus/errors.py


class DeliveryError(Exception):
    """Base class for every failure the delivery core reports."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ContentStoreError(DeliveryError):
    pass


class StoreUnavailable(ContentStoreError):
    """The content store daemon is unreachable, timed out, or not configured."""


class StoreRejected(ContentStoreError):
    """The content store was reached but refused the operation."""


class NotFound(ContentStoreError):
    """The content store has no object for the requested CID."""


class ChannelError(DeliveryError):
    pass


class ChannelUnavailable(ChannelError):
    """
    The recipient has no active live connection. This is not a transport
    fault: the message is simply undeliverable over the live channel right now.
    """


class ChannelSendFailed(ChannelError):
    """The live connection exists but the send itself failed or timed out."""


class ValidationError(DeliveryError):
    """A malformed delivery request. Aborts the request before any transport is tried."""
