class FunnelError(Exception):
    """Base class for funnel engine errors."""


class ScriptUnavailableError(FunnelError):
    """Funnel not found, inactive, or its blocks could not be loaded."""


class MalformedScriptError(FunnelError):
    """Cyclic or dangling next_block_id chain."""


class CaptureInvalidError(FunnelError):
    """Ticket not found, expired or already used."""


class InputNotAcceptedError(FunnelError):
    """The run is not waiting for user input."""


class InvalidReplyError(FunnelError):
    """Reply does not satisfy the question's constraints."""


class InvalidAttachmentError(FunnelError):
    """Attachment has an unsupported type or is too large."""


class AttachmentUploadError(FunnelError):
    """Attachment storage failed; the question stays pending."""


class GraphValidationError(FunnelError):
    """Editor graph cannot be compiled into a script."""
