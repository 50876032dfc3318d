from typing import Optional

from tracebeam.constants import (
    EXIT_CODE_CONFIGURATION,
    EXIT_CODE_DELIVERY_FAILED,
    EXIT_CODE_FAILURE,
)


class TraceBeamError(Exception):
    """
    Base error of the tracebeam SDK.

    Args:
        message (str): The error message.
    """
    def __init__(self, message: str = "An error occurred in the tracebeam SDK."):
        self.message = message
        super().__init__(self.message)

    def get_exit_code(self) -> int:
        """
        Get the exit code associated with this error.

        Returns:
            int: The exit code.
        """
        return EXIT_CODE_FAILURE


class ConfigurationError(TraceBeamError):
    """
    Error raised when the client configuration is incomplete or invalid.

    Args:
        setting (str): The offending setting.
        message (str): The error message template.
    """
    def __init__(self, setting: str = "",
                 message: str = "You must pass your tracebeam project's {setting}.\n"
                                "Pass it to the client or set the {env} environment variable."):
        self.setting = setting
        env = "TRACEBEAM_" + setting.upper().replace(" ", "_")
        super().__init__(message.format(setting=setting.replace("_", " "), env=env))

    def get_exit_code(self) -> int:
        return EXIT_CODE_CONFIGURATION


class ClientDisabledError(TraceBeamError):
    """
    Error handed to envelope callbacks when the client does not accept events.

    Args:
        reason (str): Why the event was dropped (disabled, opted out, shut down).
    """
    def __init__(self, reason: str = "disabled"):
        self.reason = reason
        super().__init__(f"Event dropped: the tracebeam client is {reason}.")


class EventTooLargeError(TraceBeamError):
    """
    Error raised when a single event exceeds the ingestion size limit.

    Args:
        event_id (str): The envelope id.
        size (int): The serialized size in bytes.
        limit (int): The maximum allowed size in bytes.
    """
    def __init__(self, event_id: str, size: int, limit: int):
        self.event_id = event_id
        self.size = size
        self.limit = limit
        super().__init__(
            f"Event {event_id} is {size} bytes, which exceeds the {limit} bytes limit. "
            "The event was dropped."
        )


class EventSerializationError(TraceBeamError):
    """
    Error raised when an event body cannot be encoded as JSON.

    Args:
        event_id (str): The envelope id.
        reason (str): The encoder error.
    """
    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        super().__init__(
            f"Event {event_id} could not be serialized and was dropped: {reason}"
        )


class IngestionError(TraceBeamError):
    """
    Base error for failed deliveries to the ingestion API.

    Args:
        message (str): The error message.
        status_code (Optional[int]): The HTTP status code, if a response was received.
    """
    def __init__(self, message: str = "Unable to deliver events to the ingestion API.",
                 status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    def get_exit_code(self) -> int:
        return EXIT_CODE_DELIVERY_FAILED


class RetryableIngestionError(IngestionError):
    """
    Marker base for delivery failures worth another attempt.
    """


class IngestionNetworkError(RetryableIngestionError):
    """
    Error raised when the ingestion API cannot be reached or times out.
    """
    def __init__(self, message: str = "Network error while sending events to the ingestion API.\n"
                                      "Please check your internet connection and base URL."):
        super().__init__(message)


class IngestionServerError(RetryableIngestionError):
    """
    Error raised for 5xx, 408 and 429 responses.

    Args:
        status_code (int): The HTTP status code.
        reason (Optional[str]): The response body, if any.
    """
    def __init__(self, status_code: int, reason: Optional[str] = None):
        info = f" Details: {reason}" if reason else ""
        super().__init__(
            f"The ingestion API responded with HTTP {status_code}.{info}",
            status_code=status_code,
        )


class IngestionClientError(IngestionError):
    """
    Error raised for 4xx responses that will not succeed on retry.

    Args:
        status_code (int): The HTTP status code.
        reason (Optional[str]): The response body, if any.
    """
    def __init__(self, status_code: int, reason: Optional[str] = None):
        info = f" Details: {reason}" if reason else ""
        super().__init__(
            f"The ingestion API rejected the batch with HTTP {status_code}.{info}",
            status_code=status_code,
        )


class IngestionItemError(IngestionError):
    """
    Error for a single event the ingestion API reported as failed inside an
    otherwise successful batch.

    Args:
        event_id (str): The envelope id.
        status_code (Optional[int]): The per-item status reported by the API.
        reason (Optional[str]): The per-item error message.
    """
    def __init__(self, event_id: str, status_code: Optional[int] = None,
                 reason: Optional[str] = None):
        self.event_id = event_id
        info = f": {reason}" if reason else ""
        super().__init__(
            f"The ingestion API rejected event {event_id}{info}",
            status_code=status_code,
        )
