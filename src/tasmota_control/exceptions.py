"""Exception hierarchy for tasmota_control.

Every error raised to callers derives from TasmotaError, so applications can
catch one type per device operation. No error here is fatal to the process;
each one is scoped to the command, routine or device that triggered it.
"""

from __future__ import annotations


class TasmotaError(Exception):
    """Base class for all tasmota_control errors."""


class TasmotaConnectionError(TasmotaError):
    """Transport unreachable, authentication rejected, or session closed.

    Raised when:
    - An HTTP request cannot reach the device or returns a non-2xx status
    - The broker session is closed while a command is being published
    - A broker session cannot connect within its start timeout

    Note: Named TasmotaConnectionError to avoid shadowing the built-in ConnectionError.

    Attributes:
        reason: Specific failure reason
        state: Transport/session state when the error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Connection error: {reason} (state: {state})")


class CommandTimeoutError(TasmotaError):
    """No reply was received within the command deadline.

    Attributes:
        command: Command word that timed out (e.g. "Power1")
        timeout_seconds: Deadline that elapsed
        device: Device topic or host

    """

    def __init__(self, command: str, timeout_seconds: float, device: str = "") -> None:
        self.command: str = command
        self.timeout_seconds: float = timeout_seconds
        self.device: str = device
        super().__init__(f"No reply to '{command}' from '{device}' within {timeout_seconds}s")


class ProtocolError(TasmotaError):
    """A reply arrived but could not be decoded or had an unexpected shape.

    Attributes:
        reason: What was wrong with the reply
        payload: Raw payload text, when available

    """

    def __init__(self, reason: str, payload: str | None = None) -> None:
        self.reason: str = reason
        self.payload: str | None = payload
        super().__init__(f"Protocol error: {reason}")


class CapabilityError(TasmotaError):
    """Command rejected before dispatch because the device cannot perform it.

    Attributes:
        command: Command word that was rejected
        feature: Missing feature name, if the rejection was feature based
        channel: Requested channel, if the rejection was range based
        max_channel: Highest valid channel, if the rejection was range based

    """

    def __init__(self, command: str, *, feature: str | None = None, channel: int | None = None, max_channel: int | None = None) -> None:
        self.command: str = command
        self.feature: str | None = feature
        self.channel: int | None = channel
        self.max_channel: int | None = max_channel
        if feature is not None:
            msg = f"'{command}' requires unsupported feature '{feature}'"
        else:
            msg = f"'{command}' targets channel {channel}, device has channels 1..{max_channel}"
        super().__init__(msg)


class ValidationError(TasmotaError):
    """Malformed construction of a routine or capability set.

    Attributes:
        reason: What failed validation

    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Validation failed: {reason}")


class RoutineError(TasmotaError):
    """A routine step failed; later steps were not dispatched.

    Attributes:
        step_index: 1-based index of the failing step
        cause: The error raised by that step

    """

    def __init__(self, step_index: int, cause: TasmotaError) -> None:
        self.step_index: int = step_index
        self.cause: TasmotaError = cause
        super().__init__(f"Routine failed at step {step_index}: {cause}")


class DeviceNotFoundError(TasmotaError):
    """A DeviceManager operation named a device id it does not hold.

    Attributes:
        device_id: The unknown id

    """

    def __init__(self, device_id: str) -> None:
        self.device_id: str = device_id
        super().__init__(f"No managed device with id '{device_id}'")
