"""Fatal accelerator runtime errors."""

import sys
from pathlib import Path


class DeviceError(RuntimeError):
    """A failed accelerator runtime call.

    Attributes:
        operation: Human-readable name of the failing operation.
        location: Source location of the call site, as ``file:line``.
        diagnostic: Message reported by the underlying runtime.
    """

    def __init__(self, operation: str, location: str, diagnostic: str):
        self.operation = operation
        self.location = location
        self.diagnostic = diagnostic
        super().__init__(f"{operation} failed at {location}: {diagnostic}")

    @property
    def kind(self) -> str:
        """Error kind name (e.g. ``"AllocationFailure"``)."""
        return type(self).__name__


class AllocationFailure(DeviceError):
    """Device or pinned host memory request failed."""


class TransferFailure(DeviceError):
    """Host/device copy or parameter table write failed."""


class BindingFailure(DeviceError):
    """Texture construction failed or a destroyed texture was used."""


class KernelFailure(DeviceError):
    """Downscale or color conversion kernel failed."""


class device_call:
    """Context manager turning runtime errors into a ``DeviceError`` subclass.

    The call site location is captured on construction, so the error points at
    the line that issued the runtime call rather than at this module.

    Example:
        >>> with device_call("allocate frame buffer", AllocationFailure):
        ...     storage = torch.empty(shape, device=device)
    """

    def __init__(self, operation: str, error_cls: type[DeviceError]):
        frame = sys._getframe(1)
        self.operation = operation
        self.error_cls = error_cls
        self.location = f"{Path(frame.f_code.co_filename).name}:{frame.f_lineno}"

    def failure(self, diagnostic: str) -> DeviceError:
        """Build the error for a failure detected by the caller itself."""
        return self.error_cls(self.operation, self.location, diagnostic)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is None or isinstance(exc_val, DeviceError):
            return False
        if isinstance(exc_val, RuntimeError):
            raise self.error_cls(self.operation, self.location, str(exc_val)) from exc_val
        return False
