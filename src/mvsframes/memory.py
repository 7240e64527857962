"""Pitched device buffers, pinned host staging memory and host frames."""

import logging

import numpy as np
import torch

from .context import ExecutionContext
from .errors import AllocationFailure, TransferFailure, device_call

logger = logging.getLogger(__name__)

# Row pitch alignment of cudaMallocPitch on current hardware
DEFAULT_PITCH_ALIGNMENT = 512

CHANNELS = 4


def _raw_alloc(
    shape: tuple[int, ...],
    dtype: torch.dtype,
    device: str | torch.device,
    pin_memory: bool = False,
) -> torch.Tensor:
    """Single entry point for every allocation made by this package."""
    return torch.empty(shape, dtype=dtype, device=device, pin_memory=pin_memory)


def compute_pitch(width: int, dtype: torch.dtype, alignment: int) -> int:
    """Row pitch in bytes of a 4-channel buffer row padded to ``alignment``.

    Args:
        width: Row width in pixels.
        dtype: Channel element type.
        alignment: Alignment in bytes (power of two).

    Returns:
        Smallest multiple of ``alignment`` that holds one row.
    """
    row_bytes = width * CHANNELS * _itemsize(dtype)
    return -(-row_bytes // alignment) * alignment


def _itemsize(dtype: torch.dtype) -> int:
    return torch.empty((), dtype=dtype).element_size()


class PitchedBuffer2D:
    """Device-resident 2-D buffer of RGBA pixels with padded rows.

    The padded ``storage`` tensor has shape ``(height, pitch_pixels, 4)``;
    ``view`` is the ``(height, width, 4)`` window over its first ``width``
    columns. The buffer exclusively owns its storage until ``release()``.
    """

    def __init__(
        self,
        width: int,
        height: int,
        dtype: torch.dtype = torch.float32,
        device: str | torch.device = "cpu",
        alignment: int = DEFAULT_PITCH_ALIGNMENT,
    ):
        if width < 1 or height < 1:
            raise ValueError(f"Buffer size must be positive, got {width}x{height}")

        self.width = width
        self.height = height
        self.dtype = dtype
        self.device = torch.device(device)
        self.pitch = compute_pitch(width, dtype, alignment)

        pixel_bytes = CHANNELS * _itemsize(dtype)
        with device_call("allocate pitched device buffer", AllocationFailure):
            self._storage = _raw_alloc(
                (height, self.pitch // pixel_bytes, CHANNELS), dtype, self.device
            )
        logger.debug(
            "Allocated %dx%d pitched buffer on %s (pitch %d bytes)",
            width,
            height,
            self.device,
            self.pitch,
        )

    @property
    def size(self) -> tuple[int, int]:
        """Buffer size as (width, height)."""
        return (self.width, self.height)

    @property
    def bytes_padded(self) -> int:
        """Allocated bytes including row padding."""
        return self.pitch * self.height

    @property
    def released(self) -> bool:
        return self._storage is None

    @property
    def storage(self) -> torch.Tensor:
        """Padded backing tensor."""
        if self._storage is None:
            raise ValueError("Pitched buffer has been released")
        return self._storage

    @property
    def handle(self) -> int:
        """Raw device pointer of the first row."""
        return self.storage.data_ptr()

    @property
    def view(self) -> torch.Tensor:
        """Writable (H, W, 4) view excluding row padding."""
        return self.storage[:, : self.width, :]

    def copy_from(self, frame: "HostFrame", context: ExecutionContext) -> None:
        """Copy a host frame of identical size into this buffer.

        Args:
            frame: Host frame, same (width, height) as this buffer.
            context: Execution context. Asynchronous contexts enqueue the copy.

        Raises:
            TransferFailure: On size mismatch or a failed copy.
        """
        with device_call("copy host frame to device", TransferFailure) as call:
            if frame.size != self.size:
                raise call.failure(
                    f"host frame is {frame.width}x{frame.height}, "
                    f"device buffer is {self.width}x{self.height}"
                )
            with context.activate():
                self.view.copy_(frame.tensor, non_blocking=context.non_blocking)
            context.record_use(self._storage)
            context.complete(self.device)

    def release(self) -> None:
        """Free the storage. Safe to call more than once."""
        self._storage = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    def __repr__(self) -> str:
        state = "released" if self.released else f"pitch={self.pitch}"
        return (
            f"PitchedBuffer2D({self.width}x{self.height}, {self.dtype}, "
            f"{self.device}, {state})"
        )


class PinnedHostBuffer:
    """Page-locked host staging memory.

    Pinned memory needs a CUDA driver; without one the buffer falls back to
    pageable host memory, which keeps the package usable on CPU-only hosts.
    """

    def __init__(self, numel: int, dtype: torch.dtype = torch.float32):
        pin = torch.cuda.is_available()
        with device_call("allocate pinned host memory", AllocationFailure):
            self._tensor = _raw_alloc((numel,), dtype, "cpu", pin_memory=pin)

    @property
    def released(self) -> bool:
        return self._tensor is None

    @property
    def tensor(self) -> torch.Tensor:
        if self._tensor is None:
            raise ValueError("Pinned host buffer has been released")
        return self._tensor

    def release(self) -> None:
        self._tensor = None


class HostFrame:
    """Host-resident RGBA frame.

    Attributes:
        tensor: Pixel data, shape (H, W, 4), on the CPU.
    """

    def __init__(self, tensor: torch.Tensor):
        if tensor.ndim != 3 or tensor.shape[2] != CHANNELS:
            raise ValueError(
                f"Host frame must have shape (H, W, 4), got {tuple(tensor.shape)}"
            )
        if tensor.device.type != "cpu":
            raise ValueError(f"Host frame must live on the CPU, got {tensor.device}")
        self.tensor = tensor

    @classmethod
    def from_array(
        cls,
        array: np.ndarray,
        dtype: torch.dtype = torch.float32,
        pin: bool | None = None,
    ) -> "HostFrame":
        """Build a frame from an RGB or RGBA array.

        Args:
            array: Image, shape (H, W, 3) or (H, W, 4), values in [0, 255].
            dtype: Element type of the frame.
            pin: Pin the frame in page-locked memory. Defaults to pinning
                whenever CUDA is available.

        Returns:
            Host frame. RGB input gets an opaque alpha channel (255).
        """
        array = np.asarray(array)
        if array.ndim != 3 or array.shape[2] not in (3, 4):
            raise ValueError(
                f"Expected (H, W, 3) or (H, W, 4) image, got {array.shape}"
            )
        if array.shape[2] == 3:
            alpha = np.full(array.shape[:2] + (1,), 255, dtype=array.dtype)
            array = np.concatenate([array, alpha], axis=2)

        tensor = torch.from_numpy(np.ascontiguousarray(array)).to(dtype)
        if pin is None:
            pin = torch.cuda.is_available()
        if pin:
            tensor = tensor.pin_memory()
        return cls(tensor)

    @property
    def width(self) -> int:
        return self.tensor.shape[1]

    @property
    def height(self) -> int:
        return self.tensor.shape[0]

    @property
    def size(self) -> tuple[int, int]:
        """Frame size as (width, height)."""
        return (self.width, self.height)

    @property
    def dtype(self) -> torch.dtype:
        return self.tensor.dtype
