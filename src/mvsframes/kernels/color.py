"""In-place sRGB to CIELAB conversion."""

import torch
from torch.profiler import record_function

from ..context import ExecutionContext
from ..errors import KernelFailure, device_call
from ..memory import PitchedBuffer2D

# Linear sRGB to CIE XYZ, D65 white point
_RGB_TO_XYZ = (
    (0.4124564, 0.3575761, 0.1804375),
    (0.2126729, 0.7151522, 0.0721750),
    (0.0193339, 0.1191920, 0.9503041),
)
_D65_WHITE = (0.95047, 1.0, 1.08883)

# CIE constants
_EPSILON = 216.0 / 24389.0
_KAPPA = 24389.0 / 27.0


def _srgb_to_lab(rgb: torch.Tensor) -> torch.Tensor:
    """Convert sRGB in [0, 1], shape (..., 3), to (L, a, b)."""
    linear = torch.where(
        rgb > 0.04045,
        ((rgb.clamp(min=0.04045) + 0.055) / 1.055) ** 2.4,
        rgb / 12.92,
    )

    matrix = torch.tensor(_RGB_TO_XYZ, device=rgb.device, dtype=rgb.dtype)
    white = torch.tensor(_D65_WHITE, device=rgb.device, dtype=rgb.dtype)
    xyz = (linear @ matrix.T) / white

    f = torch.where(
        xyz > _EPSILON,
        xyz.clamp(min=_EPSILON) ** (1.0 / 3.0),
        (_KAPPA * xyz + 16.0) / 116.0,
    )
    fx, fy, fz = f[..., 0], f[..., 1], f[..., 2]

    L = 116.0 * fy - 16.0
    a = 500.0 * (fx - fy)
    b = 200.0 * (fy - fz)
    return torch.stack([L, a, b], dim=-1)


def rgb_to_lab(
    buffer: PitchedBuffer2D,
    width: int,
    height: int,
    context: ExecutionContext | None = None,
) -> None:
    """Convert an RGBA frame buffer to CIELAB in place.

    Input channels are sRGB values in [0, 255]. Float32 buffers receive
    ``(L, a, b)`` with L in [0, 100]; 8-bit buffers receive
    ``(L * 255 / 100, a + 128, b + 128)`` rounded and clamped to [0, 255].
    The alpha channel is left untouched.

    Args:
        buffer: Frame buffer, size (width, height).
        width: Frame width in pixels.
        height: Frame height in pixels.
        context: Execution context; ``None`` is synchronous.

    Raises:
        KernelFailure: If the size does not match ``buffer`` or the
            computation fails.
    """
    context = ExecutionContext.resolve(context)

    with device_call("convert frame to CIELAB", KernelFailure) as call:
        if buffer.size != (width, height):
            raise call.failure(
                f"frame size {width}x{height} does not match buffer "
                f"{buffer.width}x{buffer.height}"
            )

        with context.activate(), record_function("rgb_to_lab"):
            view = buffer.view
            lab = _srgb_to_lab(view[..., :3].float() / 255.0)

            if buffer.dtype == torch.uint8:
                scale = torch.tensor([255.0 / 100.0, 1.0, 1.0], device=lab.device)
                offset = torch.tensor([0.0, 128.0, 128.0], device=lab.device)
                lab = (lab * scale + offset).round().clamp(0.0, 255.0)

            view[..., :3] = lab.to(buffer.dtype)

        context.record_use(buffer.storage)
        context.complete(buffer.device)
