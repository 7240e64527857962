"""Anti-aliased frame downscaling with a Gaussian blur."""

import torch
from torch.profiler import record_function

from ..config import ReadMode
from ..context import ExecutionContext
from ..errors import KernelFailure, device_call
from ..memory import PitchedBuffer2D
from ..texture import Texture


def gaussian_weights(
    radius: int,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Normalized 1-D Gaussian kernel.

    Args:
        radius: Kernel radius; the kernel has ``2 * radius + 1`` taps.
        device: Device for the output tensor.

    Returns:
        Weights, shape (2 * radius + 1,), float32, summing to 1.
        ``sigma = radius / 2`` so the kernel support spans two sigmas.
    """
    if radius < 0:
        raise ValueError(f"radius must be non-negative, got {radius}")
    sigma = max(radius, 1) / 2.0
    offsets = torch.arange(-radius, radius + 1, device=device, dtype=torch.float32)
    g = torch.exp(-(offsets**2) / (2 * sigma**2))
    return g / g.sum()


def _store_pixels(
    buffer: PitchedBuffer2D, values: torch.Tensor, read_mode: ReadMode
) -> None:
    """Write float texel values back in the buffer's element type."""
    if buffer.dtype == torch.uint8:
        if read_mode is ReadMode.NORMALIZED_FLOAT:
            values = values * 255.0
        values = values.round().clamp(0.0, 255.0)
    buffer.view.copy_(values)


def downscale_with_gaussian_blur(
    out_buffer: PitchedBuffer2D,
    texture: Texture,
    downscale: int,
    width: int,
    height: int,
    radius: int,
    context: ExecutionContext | None = None,
) -> None:
    """Blur and decimate a full-resolution texture into a smaller buffer.

    Output pixel ``(x, y)`` is the Gaussian-weighted mean of the texture
    sampled around the centre of its ``downscale x downscale`` source block,
    at integer texel offsets in ``[-radius, radius]`` on each axis.

    Args:
        out_buffer: Destination buffer, size (width, height).
        texture: Full-resolution source texture.
        downscale: Decimation factor.
        width: Output width in pixels.
        height: Output height in pixels.
        radius: Gaussian kernel radius in source texels.
        context: Execution context; ``None`` is synchronous.

    Raises:
        KernelFailure: If the output size does not match ``out_buffer`` or
            the computation fails.
    """
    context = ExecutionContext.resolve(context)

    with device_call("downscale frame with gaussian blur", KernelFailure) as call:
        if out_buffer.size != (width, height):
            raise call.failure(
                f"output size {width}x{height} does not match buffer "
                f"{out_buffer.width}x{out_buffer.height}"
            )

        with context.activate(), record_function("downscale_with_gaussian_blur"):
            device = out_buffer.device
            weights = gaussian_weights(radius, device)
            offsets = torch.arange(-radius, radius + 1, device=device, dtype=torch.float32)
            half = downscale * 0.5

            # Block centres in texel coordinates
            cx = torch.arange(width, device=device, dtype=torch.float32) * downscale + half
            cy = torch.arange(height, device=device, dtype=torch.float32) * downscale + half

            # One row of taps per iteration keeps memory at (K, H, W, 4)
            tap_x = (offsets[:, None, None] + cx[None, None, :]).expand(-1, height, -1)
            accum = torch.zeros(height, width, 4, device=device, dtype=torch.float32)
            for i, dy in enumerate(offsets):
                tap_y = (cy[:, None] + dy).expand(len(offsets), -1, width)
                taps = texture.sample(tap_x, tap_y)  # (K, H, W, 4)
                row = (taps * weights[:, None, None, None]).sum(dim=0)
                accum += weights[i] * row

            _store_pixels(out_buffer, accum, texture.descriptor.read_mode)

        context.record_use(out_buffer.storage, texture.resource.storage)
        context.complete(device)
