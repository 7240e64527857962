"""Upload, downscale and color-convert host frames into device buffers."""

import logging
from typing import TYPE_CHECKING

from .context import ExecutionContext
from .kernels import downscale_with_gaussian_blur, rgb_to_lab
from .memory import HostFrame, PitchedBuffer2D
from .texture import build_frame_texture

if TYPE_CHECKING:
    from .camera import CameraResource

logger = logging.getLogger(__name__)


def fill_device_frame(
    camera: "CameraResource",
    host_frame: HostFrame,
    context: ExecutionContext | None = None,
) -> None:
    """Fill a camera's device frame buffer from a host frame.

    Without downscaling the host frame is copied as-is. Otherwise it is
    uploaded to a temporary full-resolution buffer, and the camera buffer
    receives a Gaussian-blurred decimation of it whose blur radius equals
    the downscale factor. The temporary buffer and its texture never outlive
    this call. In both cases the result is then converted to CIELAB in place,
    exactly once.

    Args:
        camera: Camera whose buffer, size and downscale are already set.
        host_frame: Full-resolution host frame.
        context: Execution context; ``None`` is synchronous.

    Raises:
        ValueError: If the camera has no downscaling but its scaled size
            differs from its original size.
        DeviceError: If any allocation, copy, binding or kernel fails.
    """
    context = ExecutionContext.resolve(context)
    frame_buffer = camera.frame_buffer

    if camera.downscale <= 1:
        if (camera.original_width, camera.original_height) != (
            camera.width,
            camera.height,
        ):
            raise ValueError(
                f"Scaled size {camera.width}x{camera.height} differs from original "
                f"size {camera.original_width}x{camera.original_height} "
                f"without downscaling"
            )
        frame_buffer.copy_from(host_frame, context)
    else:
        logger.debug(
            "Downscaling %dx%d frame by %d for slot %d",
            host_frame.width,
            host_frame.height,
            camera.downscale,
            camera.slot_id,
        )
        with (
            PitchedBuffer2D(
                host_frame.width,
                host_frame.height,
                dtype=frame_buffer.dtype,
                device=frame_buffer.device,
                alignment=camera.pitch_alignment,
            ) as full_frame,
            build_frame_texture(full_frame, camera.texture_config) as full_texture,
        ):
            full_frame.copy_from(host_frame, context)

            gaussian_radius = camera.downscale
            downscale_with_gaussian_blur(
                frame_buffer,
                full_texture,
                camera.downscale,
                camera.width,
                camera.height,
                gaussian_radius,
                context,
            )

    rgb_to_lab(frame_buffer, camera.width, camera.height, context)
