"""Per-slot device-resident camera: frame buffer, texture and parameters."""

import logging

import numpy as np
import torch

from .config import TextureConfig
from .context import ExecutionContext
from .memory import DEFAULT_PITCH_ALIGNMENT, HostFrame, PinnedHostBuffer, PitchedBuffer2D
from .params import CameraParameters, ParameterTable, get_parameter_table
from .preprocess import fill_device_frame
from .texture import Texture, build_frame_texture

logger = logging.getLogger(__name__)


class CameraResource:
    """Device-side state of one camera slot.

    A slot is a fixed row of the parameter table. The logical camera it holds
    changes from fill to fill as the caller slides a window over the cameras
    of a scene. The frame buffer and its texture are rebuilt only when the
    scaled frame size changes; the texture always describes the current buffer.

    Construction allocates nothing on the device. Call ``close()`` (or use
    the instance as a context manager) to release the buffers.

    A slot must have a single writer: concurrent ``fill()`` calls on the same
    instance race.
    """

    def __init__(
        self,
        slot_id: int,
        device: str | torch.device = "cpu",
        texture_config: TextureConfig | None = None,
        parameter_table: ParameterTable | None = None,
        pitch_alignment: int = DEFAULT_PITCH_ALIGNMENT,
    ):
        """Initialize an empty camera slot.

        Args:
            slot_id: Row of the parameter table owned by this camera.
            device: Device holding the frame buffer.
            texture_config: Texture build options. Defaults to float32
                texels with point filtering.
            parameter_table: Table receiving the camera parameters. Defaults
                to the process-wide table of ``device``.
            pitch_alignment: Row pitch alignment of frame buffers, in bytes.

        Raises:
            ValueError: If ``slot_id`` does not fit in the parameter table.
        """
        self.device = torch.device(device)
        self.texture_config = texture_config or TextureConfig()
        self.pitch_alignment = pitch_alignment
        if parameter_table is None:
            parameter_table = get_parameter_table(self.device)
        self._parameter_table = parameter_table

        if not 0 <= slot_id < self._parameter_table.capacity:
            raise ValueError(
                f"slot_id {slot_id} out of range for parameter table of capacity "
                f"{self._parameter_table.capacity}"
            )
        self._slot_id = slot_id

        self._logical_camera_id = -1
        self._original_width = -1
        self._original_height = -1
        self._width = -1
        self._height = -1
        self._downscale = -1
        self._memory_footprint = 0

        self._frame: PitchedBuffer2D | None = None
        self._texture: Texture | None = None
        self._params_staging: PinnedHostBuffer | None = None

    @property
    def slot_id(self) -> int:
        return self._slot_id

    @property
    def logical_camera_id(self) -> int:
        """Camera currently held by this slot, -1 before the first fill."""
        return self._logical_camera_id

    @property
    def downscale(self) -> int:
        return self._downscale

    @property
    def original_width(self) -> int:
        return self._original_width

    @property
    def original_height(self) -> int:
        return self._original_height

    @property
    def width(self) -> int:
        """Scaled frame width."""
        return self._width

    @property
    def height(self) -> int:
        """Scaled frame height."""
        return self._height

    @property
    def memory_footprint(self) -> int:
        """Bytes held by the frame buffer, padding included."""
        return self._memory_footprint

    @property
    def frame_buffer(self) -> PitchedBuffer2D | None:
        return self._frame

    @property
    def texture(self) -> Texture | None:
        return self._texture

    @property
    def texture_handle(self) -> int | None:
        """Handle of the bound texture, consumed by the matching kernels."""
        return self._texture.handle if self._texture is not None else None

    @property
    def parameter_table(self) -> ParameterTable:
        return self._parameter_table

    @property
    def parameters(self) -> CameraParameters:
        """Parameters currently stored in this slot's table row."""
        return self._parameter_table.get_slot(self._slot_id)

    def fill(
        self,
        logical_camera_id: int,
        downscale: int,
        original_width: int,
        original_height: int,
        host_frame: HostFrame | np.ndarray,
        params: CameraParameters | np.ndarray,
        context: ExecutionContext | None = None,
    ) -> None:
        """Load a camera into this slot.

        Updates the parameter table row, reallocates the frame buffer and
        texture if the scaled size changed, then uploads the frame
        (downscaled and converted to CIELAB).

        With a synchronous context everything has completed on return. With
        an asynchronous context the work is enqueued in order on its stream
        and the caller synchronizes before reading the texture.

        Args:
            logical_camera_id: Camera now held by this slot.
            downscale: Integer downscale factor, at least 1.
            original_width: Width of the full-resolution frame.
            original_height: Height of the full-resolution frame.
            host_frame: Full-resolution RGBA frame, or an RGB(A) array.
            params: Camera parameters, or an already packed record.
            context: Execution context (``None``, a CUDA stream or an
                ``ExecutionContext``); ``None`` is synchronous.

        Raises:
            ValueError: If ``downscale`` is less than 1 or the scaled size is
                empty. The slot is left unchanged.
            DeviceError: If any device operation fails. The slot may then be
                inconsistent and must not be used for matching.
        """
        if downscale < 1:
            raise ValueError(f"downscale must be at least 1, got {downscale}")
        if original_width // downscale < 1 or original_height // downscale < 1:
            raise ValueError(
                f"{original_width}x{original_height} frame downscaled by "
                f"{downscale} has an empty scaled size"
            )

        context = ExecutionContext.resolve(context)
        if not isinstance(host_frame, HostFrame):
            host_frame = HostFrame.from_array(
                host_frame, dtype=self.texture_config.pixel_dtype
            )

        self._logical_camera_id = logical_camera_id
        self._original_width = original_width
        self._original_height = original_height
        self._width = original_width // downscale
        self._height = original_height // downscale
        self._downscale = downscale

        # Staging memory is reallocated on every fill, even though its size never changes
        if self._params_staging is not None:
            self._params_staging.release()
            self._params_staging = None
        self._params_staging = PinnedHostBuffer(CameraParameters.RECORD_SIZE)

        if isinstance(params, CameraParameters):
            record = params.to_record()
        else:
            record = np.asarray(params, dtype=np.float32).ravel()
            if record.size != CameraParameters.RECORD_SIZE:
                raise ValueError(
                    f"Expected a record of {CameraParameters.RECORD_SIZE} values, "
                    f"got {record.size}"
                )
        self._params_staging.tensor.copy_(torch.from_numpy(record))

        self._parameter_table.set_slot(
            self._slot_id, self._params_staging.tensor, context
        )

        if self._frame is None or self._frame.size != (self._width, self._height):
            self._release_frame()
            self._frame = PitchedBuffer2D(
                self._width,
                self._height,
                dtype=self.texture_config.pixel_dtype,
                device=self.device,
                alignment=self.pitch_alignment,
            )
            self._memory_footprint = self._frame.bytes_padded
            self._texture = build_frame_texture(self._frame, self.texture_config)
            logger.debug(
                "Slot %d: allocated %dx%d frame (%d bytes), texture %d",
                self._slot_id,
                self._width,
                self._height,
                self._memory_footprint,
                self._texture.handle,
            )

        fill_device_frame(self, host_frame, context)

    def _release_frame(self) -> None:
        # Texture first: it must never reference a freed buffer
        if self._texture is not None:
            self._texture.destroy()
            self._texture = None
        if self._frame is not None:
            self._frame.release()
            self._frame = None
        self._memory_footprint = 0

    def close(self) -> None:
        """Release the frame buffer, texture and staging memory."""
        self._release_frame()
        if self._params_staging is not None:
            self._params_staging.release()
            self._params_staging = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (
            f"CameraResource(slot={self._slot_id}, camera={self._logical_camera_id}, "
            f"{self._width}x{self._height}, downscale={self._downscale})"
        )
