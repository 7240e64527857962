"""Fixed pool of camera slots reused across a sliding window of cameras."""

import logging
from collections import OrderedDict

import numpy as np
import torch

from .camera import CameraResource
from .config import FramesConfig, TextureConfig
from .context import ExecutionContext
from .memory import DEFAULT_PITCH_ALIGNMENT, HostFrame
from .params import CameraParameters, ParameterTable, get_parameter_table

logger = logging.getLogger(__name__)


class DeviceCameraCache:
    """Least-recently-used cache of device-resident cameras.

    Cameras are keyed by ``(logical_camera_id, downscale)``. Adding a camera
    that is already resident returns its slot without touching the device;
    otherwise a free slot is filled, or the least recently used one is
    refilled with the new camera.

    Attributes:
        num_slots: Number of camera slots.
        device: Device holding the frames.
    """

    def __init__(
        self,
        num_slots: int,
        device: str | torch.device = "cpu",
        texture_config: TextureConfig | None = None,
        parameter_table: ParameterTable | None = None,
        pitch_alignment: int = DEFAULT_PITCH_ALIGNMENT,
    ):
        self.device = torch.device(device)
        if parameter_table is None:
            parameter_table = get_parameter_table(self.device)
        if not 1 <= num_slots <= parameter_table.capacity:
            raise ValueError(
                f"num_slots must be in [1, {parameter_table.capacity}], got {num_slots}"
            )

        self.num_slots = num_slots
        self._cameras = [
            CameraResource(
                slot_id,
                device=self.device,
                texture_config=texture_config,
                parameter_table=parameter_table,
                pitch_alignment=pitch_alignment,
            )
            for slot_id in range(num_slots)
        ]
        # (logical_camera_id, downscale) -> slot, least recently used first
        self._resident: OrderedDict[tuple[int, int], int] = OrderedDict()

        logger.info("Created camera cache: %d slots on %s", num_slots, self.device)

    @classmethod
    def from_config(
        cls,
        config: FramesConfig,
        parameter_table: ParameterTable | None = None,
    ) -> "DeviceCameraCache":
        """Build a cache from a loaded configuration."""
        device = torch.device(config.device.device)
        if parameter_table is None:
            parameter_table = get_parameter_table(
                device, config.device.max_camera_slots
            )
        return cls(
            config.device.num_slots,
            device=device,
            texture_config=config.texture,
            parameter_table=parameter_table,
            pitch_alignment=config.device.pitch_alignment,
        )

    def __len__(self) -> int:
        """Number of resident cameras."""
        return len(self._resident)

    def contains(self, logical_camera_id: int, downscale: int) -> bool:
        return (logical_camera_id, downscale) in self._resident

    @property
    def cameras(self) -> list[CameraResource]:
        """All slots, resident or not, in slot order."""
        return list(self._cameras)

    @property
    def memory_footprint(self) -> int:
        """Bytes held by all frame buffers."""
        return sum(camera.memory_footprint for camera in self._cameras)

    def _acquire_slot(self) -> int:
        used = set(self._resident.values())
        for slot_id in range(self.num_slots):
            if slot_id not in used:
                return slot_id

        key, slot_id = self._resident.popitem(last=False)
        logger.debug("Evicting camera %d (downscale %d) from slot %d", *key, slot_id)
        return slot_id

    def add_camera(
        self,
        logical_camera_id: int,
        downscale: int,
        host_frame: HostFrame | np.ndarray,
        params: CameraParameters | np.ndarray,
        context: ExecutionContext | None = None,
    ) -> CameraResource:
        """Make a camera resident on the device.

        Args:
            logical_camera_id: Camera identifier.
            downscale: Integer downscale factor, at least 1.
            host_frame: Full-resolution frame of the camera.
            params: Camera parameters.
            context: Execution context; ``None`` is synchronous.

        Returns:
            Camera resource holding the camera.
        """
        key = (logical_camera_id, downscale)
        if key in self._resident:
            self._resident.move_to_end(key)
            logger.debug("Camera %d (downscale %d) already resident", *key)
            return self._cameras[self._resident[key]]

        if not isinstance(host_frame, HostFrame):
            texture_config = self._cameras[0].texture_config
            host_frame = HostFrame.from_array(
                host_frame, dtype=texture_config.pixel_dtype
            )

        slot_id = self._acquire_slot()
        camera = self._cameras[slot_id]
        camera.fill(
            logical_camera_id,
            downscale,
            host_frame.width,
            host_frame.height,
            host_frame,
            params,
            context,
        )
        self._resident[key] = slot_id
        return camera

    def request_camera(self, logical_camera_id: int, downscale: int) -> CameraResource:
        """Get a resident camera and mark it as recently used.

        Raises:
            KeyError: If the camera is not resident.
        """
        key = (logical_camera_id, downscale)
        if key not in self._resident:
            raise KeyError(
                f"Camera {logical_camera_id} (downscale {downscale}) is not resident"
            )
        self._resident.move_to_end(key)
        return self._cameras[self._resident[key]]

    def close(self) -> None:
        """Release every slot."""
        for camera in self._cameras:
            camera.close()
        self._resident.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
