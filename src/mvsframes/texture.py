"""Read-only texture objects over pitched frame buffers."""

import itertools
import logging
from dataclasses import dataclass
from enum import Enum

import torch
import torch.nn.functional as F

from .config import FilterMode, ReadMode, TextureConfig
from .errors import BindingFailure, device_call
from .memory import CHANNELS, PitchedBuffer2D

logger = logging.getLogger(__name__)

_texture_handles = itertools.count(1)


class AddressMode(str, Enum):
    """Out-of-range coordinate handling. Only clamp-to-edge is used."""

    CLAMP = "clamp"


@dataclass(frozen=True)
class ChannelFormat:
    """Per-channel bit widths and numeric kind of a texel."""

    bits: tuple[int, int, int, int]
    kind: str  # "unsigned" or "float"

    @classmethod
    def for_dtype(cls, dtype: torch.dtype) -> "ChannelFormat | None":
        if dtype == torch.uint8:
            return cls((8, 8, 8, 8), "unsigned")
        if dtype == torch.float32:
            return cls((32, 32, 32, 32), "float")
        return None

    @property
    def texel_bytes(self) -> int:
        return sum(self.bits) // 8


@dataclass(frozen=True)
class ResourceDescriptor:
    """Memory a texture reads from: a pitched 2-D region."""

    handle: int
    storage: torch.Tensor
    width: int
    height: int
    pitch: int
    channel_format: ChannelFormat


@dataclass(frozen=True)
class TextureDescriptor:
    """Sampling behavior of a texture. Coordinates are always unnormalized."""

    filter_mode: FilterMode
    read_mode: ReadMode
    address_mode: AddressMode = AddressMode.CLAMP
    normalized_coords: bool = False


class Texture:
    """Sampler bound to a pitched buffer.

    Reads go through the resource descriptor (pointer, pitch, size), never
    through the buffer object, so a texture reads exactly what it was built
    against. After ``destroy()`` the handle is invalid and any read raises
    ``BindingFailure``.
    """

    def __init__(self, resource: ResourceDescriptor, descriptor: TextureDescriptor):
        self.handle = next(_texture_handles)
        self.descriptor = descriptor
        self._resource: ResourceDescriptor | None = resource

    @property
    def valid(self) -> bool:
        return self._resource is not None

    @property
    def resource(self) -> ResourceDescriptor:
        with device_call("access texture resource", BindingFailure) as call:
            if self._resource is None:
                raise call.failure(f"texture {self.handle} has been destroyed")
            return self._resource

    @property
    def width(self) -> int:
        return self.resource.width

    @property
    def height(self) -> int:
        return self.resource.height

    def fetch(self) -> torch.Tensor:
        """Reconstruct the bound image from raw storage.

        Returns:
            Texel values, shape (H, W, 4), stored dtype (no read-mode scaling).
        """
        res = self.resource
        itemsize = res.storage.element_size()
        return torch.as_strided(
            res.storage,
            (res.height, res.width, CHANNELS),
            (res.pitch // itemsize, CHANNELS, 1),
        )

    def sample(self, x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
        """Sample the texture at unnormalized texel coordinates.

        Texel ``i`` covers ``[i, i + 1)``, so its centre is at ``i + 0.5``.
        Coordinates outside the image are clamped to the edge.

        Args:
            x: Column coordinates, any shape, float32, on the texture's device.
            y: Row coordinates, same shape as ``x``.

        Returns:
            Sampled texels, shape ``x.shape + (4,)``, float32. Values are in
            [0, 1] for normalized-float reads, raw stored values otherwise.
        """
        image = self.fetch().float()
        if self.descriptor.read_mode is ReadMode.NORMALIZED_FLOAT:
            image = image / 255.0

        H, W = image.shape[:2]

        if self.descriptor.filter_mode is FilterMode.POINT:
            xi = torch.floor(x).long().clamp(0, W - 1)
            yi = torch.floor(y).long().clamp(0, H - 1)
            return image[yi, xi]

        # Bilinear with align_corners=False matches texel-centre addressing
        grid_x = 2.0 * x.reshape(-1) / W - 1.0
        grid_y = 2.0 * y.reshape(-1) / H - 1.0
        grid = torch.stack([grid_x, grid_y], dim=-1).reshape(1, -1, 1, 2)
        src_4d = image.permute(2, 0, 1).unsqueeze(0)  # (1, 4, H, W)

        sampled = F.grid_sample(
            src_4d, grid, mode="bilinear", padding_mode="border", align_corners=False
        )  # (1, 4, N, 1)

        return sampled[0, :, :, 0].transpose(0, 1).reshape(*x.shape, CHANNELS)

    def destroy(self) -> None:
        """Invalidate the texture. Safe to call more than once."""
        self._resource = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()

    def __repr__(self) -> str:
        state = "valid" if self.valid else "destroyed"
        return f"Texture(handle={self.handle}, {state})"


def build_frame_texture(buffer: PitchedBuffer2D, config: TextureConfig) -> Texture:
    """Bind a texture object to a camera frame buffer.

    The resource descriptor is filled from the buffer at call time, pitch
    included. A stale pitch silently corrupts every row after the first.

    Args:
        buffer: Pitched RGBA device buffer.
        config: Texture build options (filter and read modes).

    Returns:
        Texture bound to ``buffer``.

    Raises:
        BindingFailure: If the buffer is released, its element type is not
            supported, or its pitch cannot describe its rows.
    """
    with device_call("bind texture object to camera frame buffer", BindingFailure) as call:
        if buffer.released:
            raise call.failure("buffer has been released")

        channel_format = ChannelFormat.for_dtype(buffer.dtype)
        if channel_format is None:
            raise call.failure(f"unsupported channel type {buffer.dtype}")

        if (
            buffer.pitch % channel_format.texel_bytes
            or buffer.pitch < buffer.width * channel_format.texel_bytes
        ):
            raise call.failure(
                f"invalid pitch {buffer.pitch} for width {buffer.width} "
                f"({channel_format.texel_bytes} bytes per texel)"
            )

        if (
            config.read_mode is ReadMode.NORMALIZED_FLOAT
            and channel_format.kind != "unsigned"
        ):
            raise call.failure("normalized-float reads need integer texels")

        resource = ResourceDescriptor(
            handle=buffer.handle,
            storage=buffer.storage,
            width=buffer.width,
            height=buffer.height,
            pitch=buffer.pitch,
            channel_format=channel_format,
        )
        descriptor = TextureDescriptor(
            filter_mode=config.filter_mode,
            read_mode=config.read_mode,
        )
        texture = Texture(resource, descriptor)

    logger.debug(
        "Built texture %d over %dx%d buffer (%s, %s)",
        texture.handle,
        buffer.width,
        buffer.height,
        descriptor.filter_mode.value,
        descriptor.read_mode.value,
    )
    return texture
