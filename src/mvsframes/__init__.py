"""Device-resident camera frames for multi-view stereo depth estimation."""

from .cache import DeviceCameraCache
from .camera import CameraResource
from .config import (
    DeviceConfig,
    FilterMode,
    FramesConfig,
    ReadMode,
    TextureConfig,
)
from .context import ExecutionContext
from .errors import (
    AllocationFailure,
    BindingFailure,
    DeviceError,
    KernelFailure,
    TransferFailure,
)
from .memory import HostFrame, PinnedHostBuffer, PitchedBuffer2D
from .params import CameraParameters, ParameterTable, get_parameter_table
from .preprocess import fill_device_frame
from .texture import AddressMode, Texture, build_frame_texture

__version__ = "0.1.0"

__all__ = [
    "FramesConfig",
    "TextureConfig",
    "DeviceConfig",
    "FilterMode",
    "ReadMode",
    "AddressMode",
    "DeviceError",
    "AllocationFailure",
    "TransferFailure",
    "BindingFailure",
    "KernelFailure",
    "ExecutionContext",
    "HostFrame",
    "PinnedHostBuffer",
    "PitchedBuffer2D",
    "CameraParameters",
    "ParameterTable",
    "get_parameter_table",
    "Texture",
    "build_frame_texture",
    "fill_device_frame",
    "CameraResource",
    "DeviceCameraCache",
]
