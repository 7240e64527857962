"""Image kernels run on device frame buffers."""

from .color import rgb_to_lab
from .gaussian import downscale_with_gaussian_blur, gaussian_weights

__all__ = [
    "downscale_with_gaussian_blur",
    "gaussian_weights",
    "rgb_to_lab",
]
