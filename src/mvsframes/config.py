"""Configuration management for device-resident camera frames."""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import torch
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

# Capacity of the per-device camera parameter table
MAX_CONSTANT_CAMERA_PARAM_SETS = 100


class FilterMode(str, Enum):
    """Texture filtering mode."""

    POINT = "point"
    LINEAR = "linear"


class ReadMode(str, Enum):
    """Texture read mode.

    - ELEMENT_TYPE: texels are returned with their stored values.
    - NORMALIZED_FLOAT: 8-bit texels are rescaled to [0, 1] on read.
    """

    ELEMENT_TYPE = "element_type"
    NORMALIZED_FLOAT = "normalized_float"


class TextureConfig(BaseModel):
    """Frame texture build options.

    Resolved once at program start and passed to the texture builder.

    Attributes:
        use_uchar: Store frames as 8-bit RGBA instead of float32 RGBA.
        use_interpolation: Use bilinear texture filtering instead of nearest
            texel lookup (slower, but better sub-pixel quality at low resolution).
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    use_uchar: bool = False
    use_interpolation: bool = False

    @property
    def filter_mode(self) -> FilterMode:
        return FilterMode.LINEAR if self.use_interpolation else FilterMode.POINT

    @property
    def read_mode(self) -> ReadMode:
        # Normalized reads only exist for integer texels
        if self.use_uchar and self.use_interpolation:
            return ReadMode.NORMALIZED_FLOAT
        return ReadMode.ELEMENT_TYPE

    @property
    def pixel_dtype(self) -> torch.dtype:
        return torch.uint8 if self.use_uchar else torch.float32

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "TextureConfig":
        """Warn about unknown configuration keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in TextureConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class DeviceConfig(BaseModel):
    """Device and slot layout settings.

    Attributes:
        device: PyTorch device string.
        max_camera_slots: Capacity of the camera parameter table.
        num_slots: Number of camera slots kept resident on the device.
        pitch_alignment: Row pitch alignment of frame buffers, in bytes.
    """

    model_config = ConfigDict(extra="allow")

    device: Literal["cpu", "cuda"] = "cpu"
    max_camera_slots: int = MAX_CONSTANT_CAMERA_PARAM_SETS
    num_slots: int = 4
    pitch_alignment: int = 512

    @field_validator("pitch_alignment")
    @classmethod
    def validate_pitch_alignment(cls, v: int) -> int:
        """Validate that pitch_alignment is a positive power of two."""
        if v <= 0 or v & (v - 1):
            raise ValueError(f"pitch_alignment must be a power of two, got {v}")
        return v

    @field_validator("max_camera_slots", "num_slots")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @model_validator(mode="after")
    def check_slot_capacity(self) -> "DeviceConfig":
        """Validate that every slot fits in the parameter table."""
        if self.num_slots > self.max_camera_slots:
            raise ValueError(
                f"num_slots ({self.num_slots}) exceeds max_camera_slots "
                f"({self.max_camera_slots})"
            )
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in DeviceConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self


class FramesConfig(BaseModel):
    """Top-level configuration.

    Attributes:
        texture: Frame texture build options.
        device: Device and slot layout settings.
    """

    model_config = ConfigDict(extra="allow")

    texture: TextureConfig = Field(default_factory=TextureConfig)
    device: DeviceConfig = Field(default_factory=DeviceConfig)

    @model_validator(mode="after")
    def warn_extra_fields(self) -> "FramesConfig":
        """Warn about unknown top-level keys."""
        if self.__pydantic_extra__:
            logger.warning(
                "Unknown config keys in FramesConfig (ignored): %s",
                list(self.__pydantic_extra__.keys()),
            )
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "FramesConfig":
        """Load configuration from a YAML file.

        Missing fields use their default values.

        Args:
            path: Path to YAML configuration file.

        Returns:
            Loaded configuration with defaults filled in.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            ValueError: If validation fails (with all errors collected).
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            data = {}

        cls._log_default_sections(data)

        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            formatted_errors = format_validation_errors(e)
            raise ValueError(
                f"Configuration validation failed:\n{formatted_errors}"
            ) from None

        return config

    @staticmethod
    def _log_default_sections(data: dict[str, Any]) -> None:
        for section in ("texture", "device"):
            if section not in data:
                logger.info("Using default: %s (all defaults)", section)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to a YAML file.

        All fields including defaults are written for explicitness.

        Args:
            path: Path to output YAML file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json")

        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors with YAML-style paths.

    Args:
        error: Pydantic ValidationError.

    Returns:
        Formatted error string with YAML paths and messages.
    """
    lines = []
    for err in error.errors():
        path_parts = []
        for part in err["loc"]:
            if isinstance(part, int):
                path_parts[-1] = f"{path_parts[-1]}[{part}]"
            else:
                path_parts.append(str(part))

        path = ".".join(path_parts)
        lines.append(f"  {path}: {err['msg']}")

    return "\n".join(lines)
