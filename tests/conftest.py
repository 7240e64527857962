"""Shared pytest fixtures for mvsframes tests."""

import numpy as np
import pytest
import torch

from mvsframes import CameraParameters, HostFrame, ParameterTable


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


@pytest.fixture
def parameter_table(device):
    """Small private parameter table, isolated from the process-wide one."""
    return ParameterTable(capacity=8, device=device)


@pytest.fixture
def make_frame():
    """Factory for random RGBA host frames with values in [0, 255]."""

    def _make(width, height, seed=0, dtype=torch.float32):
        rng = np.random.default_rng(seed)
        rgba = rng.integers(0, 256, size=(height, width, 4)).astype(np.float32)
        return HostFrame.from_array(rgba, dtype=dtype)

    return _make


@pytest.fixture
def make_params():
    """Factory for camera parameters whose every entry equals a value."""

    def _make(value):
        return CameraParameters.from_record(
            np.full(CameraParameters.RECORD_SIZE, value, dtype=np.float32)
        )

    return _make
