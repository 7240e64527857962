"""Tests for pitched buffers, staging memory and host frames."""

import numpy as np
import pytest
import torch

import mvsframes.memory as memory
from mvsframes.context import ExecutionContext
from mvsframes.errors import AllocationFailure, TransferFailure
from mvsframes.memory import (
    HostFrame,
    PinnedHostBuffer,
    PitchedBuffer2D,
    compute_pitch,
)


class TestComputePitch:
    """Tests for compute_pitch."""

    def test_float_row_rounded_up(self):
        # 100 px * 16 B = 1600 B -> 2048 B
        assert compute_pitch(100, torch.float32, 512) == 2048

    def test_uchar_row_rounded_up(self):
        # 100 px * 4 B = 400 B -> 512 B
        assert compute_pitch(100, torch.uint8, 512) == 512

    def test_exact_multiple_kept(self):
        assert compute_pitch(32, torch.float32, 512) == 512

    def test_small_alignment(self):
        assert compute_pitch(3, torch.float32, 4) == 48


class TestPitchedBuffer2D:
    """Tests for PitchedBuffer2D."""

    def test_geometry(self, device):
        buffer = PitchedBuffer2D(100, 30, torch.float32, device, alignment=512)
        assert buffer.size == (100, 30)
        assert buffer.pitch == 2048
        assert buffer.bytes_padded == 2048 * 30
        assert buffer.storage.shape == (30, 128, 4)
        assert buffer.view.shape == (30, 100, 4)
        assert buffer.storage.device.type == device.type

    def test_view_shares_storage(self, device):
        buffer = PitchedBuffer2D(10, 5, torch.float32, device)
        buffer.view.fill_(7.0)
        assert torch.all(buffer.storage[:, :10] == 7.0)
        assert buffer.handle == buffer.storage.data_ptr()

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            PitchedBuffer2D(0, 10)

    def test_release(self):
        buffer = PitchedBuffer2D(4, 4)
        buffer.release()
        assert buffer.released
        buffer.release()
        with pytest.raises(ValueError):
            _ = buffer.view

    def test_context_manager_releases(self):
        with PitchedBuffer2D(4, 4) as buffer:
            assert not buffer.released
        assert buffer.released

    def test_allocation_failure(self, monkeypatch):
        """Allocator errors surface as AllocationFailure."""

        def fail(*args, **kwargs):
            raise RuntimeError("CUDA error: out of memory")

        monkeypatch.setattr(memory, "_raw_alloc", fail)

        with pytest.raises(AllocationFailure) as exc_info:
            PitchedBuffer2D(8, 8)
        assert "out of memory" in exc_info.value.diagnostic
        assert exc_info.value.location.startswith("memory.py:")

    def test_copy_from(self, device):
        frame = HostFrame(torch.arange(6 * 5 * 4, dtype=torch.float32).reshape(5, 6, 4))
        buffer = PitchedBuffer2D(6, 5, torch.float32, device)

        buffer.copy_from(frame, ExecutionContext())

        assert torch.equal(buffer.view.cpu(), frame.tensor)

    def test_copy_from_async(self, device):
        if device.type != "cuda":
            pytest.skip("Asynchronous contexts need CUDA")
        frame = HostFrame.from_array(np.full((5, 6, 4), 3.0, dtype=np.float32), pin=True)
        buffer = PitchedBuffer2D(6, 5, torch.float32, device)
        context = ExecutionContext.for_device(device)

        buffer.copy_from(frame, context)
        context.synchronize()

        assert torch.all(buffer.view == 3.0)

    def test_copy_size_mismatch(self):
        frame = HostFrame(torch.zeros(5, 6, 4))
        buffer = PitchedBuffer2D(3, 2)
        with pytest.raises(TransferFailure, match="6x5"):
            buffer.copy_from(frame, ExecutionContext())


class TestPinnedHostBuffer:
    """Tests for PinnedHostBuffer."""

    def test_allocation(self):
        staging = PinnedHostBuffer(69)
        assert staging.tensor.shape == (69,)
        assert staging.tensor.device.type == "cpu"
        assert staging.tensor.is_pinned() == torch.cuda.is_available()

    def test_release(self):
        staging = PinnedHostBuffer(4)
        staging.release()
        assert staging.released
        with pytest.raises(ValueError):
            _ = staging.tensor

    def test_allocation_failure(self, monkeypatch):
        def fail(*args, **kwargs):
            raise RuntimeError("cudaMallocHost failed")

        monkeypatch.setattr(memory, "_raw_alloc", fail)
        with pytest.raises(AllocationFailure):
            PinnedHostBuffer(69)


class TestHostFrame:
    """Tests for HostFrame."""

    def test_rgb_gets_alpha(self):
        rgb = np.zeros((4, 6, 3), dtype=np.uint8)
        frame = HostFrame.from_array(rgb, pin=False)
        assert frame.size == (6, 4)
        assert frame.dtype == torch.float32
        assert torch.all(frame.tensor[..., 3] == 255)

    def test_rgba_kept(self):
        rgba = np.arange(2 * 3 * 4, dtype=np.float32).reshape(2, 3, 4)
        frame = HostFrame.from_array(rgba, dtype=torch.float32, pin=False)
        assert np.array_equal(frame.tensor.numpy(), rgba)

    def test_uchar(self):
        frame = HostFrame.from_array(np.zeros((2, 2, 4), dtype=np.uint8), dtype=torch.uint8)
        assert frame.dtype == torch.uint8

    def test_invalid_shape(self):
        with pytest.raises(ValueError):
            HostFrame.from_array(np.zeros((4, 4)))
        with pytest.raises(ValueError):
            HostFrame(torch.zeros(4, 4, 3))
