"""Tests for execution contexts."""

import pytest
import torch

from mvsframes.context import ExecutionContext


class TestExecutionContext:
    """Tests for ExecutionContext."""

    def test_resolve(self):
        context = ExecutionContext()
        assert ExecutionContext.resolve(context) is context
        assert ExecutionContext.resolve(None).is_synchronous

    def test_cpu_is_synchronous(self):
        context = ExecutionContext.for_device("cpu")
        assert context.is_synchronous
        assert context.non_blocking is False

    def test_record_use_synchronous_is_noop(self, device):
        tensor = torch.zeros(4, device=device)
        ExecutionContext().record_use(tensor)

    def test_record_use_defers_reuse(self):
        if not torch.cuda.is_available():
            pytest.skip("CUDA not available")
        context = ExecutionContext.for_device("cuda")
        with context.activate():
            torch.cuda._sleep(50_000_000)
        tensor = torch.empty(1 << 20, device="cuda")
        ptr = tensor.data_ptr()

        context.record_use(tensor)
        del tensor
        reused = torch.empty(1 << 20, device="cuda")

        assert reused.data_ptr() != ptr
        context.synchronize()
