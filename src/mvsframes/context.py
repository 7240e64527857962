"""Execution contexts: synchronous or stream-ordered device work."""

from contextlib import contextmanager

import torch


class ExecutionContext:
    """Ordered queue of device operations.

    A context without a stream is synchronous: every operation blocks until it
    has completed. A context wrapping a ``torch.cuda.Stream`` is asynchronous:
    copies and kernels are enqueued without blocking and execute in enqueue
    order on that stream. Nothing orders work across two different streams.
    """

    def __init__(self, stream: "torch.cuda.Stream | None" = None):
        self.stream = stream

    @classmethod
    def resolve(cls, value) -> "ExecutionContext":
        """Coerce ``None``, a CUDA stream or a context into a context.

        Args:
            value: ``None`` (synchronous), a ``torch.cuda.Stream``, or an
                existing ``ExecutionContext``.

        Returns:
            Execution context.
        """
        if isinstance(value, ExecutionContext):
            return value
        return cls(value)

    @classmethod
    def for_device(cls, device: str | torch.device) -> "ExecutionContext":
        """Create an asynchronous context on CUDA, a synchronous one elsewhere."""
        device = torch.device(device)
        if device.type == "cuda":
            return cls(torch.cuda.Stream(device=device))
        return cls()

    @property
    def is_synchronous(self) -> bool:
        return self.stream is None

    @property
    def non_blocking(self) -> bool:
        """Value to pass as ``non_blocking`` to tensor copies."""
        return self.stream is not None

    @contextmanager
    def activate(self):
        """Make this context's stream current for the enclosed operations."""
        if self.stream is None:
            yield
        else:
            with torch.cuda.stream(self.stream):
                yield

    def record_use(self, *tensors: torch.Tensor) -> None:
        """Mark device tensors as in use by this context's stream.

        The caching allocator then defers reuse of their memory until the
        work enqueued so far on the stream has finished, even if the tensors
        are freed earlier on the host.
        """
        if self.stream is None:
            return
        for tensor in tensors:
            if tensor.is_cuda:
                tensor.record_stream(self.stream)

    def complete(self, device: str | torch.device) -> None:
        """Block until enqueued work is done when this context is synchronous."""
        device = torch.device(device)
        if self.stream is None and device.type == "cuda":
            torch.cuda.synchronize(device)

    def synchronize(self) -> None:
        """Caller-side synchronization point for asynchronous contexts."""
        if self.stream is not None:
            self.stream.synchronize()

    def __repr__(self) -> str:
        mode = "synchronous" if self.stream is None else f"stream={self.stream!r}"
        return f"ExecutionContext({mode})"
