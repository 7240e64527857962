"""Per-slot camera parameter table resident in device memory."""

import logging
from dataclasses import dataclass, field, fields

import numpy as np
import torch

from .config import MAX_CONSTANT_CAMERA_PARAM_SETS
from .context import ExecutionContext
from .errors import AllocationFailure, TransferFailure, device_call
from .memory import _raw_alloc

logger = logging.getLogger(__name__)


def _zeros(*shape: int):
    return field(default_factory=lambda: np.zeros(shape, dtype=np.float32))


@dataclass
class CameraParameters:
    """Fixed-size camera record consumed by the matching kernels.

    The record is packed and copied as-is; nothing in this package
    interprets the values.

    Attributes:
        P: Projection matrix, shape (3, 4).
        iP: Inverse of the left 3x3 block of P, shape (3, 3).
        R: Rotation matrix, shape (3, 3).
        iR: Inverse rotation, shape (3, 3).
        K: Intrinsic matrix, shape (3, 3).
        iK: Inverse intrinsics, shape (3, 3).
        C: Camera centre, shape (3,).
        XVect: Camera x axis in world frame, shape (3,).
        YVect: Camera y axis in world frame, shape (3,).
        ZVect: Camera z axis in world frame, shape (3,).
    """

    P: np.ndarray = _zeros(3, 4)
    iP: np.ndarray = _zeros(3, 3)
    R: np.ndarray = _zeros(3, 3)
    iR: np.ndarray = _zeros(3, 3)
    K: np.ndarray = _zeros(3, 3)
    iK: np.ndarray = _zeros(3, 3)
    C: np.ndarray = _zeros(3)
    XVect: np.ndarray = _zeros(3)
    YVect: np.ndarray = _zeros(3)
    ZVect: np.ndarray = _zeros(3)

    # float32 values per packed record
    RECORD_SIZE = 12 + 5 * 9 + 4 * 3

    def to_record(self) -> np.ndarray:
        """Pack into a flat float32 record of ``RECORD_SIZE`` values."""
        record = np.concatenate(
            [np.asarray(getattr(self, f.name), dtype=np.float32).ravel() for f in fields(self)]
        )
        if record.size != self.RECORD_SIZE:
            raise ValueError(
                f"Camera parameters pack to {record.size} values, "
                f"expected {self.RECORD_SIZE}"
            )
        return record

    @classmethod
    def from_record(cls, record: np.ndarray | torch.Tensor) -> "CameraParameters":
        """Unpack a flat record produced by ``to_record``."""
        if isinstance(record, torch.Tensor):
            record = record.detach().cpu().numpy()
        record = np.asarray(record, dtype=np.float32).ravel()
        if record.size != cls.RECORD_SIZE:
            raise ValueError(
                f"Expected a record of {cls.RECORD_SIZE} values, got {record.size}"
            )

        values = {}
        offset = 0
        template = cls()
        for f in fields(cls):
            shape = getattr(template, f.name).shape
            count = int(np.prod(shape))
            values[f.name] = record[offset : offset + count].reshape(shape).copy()
            offset += count
        return cls(**values)


class ParameterTable:
    """Fixed-capacity table of camera records, one row per slot.

    Rows are independent: writing slot ``i`` never touches slot ``j``.
    Writes to the same slot are not serialized; each slot must have a single
    writer, which is the caller's responsibility.

    Attributes:
        capacity: Number of slots.
        device: Device holding the table.
    """

    def __init__(
        self,
        capacity: int = MAX_CONSTANT_CAMERA_PARAM_SETS,
        device: str | torch.device = "cpu",
    ):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self.device = torch.device(device)
        with device_call("allocate camera parameter table", AllocationFailure):
            self._data = _raw_alloc(
                (capacity, CameraParameters.RECORD_SIZE), torch.float32, self.device
            )
            self._data.zero_()

    @property
    def data(self) -> torch.Tensor:
        """Table tensor, shape (capacity, RECORD_SIZE), for kernels to read."""
        return self._data

    def _check_slot(self, slot_id: int) -> None:
        if not 0 <= slot_id < self.capacity:
            raise IndexError(
                f"Slot {slot_id} out of range for table of capacity {self.capacity}"
            )

    def set_slot(
        self,
        slot_id: int,
        staging: torch.Tensor,
        context: ExecutionContext | None = None,
    ) -> None:
        """Copy one camera record into the table.

        Synchronous contexts block until the copy has completed. Asynchronous
        contexts enqueue the copy, ordered after earlier work on the same stream.

        Args:
            slot_id: Destination slot, ``0 <= slot_id < capacity``.
            staging: Host record, shape (RECORD_SIZE,), float32 (pinned for
                asynchronous copies).
            context: Execution context; ``None`` is synchronous.

        Raises:
            IndexError: If ``slot_id`` is out of range.
            TransferFailure: If the copy fails.
        """
        self._check_slot(slot_id)
        context = ExecutionContext.resolve(context)

        with device_call("copy camera parameters to parameter table", TransferFailure):
            with context.activate():
                self._data[slot_id].copy_(staging, non_blocking=context.non_blocking)
            context.complete(self.device)

    def get_slot(self, slot_id: int) -> CameraParameters:
        """Read back one slot (blocking)."""
        self._check_slot(slot_id)
        return CameraParameters.from_record(self._data[slot_id])


_tables: dict[torch.device, ParameterTable] = {}


def get_parameter_table(
    device: str | torch.device = "cpu",
    capacity: int | None = None,
) -> ParameterTable:
    """Process-wide parameter table for a device.

    The first call for a device creates the table, with ``capacity`` slots or
    ``MAX_CONSTANT_CAMERA_PARAM_SETS`` when none is given. Later calls return
    it; without a capacity they accept whatever size it was created with.

    Raises:
        ValueError: If an explicit capacity differs from the existing table's.
    """
    device = torch.device(device)
    if device.type == "cuda" and device.index is None:
        device = torch.device("cuda", torch.cuda.current_device())

    table = _tables.get(device)
    if table is None:
        if capacity is None:
            capacity = MAX_CONSTANT_CAMERA_PARAM_SETS
        table = ParameterTable(capacity, device)
        _tables[device] = table
        logger.debug("Created parameter table on %s (%d slots)", device, capacity)
    elif capacity is not None and table.capacity != capacity:
        raise ValueError(
            f"Parameter table on {device} already exists with capacity "
            f"{table.capacity}, requested {capacity}"
        )
    return table
