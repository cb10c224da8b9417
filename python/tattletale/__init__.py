"""Live packet capture persisted in batches to SQLite, with a JSON read API."""

from .batching import BATCH_THRESHOLD, BatchAccumulator
from .capture import (
    CaptureRunner,
    CaptureSession,
    Device,
    DeviceState,
    MirrorWriter,
    open_live,
)
from .capture_queue import CaptureQueue, OverflowPolicy, QueueEmpty
from .config import AppConfig
from .errors import (
    CaptureError,
    ConfigError,
    MappingError,
    QueueClosed,
    StorageError,
    TattletaleError,
)
from .frames import DpktFrame, Flow, Frame, TransportFlow, decode_frame
from .interfaces import get_hardware_address, list_devices
from .mapper import map_packet, map_packets
from .models import CapturedPacket, InterfaceAddress, StoredPacketRecord
from .pipeline import Pipeline
from .service import QueryService
from .store import PacketStore

__all__ = [
    "BATCH_THRESHOLD",
    "BatchAccumulator",
    "CaptureRunner",
    "CaptureSession",
    "Device",
    "DeviceState",
    "MirrorWriter",
    "open_live",
    "CaptureQueue",
    "OverflowPolicy",
    "QueueEmpty",
    "AppConfig",
    "TattletaleError",
    "CaptureError",
    "ConfigError",
    "MappingError",
    "QueueClosed",
    "StorageError",
    "DpktFrame",
    "Flow",
    "Frame",
    "TransportFlow",
    "decode_frame",
    "get_hardware_address",
    "list_devices",
    "map_packet",
    "map_packets",
    "CapturedPacket",
    "InterfaceAddress",
    "StoredPacketRecord",
    "Pipeline",
    "QueryService",
    "PacketStore",
]
