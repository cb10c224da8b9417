"""Live frame capture feeding the capture queue."""

from __future__ import annotations

import enum
import logging
import select
import threading
from contextlib import ExitStack, closing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol, Sequence, Tuple, Union

import dpkt

from .capture_queue import CaptureQueue
from .errors import CaptureError
from .frames import DpktFrame
from .models import CapturedPacket, InterfaceAddress
from .utils import utcnow

logger = logging.getLogger(__name__)

SNAPSHOT_LENGTH = 65_535
PROMISCUOUS = True
READ_TIMEOUT = 30.0
LINK_TYPE_ETHERNET = dpkt.pcap.DLT_EN10MB

RawFrame = Tuple[bytes, float]


class CaptureHandle(Protocol):
    """Live capture handle as seen by the session loop.

    ``read`` returns ``(frame, timestamp)``, ``None`` when the read timeout
    elapsed without a frame, and raises :class:`EOFError` once capture ends.
    """

    link_type: int

    def read(self) -> Optional[RawFrame]:  # pragma: no cover - protocol definition
        ...

    def set_filter(self, expression: str) -> None:  # pragma: no cover - protocol definition
        ...

    def close(self) -> None:  # pragma: no cover - protocol definition
        ...


HandleOpener = Callable[[str, int, bool, float], CaptureHandle]


class ScapyCaptureHandle:
    """Capture handle backed by Scapy's layer 2 listening socket."""

    link_type = LINK_TYPE_ETHERNET

    def __init__(self, interface: str, snaplen: int, promisc: bool, timeout: float) -> None:
        self.interface = interface
        self.snaplen = snaplen
        self.promiscuous = promisc
        self.read_timeout = timeout
        self._socket = self._open(None)

    def _open(self, bpf_filter: Optional[str]):
        from scapy.config import conf  # type: ignore

        return conf.L2listen(iface=self.interface, promisc=self.promiscuous, filter=bpf_filter)

    def set_filter(self, expression: str) -> None:
        # Scapy applies BPF programs when the socket is opened, so swap sockets.
        filtered = self._open(expression)
        previous, self._socket = self._socket, filtered
        previous.close()

    def read(self) -> Optional[RawFrame]:
        sock = self._socket
        if sock is None:
            raise EOFError(f"capture on {self.interface} is closed")
        ready, _, _ = select.select([sock], [], [], self.read_timeout)
        if not ready:
            return None
        packet = sock.recv(self.snaplen)
        if packet is None:
            return None
        return bytes(packet)[: self.snaplen], float(packet.time)

    def close(self) -> None:
        sock, self._socket = self._socket, None
        if sock is not None:
            sock.close()


def open_live(
    interface: str,
    snaplen: int = SNAPSHOT_LENGTH,
    promisc: bool = PROMISCUOUS,
    timeout: float = READ_TIMEOUT,
) -> CaptureHandle:
    """Open a live capture handle on *interface*."""

    return ScapyCaptureHandle(interface, snaplen, promisc, timeout)


class MirrorWriter:
    """Writes captured frames to a pcap file alongside live processing."""

    def __init__(
        self,
        path: Union[str, Path],
        *,
        snaplen: int = SNAPSHOT_LENGTH,
        linktype: int = LINK_TYPE_ETHERNET,
    ) -> None:
        self.path = Path(path)
        handle = self.path.open("wb")
        try:
            # The global header is written on construction.
            self._writer = dpkt.pcap.Writer(handle, snaplen=snaplen, linktype=linktype)
        except Exception:
            handle.close()
            raise

    def write(self, frame: bytes, timestamp: Optional[float] = None) -> None:
        self._writer.writepkt(frame, ts=timestamp)

    def close(self) -> None:
        self._writer.close()


class CaptureSession:
    """One live capture on one interface, producing frames until closed."""

    def __init__(
        self,
        interface: str,
        filter_expression: str = "",
        mirror_path: Union[str, Path, None] = "",
        *,
        opener: HandleOpener = open_live,
        snaplen: int = SNAPSHOT_LENGTH,
        promiscuous: bool = PROMISCUOUS,
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        self.interface = interface
        self.filter_expression = filter_expression or ""
        self.mirror_path = str(mirror_path or "")
        self.snaplen = snaplen
        self.promiscuous = promiscuous
        self.read_timeout = read_timeout
        self._opener = opener

    def frames(self, stop_event: Optional[threading.Event] = None) -> Iterator[DpktFrame]:
        """Yield frames until the device closes, reads fail or *stop_event* is set.

        Resources are released most-recently-acquired first, on every exit.
        """
        with ExitStack() as stack:
            mirror, handle = self._setup(stack)
            while stop_event is None or not stop_event.is_set():
                try:
                    raw = handle.read()
                except EOFError:
                    logger.info("Capture on %s ended", self.interface)
                    return
                except OSError as exc:
                    raise CaptureError(f"Failed reading from interface '{self.interface}'") from exc

                if raw is None:
                    continue

                data, timestamp = raw
                if mirror is not None:
                    mirror.write(data, timestamp)
                yield DpktFrame(data)

    def _setup(self, stack: ExitStack) -> Tuple[Optional[MirrorWriter], CaptureHandle]:
        mirror: Optional[MirrorWriter] = None
        if self.mirror_path:
            try:
                mirror = MirrorWriter(self.mirror_path, snaplen=self.snaplen)
            except (OSError, ValueError) as exc:
                raise CaptureError(f"Failed to create mirror file '{self.mirror_path}'") from exc
            stack.callback(mirror.close)
            logger.info("Mirroring frames to %s", self.mirror_path)

        try:
            handle = self._opener(self.interface, self.snaplen, self.promiscuous, self.read_timeout)
        except Exception as exc:
            raise CaptureError(f"Failed to open capture on interface '{self.interface}'") from exc
        stack.callback(handle.close)

        if self.filter_expression:
            try:
                handle.set_filter(self.filter_expression)
            except Exception as exc:
                raise CaptureError(
                    f"Failed to apply filter '{self.filter_expression}' on '{self.interface}'"
                ) from exc

        return mirror, handle


class DeviceState(str, enum.Enum):
    NEW = "new"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass
class Device:
    """A capture-capable interface and its single capture session."""

    name: str
    description: str = ""
    addresses: Sequence[InterfaceAddress] = ()
    hardware_address: Optional[str] = None
    is_loopback: bool = False
    state: DeviceState = field(default=DeviceState.NEW, init=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def start(
        self,
        packet_queue: CaptureQueue,
        *,
        filter_expression: str = "",
        mirror_path: Union[str, Path, None] = "",
        stop_event: Optional[threading.Event] = None,
        opener: HandleOpener = open_live,
    ) -> int:
        """Capture until the session ends, pushing every frame onto *packet_queue*.

        Returns the number of frames queued.  A device runs at most once.
        """
        with self._lock:
            if self.state is not DeviceState.NEW:
                raise CaptureError(f"Device '{self.name}' has already been {self.state.value}")
            self.state = DeviceState.STARTED

        logger.info("Starting capture on %s", self.name)
        session = CaptureSession(self.name, filter_expression, mirror_path, opener=opener)
        queued = 0
        try:
            with closing(session.frames(stop_event)) as frames:
                for frame in frames:
                    now = utcnow()
                    packet_queue.push(
                        CapturedPacket(frame=frame, captured_at=now, updated_at=now, device_id=self.name)
                    )
                    queued += 1
                    logger.debug("Queued frame %d from %s", queued, self.name)
        finally:
            self.state = DeviceState.STOPPED
            logger.info("Capture on %s stopped after %d frames", self.name, queued)
        return queued


class CaptureRunner:
    """Runs a device's capture loop on a dedicated thread."""

    def __init__(
        self,
        device: Device,
        packet_queue: CaptureQueue,
        *,
        filter_expression: str = "",
        mirror_path: Union[str, Path, None] = "",
        opener: HandleOpener = open_live,
        on_exit: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> None:
        self.device = device
        self.packet_queue = packet_queue
        self.filter_expression = filter_expression
        self.mirror_path = mirror_path
        self.error: Optional[BaseException] = None
        self.frames_queued = 0

        self._opener = opener
        self._on_exit = on_exit
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                raise CaptureError("Capture already running")
            self._thread = threading.Thread(
                target=self._run,
                name=f"capture-{self.device.name}",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the loop to exit between frames and wait for it."""
        self._stop_event.set()
        self.join(timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            self.frames_queued = self.device.start(
                self.packet_queue,
                filter_expression=self.filter_expression,
                mirror_path=self.mirror_path,
                stop_event=self._stop_event,
                opener=self._opener,
            )
        except Exception as exc:
            logger.exception("Capture on %s failed", self.device.name)
            self.error = exc
        if self._on_exit is not None:
            try:
                self._on_exit(self.error)
            except Exception:  # pragma: no cover - user supplied handler
                logger.exception("Capture exit handler raised an exception")


__all__ = [
    "SNAPSHOT_LENGTH",
    "PROMISCUOUS",
    "READ_TIMEOUT",
    "LINK_TYPE_ETHERNET",
    "CaptureHandle",
    "ScapyCaptureHandle",
    "open_live",
    "MirrorWriter",
    "CaptureSession",
    "DeviceState",
    "Device",
    "CaptureRunner",
]
