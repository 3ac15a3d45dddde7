"""Framed image streams over TCP: a test-frame generator and an object-detecting collector.

Every frame on the wire is a header (total chunk size, frame id) followed by the
raw image bytes.
"""

from __future__ import annotations

import argparse
import logging
import os
import select
import socket
import struct
import sys
import threading
from dataclasses import dataclass
from math import prod
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Sequence

import numpy as np
from PIL import Image

log = logging.getLogger(__name__)

SOURCE_PATH_ENV = "TEST_SOURCE_PATH"
DATA_CNT = 873
IMAGE_RAW_WIDTH = 960
IMAGE_RAW_HEIGHT = 1920
IMAGE_RAW_CHANNELS = 3
IMAGE_RAW_DEPTH = 8
IMAGE_RAW_SIZE = IMAGE_RAW_WIDTH * IMAGE_RAW_HEIGHT * IMAGE_RAW_CHANNELS * IMAGE_RAW_DEPTH // 8

_HEADER = struct.Struct("<Qi")
IMAGE_HEADER_SIZE = _HEADER.size
DATA_SIZE = IMAGE_HEADER_SIZE + IMAGE_RAW_SIZE

FRAME_INTERVAL = 0.0625
MAX_PENDING_CONNECT = 10
ACCEPT_POLL_INTERVAL = 0.5

EMPTY_RADIUS = 135
OBJECT_RADIUS = 150
MIN_OBJECT_FRAMES = 16
MIN_EMPTY_FRAMES = 8


@dataclass(frozen=True)
class FrameHeader:
    """Header of one framed chunk: its total size (header included) and frame id."""

    data_size: int
    frame_id: int

    SIZE = _HEADER.size

    @property
    def payload_size(self) -> int:
        return self.data_size - self.SIZE

    def pack(self) -> bytes:
        """Encode the header."""
        return _HEADER.pack(self.data_size, self.frame_id)

    @classmethod
    def unpack(cls, data: bytes) -> "FrameHeader":
        """Decode the header from the start of ``data``."""
        if len(data) < _HEADER.size:
            raise ValueError(
                f"frame header too short: {len(data)} bytes, needs {_HEADER.size}"
            )
        return cls(*_HEADER.unpack_from(data))


def pack_frame(frame_id: int, payload: bytes) -> bytes:
    """A complete chunk: header followed by ``payload``."""
    header = FrameHeader(data_size=FrameHeader.SIZE + len(payload), frame_id=frame_id)
    return header.pack() + bytes(payload)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frames(stream: BinaryIO) -> Iterator[tuple[FrameHeader, bytes]]:
    """Yield (header, payload) for every chunk in ``stream`` until it ends.

    Raises EOFError when the stream ends inside a chunk and ValueError when a
    header announces a size smaller than the header itself.
    """
    while True:
        raw = _read_exact(stream, FrameHeader.SIZE)
        if not raw:
            return
        if len(raw) < FrameHeader.SIZE:
            raise EOFError("stream ended inside a frame header")
        header = FrameHeader.unpack(raw)
        if header.data_size < FrameHeader.SIZE:
            raise ValueError(f"frame {header.frame_id} announces size {header.data_size}")
        if header.data_size != DATA_SIZE:
            log.debug(
                "strange data size = %d instead of %d", header.data_size, DATA_SIZE
            )
        payload = _read_exact(stream, header.payload_size)
        if len(payload) < header.payload_size:
            raise EOFError(f"stream ended inside frame {header.frame_id}")
        yield header, payload


@dataclass
class ObjectTracker:
    """Detects when an object has passed the camera from a sequence of radii.

    An object is complete once at least ``min_object_frames`` frames showed it
    and at least ``min_empty_frames`` empty frames followed.
    """

    empty_radius: float = EMPTY_RADIUS
    object_radius: float = OBJECT_RADIUS
    min_object_frames: int = MIN_OBJECT_FRAMES
    min_empty_frames: int = MIN_EMPTY_FRAMES
    object_frames: int = 0
    empty_frames: int = 0
    other_frames: int = 0
    objects: int = 0

    def update(self, radius: float) -> bool:
        """Account for one frame; True when it completes an object."""
        if radius < self.empty_radius:
            self.empty_frames += 1
            if (
                self.object_frames >= self.min_object_frames
                and self.empty_frames >= self.min_empty_frames
            ):
                total = self.empty_frames + self.object_frames + self.other_frames
                log.info("object break is detected after %d frames", total)
                self.objects += 1
                self.object_frames = self.empty_frames = self.other_frames = 0
                return True
        elif radius >= self.object_radius:
            self.object_frames += 1 + self.empty_frames + self.other_frames
            self.empty_frames = 0
            self.other_frames = 0
        else:
            self.other_frames += 1
        return False


def _load_payloads(directory: str | Path, count: int) -> list[bytes]:
    """Read ``0.jpg`` .. ``count-1.jpg`` from ``directory`` as raw BGR bytes."""
    payloads = []
    for index in range(count):
        path = Path(directory) / f"{index}.jpg"
        with Image.open(path) as img:
            pixels = np.asarray(img.convert("RGB"))[..., ::-1]
        data = pixels.tobytes()
        if len(data) != IMAGE_RAW_SIZE:
            log.warning(
                "problems with datasize, orig = %d, IMAGE_RAW_SIZE = %d",
                len(data),
                IMAGE_RAW_SIZE,
            )
            data = data[:IMAGE_RAW_SIZE].ljust(IMAGE_RAW_SIZE, b"\0")
        payloads.append(data)
        log.debug("chunk_size = %d data_id = %d", DATA_SIZE, index)
    return payloads


class FrameGenerator:
    """Serves a fixed set of frames, cycled endlessly, to every TCP client."""

    def __init__(self, payloads: Sequence[bytes], interval: float = FRAME_INTERVAL) -> None:
        if not payloads:
            raise ValueError("at least one frame is needed")
        self._chunks = [pack_frame(i, p) for i, p in enumerate(payloads)]
        self.interval = interval
        self.stop_event = threading.Event()
        self.listening = threading.Event()
        self.address: tuple | None = None
        self._next = 0
        self._lock = threading.Lock()

    def next_frame(self) -> bytes:
        """The next chunk in the cycle, header included."""
        with self._lock:
            chunk = self._chunks[self._next]
            self._next = (self._next + 1) % len(self._chunks)
        return chunk

    def _stream(self, conn: socket.socket) -> None:
        with conn:
            while not self.stop_event.is_set():
                chunk = self.next_frame()
                log.debug("chunk_size = %d", len(chunk))
                try:
                    conn.sendall(chunk)
                except OSError:
                    break
                if self.stop_event.wait(self.interval):
                    break

    def _listen(self, port: int | str) -> socket.socket:
        last_error: OSError | None = None
        for family, socktype, proto, _, addr in socket.getaddrinfo(
            None, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        ):
            try:
                server = socket.socket(family, socktype, proto)
            except OSError as exc:
                last_error = exc
                continue
            try:
                server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server.bind(addr)
            except OSError as exc:
                last_error = exc
                server.close()
                continue
            return server
        raise OSError(f"could not bind port {port}") from last_error

    def serve(self, port: int | str) -> None:
        """Accept clients on ``port`` until ``stop_event`` is set.

        Raises OSError when the port cannot be bound or listened on.
        """
        server = self._listen(port)
        handlers: list[threading.Thread] = []
        with server:
            server.listen(MAX_PENDING_CONNECT)
            self.address = server.getsockname()
            self.listening.set()
            log.info("data ready, waiting for connection on %s", self.address)
            try:
                while not self.stop_event.is_set():
                    readable, _, _ = select.select([server], [], [], ACCEPT_POLL_INTERVAL)
                    if not readable:
                        continue
                    try:
                        conn, peer = server.accept()
                    except (ConnectionAbortedError, InterruptedError, BlockingIOError):
                        continue
                    log.info("Received connection from %s:%s", peer[0], peer[1])
                    handler = threading.Thread(
                        target=self._stream, args=(conn,), name="frame-stream", daemon=True
                    )
                    handler.start()
                    handlers.append(handler)
            finally:
                self.listening.clear()
                self.stop_event.set()
                for handler in handlers:
                    handler.join()


class FrameCollector:
    """Receives frames from a generator and tracks objects passing the camera.

    ``measure`` turns an image into a radius; without it frames are only counted.
    ``on_object`` receives the zero-based index of every completed object.
    """

    def __init__(
        self,
        connection: socket.socket | tuple[str, int | str],
        measure: Callable[[np.ndarray], float] | None = None,
        on_object: Callable[[int], None] | None = None,
        shape: tuple[int, ...] = (IMAGE_RAW_HEIGHT, IMAGE_RAW_WIDTH, IMAGE_RAW_CHANNELS),
    ) -> None:
        if isinstance(connection, socket.socket):
            self._sock = connection
        else:
            host, port = connection
            self._sock = socket.create_connection((host, int(port)))
        self.measure = measure
        self.on_object = on_object
        self.shape = tuple(shape)
        self.tracker = ObjectTracker()
        self.data_ready = threading.Semaphore(0)
        self.frames = 0
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _image(self, payload: bytes) -> np.ndarray | None:
        expected = prod(self.shape)
        if len(payload) != expected:
            log.warning("result size = %d instead of %d", len(payload), expected)
            return None
        return np.frombuffer(payload, dtype=np.uint8).reshape(self.shape)

    def _handle(self, header: FrameHeader, payload: bytes) -> None:
        radius = None
        if self.measure is not None:
            image = self._image(payload)
            if image is not None:
                radius = float(self.measure(image))
                if self.tracker.update(radius):
                    self.data_ready.release()
                    if self.on_object is not None:
                        self.on_object(self.tracker.objects - 1)
        log.info(
            "Frame %d with frame_id %d is ready, radius = %s",
            self.frames,
            header.frame_id,
            radius,
        )
        self.frames += 1

    def run(self) -> int:
        """Receive frames until the stream ends or the collector is closed.

        Returns the number of frames received.
        """
        stream = self._sock.makefile("rb")
        try:
            for header, payload in read_frames(stream):
                if self._stop.is_set():
                    break
                self._handle(header, payload)
        except (EOFError, ValueError, OSError) as exc:
            if not self._stop.is_set():
                log.warning("[collect_data]: %s", exc)
        finally:
            stream.close()
            self._stop.set()
        log.info("[collect_data]: stop")
        return self.frames

    def close(self) -> None:
        """Stop receiving and close the connection."""
        self._stop.set()
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()

    def __enter__(self) -> "FrameCollector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def client_main(argv: list[str] | None = None) -> int:
    """Connect to a frame generator and report frames and completed objects."""
    parser = argparse.ArgumentParser(description="Collect frames from a frame server.")
    parser.add_argument("host")
    parser.add_argument("port")
    args = parser.parse_args(argv)

    def report(index: int) -> None:
        print(f"[cvclient]: New object {index} ready", flush=True)

    try:
        collector = FrameCollector((args.host, args.port), on_object=report)
    except (OSError, ValueError):
        print(
            "[cvclient]: Can't init collector, may be camera isn't ready. "
            "Please, try again.",
            flush=True,
        )
        return 0
    with collector:
        try:
            collector.run()
        except KeyboardInterrupt:
            pass
    return 0


def server_main(argv: list[str] | None = None) -> int:
    """Serve the frames of a directory of numbered JPEG images."""
    parser = argparse.ArgumentParser(description="Serve test frames over TCP.")
    parser.add_argument("port")
    parser.add_argument(
        "--source",
        default=os.environ.get(SOURCE_PATH_ENV),
        help=f"directory with 0.jpg, 1.jpg, ... (default: ${SOURCE_PATH_ENV})",
    )
    parser.add_argument("--count", type=int, default=DATA_CNT, help="number of images")
    parser.add_argument("--interval", type=float, default=FRAME_INTERVAL, help="seconds")
    args = parser.parse_args(argv)

    if not args.source:
        print(f"no image directory: set {SOURCE_PATH_ENV} or --source", file=sys.stderr)
        return 1
    print(f"[generator]: prepare data from {args.source}", flush=True)
    try:
        payloads = _load_payloads(args.source, args.count)
        generator = FrameGenerator(payloads, args.interval)
    except (OSError, ValueError) as exc:
        print(f"[generator]: {exc}", file=sys.stderr)
        return 1
    print("[generator]: data ready, waiting for connection...", flush=True)
    try:
        generator.serve(args.port)
    except KeyboardInterrupt:
        generator.stop_event.set()
    except OSError as exc:
        print(f"[generator]: {exc}", file=sys.stderr)
        return 1
    return 0