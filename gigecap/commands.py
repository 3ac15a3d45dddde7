"""A command queue served by a worker thread that executes pipeline commands."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable

log = logging.getLogger(__name__)

COMMAND_QUEUE_SIZE = 20
COMMAND_BUF_LEN = 512
REPLY_SENT = "command succesfully sent"
POLL_INTERVAL = 0.5

_STOP_WORDS = frozenset({"stop", "s"})
_INIT_WORDS = frozenset({"init", "i"})
_CONFIG_WORDS = frozenset({"config", "c"})
_QUIT_WORDS = frozenset({"stop", "s", "quit", "q", "exit"})


def _word(request: str) -> str:
    """The request lower-cased, with one trailing newline removed."""
    if request.endswith("\n"):
        request = request[:-1]
    return request.lower()


def is_stop_request(request: str) -> bool:
    """True for STOP, S, QUIT, Q or EXIT in any case, optionally ending in a newline."""
    return _word(request) in _QUIT_WORDS


@dataclass
class Command:
    """A queued request and the client it came from."""

    fd: int
    full_command: str
    with_reply: bool = False
    reply: str = ""


class CommandExecutor:
    """Executes STOP, INIT and CONFIG commands against a pipeline.

    ``init_pipeline`` receives a configuration file name (or None) and returns the
    pipeline, or None on failure; ``destroy_pipeline`` receives that pipeline.
    """

    def __init__(
        self,
        init_pipeline: Callable[[str | None], Any] | None = None,
        destroy_pipeline: Callable[[Any], None] | None = None,
        read_filename: Callable[[str], str] = input,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.init_pipeline = init_pipeline
        self.destroy_pipeline = destroy_pipeline
        self.read_filename = read_filename
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.pipeline: Any = None

    def _start(self, filename: str | None, command: str) -> None:
        if self.init_pipeline is None:
            self.pipeline = None
        else:
            self.pipeline = self.init_pipeline(filename)
        if self.pipeline is None:
            log.warning("[command_server]: command '%s' failed", command)
        elif filename is not None:
            log.info("[command_server]: starting model from %s...", filename)

    def execute(self, command: Command | str) -> None:
        """Run one command. Raises ValueError for an unknown command."""
        text = command.full_command if isinstance(command, Command) else command
        word = _word(text)
        if word in _STOP_WORDS:
            log.info("[command_server]: STOP command received")
            self.stop_event.set()
            if self.pipeline is not None and self.destroy_pipeline is not None:
                self.destroy_pipeline(self.pipeline)
            self.pipeline = None
        elif word in _INIT_WORDS:
            log.info("[command_server]: INIT command received")
            self._start(None, text)
        elif word in _CONFIG_WORDS:
            log.info("[command_server]: CONFIG command received")
            filename = self.read_filename(
                "[command_server]: input model configuration filename\n"
            ).strip()
            self._start(filename, text)
        else:
            raise ValueError(f"unknown command {text!r}")


class CommandServer:
    """A bounded FIFO of commands consumed by a worker thread."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        queue_size: int = COMMAND_QUEUE_SIZE,
    ) -> None:
        self.executor = executor if executor is not None else CommandExecutor()
        self.stop_event = self.executor.stop_event
        self._queue: queue.Queue[Command] = queue.Queue(maxsize=queue_size)
        self._thread: threading.Thread | None = None
        self._closed = False

    def push(self, fd: int, request: str) -> Command:
        """Queue a request; one trailing newline is dropped.

        Raises ValueError when the request is too long and queue.Full when the
        queue is full.
        """
        text = request[:-1] if request.endswith("\n") else request
        if len(text) >= COMMAND_BUF_LEN:
            raise ValueError(f"command longer than {COMMAND_BUF_LEN - 1} characters")
        command = Command(fd=fd, full_command=text)
        self._queue.put_nowait(command)
        log.info("[command_server]: put to queue new command %s", text)
        return command

    def pop(self, timeout: float | None = None) -> Command | None:
        """Take the oldest command, waiting up to ``timeout`` seconds; None if none came."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def _run(self) -> None:
        log.info("[command_server]: Starting command server")
        while not self.stop_event.is_set():
            command = self.pop(POLL_INTERVAL)
            if command is None:
                continue
            log.info("[command_server]: Received command '%s'", command.full_command)
            try:
                self.executor.execute(command)
            except ValueError as exc:
                log.warning("[command_server]: %s", exc)
        log.info("[command_server]: Stopping command server...")

    def start(self) -> None:
        """Start the worker thread."""
        if self._thread is not None:
            raise RuntimeError("command server already started")
        self._thread = threading.Thread(target=self._run, name="command-server", daemon=True)
        self._thread.start()

    def close(self) -> None:
        """Queue a STOP command and wait for the worker thread to finish."""
        if self._closed:
            return
        self._closed = True
        try:
            self.push(0, "STOP\n")
        except queue.Full:
            self.stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "CommandServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def put_command(server: CommandServer, fd: int, request: str) -> str:
    """Queue a client request and return the reply for the client.

    A stop request also raises the server's stop flag.
    """
    if is_stop_request(request):
        log.info("[command_server]: STOP/QUIT command received from %d", fd)
        server.stop_event.set()
    server.push(fd, request)
    return REPLY_SENT