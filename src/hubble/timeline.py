"""Timeline transport: fire-and-forget command queue and the httpx dispatcher behind it."""

import logging
import queue
import threading

import httpx

from hubble.errors import TransportError
from hubble.models import CommandResult, PinCommand, PinDescriptor, PinOp

logger = logging.getLogger(__name__)

USER_AGENT = "Hubble/1.0 (timeline sync)"


class CommandQueue:
    """Outbound side of the transport. ``submit`` never blocks on completion."""

    def __init__(self) -> None:
        self._queue: queue.Queue[PinCommand | None] = queue.Queue()

    def submit(self, command: PinCommand) -> None:
        self._queue.put(command)

    def upsert(self, pin: PinDescriptor) -> None:
        self.submit(PinCommand(PinOp.UPSERT, pin.id, pin))

    def delete(self, pin_id: str) -> None:
        self.submit(PinCommand(PinOp.DELETE, pin_id))

    def get(self, timeout: float | None = None) -> PinCommand | None:
        return self._queue.get(timeout=timeout)

    def get_nowait(self) -> PinCommand | None:
        return self._queue.get_nowait()

    def task_done(self) -> None:
        self._queue.task_done()

    def close(self) -> None:
        """Wake the dispatcher thread so it can exit."""
        self._queue.put(None)

    def __len__(self) -> int:
        return self._queue.qsize()


class TimelineClient:
    """Thin wrapper over the timeline public web API.

    Args:
        base_url: API root, e.g. ``https://timeline-api.rebble.io``.
        token: User token sent as ``X-User-Token``.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"X-User-Token": token, "User-Agent": USER_AGENT},
            timeout=timeout,
            transport=transport,
        )

    def put_pin(self, pin: PinDescriptor) -> int:
        return self._send("PUT", pin.id, json=pin.to_json())

    def delete_pin(self, pin_id: str) -> int:
        return self._send("DELETE", pin_id)

    def _send(self, method: str, pin_id: str, json: dict | None = None) -> int:
        try:
            resp = self._client.request(method, f"/v1/user/pins/{pin_id}", json=json)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {pin_id} failed: {e}") from e
        if resp.is_error:
            raise TransportError(
                f"{method} {pin_id} rejected: {resp.status_code} {resp.text[:200]}",
                status=resp.status_code,
            )
        return resp.status_code

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "TimelineClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class TimelineDispatcher:
    """Executes queued commands and publishes a CommandResult for each.

    Commands run independently: one failure never stops the rest, and
    nothing is retried. Results go to ``results``, which the sync core
    never reads.
    """

    def __init__(self, commands: CommandQueue, client: TimelineClient) -> None:
        self._commands = commands
        self._client = client
        self.results: queue.Queue[CommandResult] = queue.Queue()
        self._thread: threading.Thread | None = None

    def execute(self, command: PinCommand) -> CommandResult:
        try:
            if command.op is PinOp.UPSERT:
                if command.pin is None:
                    raise TransportError(f"Upsert for {command.pin_id} has no pin")
                status = self._client.put_pin(command.pin)
            else:
                status = self._client.delete_pin(command.pin_id)
        except TransportError as e:
            logger.error("Timeline %s %s failed: %s", command.op.value, command.pin_id, e)
            result = CommandResult(command, ok=False, status=e.status, detail=str(e))
        else:
            logger.info("Timeline %s %s: %s", command.op.value, command.pin_id, status)
            result = CommandResult(command, ok=True, status=status)
        self.results.put(result)
        return result

    def drain(self) -> list[CommandResult]:
        """Execute everything currently queued on the calling thread."""
        results = []
        while True:
            try:
                command = self._commands.get_nowait()
            except queue.Empty:
                return results
            try:
                if command is not None:
                    results.append(self.execute(command))
            finally:
                self._commands.task_done()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="timeline-dispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        if self._thread is None:
            return
        self._commands.close()
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            command = self._commands.get()
            try:
                if command is None:
                    return
                self.execute(command)
            finally:
                self._commands.task_done()
