from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import websockets

from shared.envelope import ChatEnvelope, DecodeError, create_envelope, decode_frame
from shared.log import get_logger, log_chat_event

from .config import ClientConfig
from .state import ChatMessage, ConnectionState, MessageHistory, Origin

logger = get_logger(__name__)


Connector = Callable[[str], Awaitable[Any]]
EventHandler = Callable[[Any], None]

NORMAL_CLOSURE = 1000
EVENTS = ("state", "history", "error")


class ControllerError(Exception):
    """A transport failure observed by the controller."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        self.operation = operation
        self.cause = cause
        detail = f"{operation} failed"
        if cause is not None:
            detail = f"{detail}: {cause!r}"
        super().__init__(detail)


class ConnectError(ControllerError):
    """The transport could not be opened."""
    pass


class TransmitError(ControllerError):
    """Sending an application message or a ping failed."""
    pass


class ReceiveError(ControllerError):
    """The transport surfaced an error instead of a frame."""
    pass


class ConnectionController:
    """
    Owns one WebSocket at a time and the chat history shown to the user.

    State, history and error changes are published through ``on()`` handlers.
    All mutation happens on the event loop that runs the controller, so the
    receive loop, the keep-alive loop and ``send()`` never interleave writes.

    Any receive or ping failure tears the connection down completely; there
    is no automatic reconnection.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        connector: Optional[Connector] = None,
        **overrides: Any,
    ) -> None:
        self.config = (config or ClientConfig()).with_overrides(**overrides)
        self.history = MessageHistory()
        self.websocket: Optional[websockets.ClientConnection] = None
        self.handlers: Dict[str, List[EventHandler]] = {event: [] for event in EVENTS}
        self._connector = connector or self._open_websocket
        self._state = ConnectionState.DISCONNECTED
        self._recv_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        # Bumped on every teardown so a late handshake can tell it was abandoned
        self._generation = 0

    # ------------------------------------------------------------------
    # Presentation boundary
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def messages(self) -> Tuple[ChatMessage, ...]:
        return self.history.snapshot()

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler for "state", "history" or "error" events"""
        if event not in self.handlers:
            raise ValueError(f"Unknown event {event!r}; expected one of {EVENTS}")
        self.handlers[event].append(handler)

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket, then start the receive and keep-alive loops."""
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug("connect() ignored", extra=self._log_context())
            return

        generation = self._generation
        url = self.config.server_url
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", url)

        try:
            websocket = await self._connector(url)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._set_state(ConnectionState.DISCONNECTED)
            raise
        except Exception as e:
            if generation != self._generation:
                return
            logger.error("Error connecting to %s: %s", url, e)
            self._set_state(ConnectionState.DISCONNECTED)
            self._emit("error", ConnectError("connect", e))
            return

        if generation != self._generation:
            logger.info("Handshake with %s finished after disconnect; closing it", url)
            await self._close_websocket(websocket)
            return

        self.websocket = websocket
        self._set_state(ConnectionState.CONNECTED)
        self._recv_task = asyncio.create_task(self._receive_loop(websocket))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(websocket))

    async def disconnect(self) -> None:
        """Close the socket with a normal closure and clear the history."""
        await self._teardown()

    async def send(self, text: str) -> Optional[ChatMessage]:
        """
        Transmit ``text`` as a chat envelope.

        Returns the appended local message, or None when nothing was sent
        (not connected, empty text) or the transmit failed. Failed sends are
        not retried and do not close the connection.
        """
        if self._state is not ConnectionState.CONNECTED or not text:
            return None

        websocket = self.websocket
        envelope = create_envelope(self.config.sender_id, text)
        try:
            await websocket.send(envelope.to_json())
        except Exception as e:
            logger.error("Error sending message: %s", e, extra=self._log_context())
            self._emit("error", TransmitError("send", e))
            return None

        if websocket is not self.websocket:
            logger.debug("Connection closed while sending; not recording message")
            return None

        log_chat_event(logger, "debug", "Sent message", envelope=envelope.to_dict())
        return self._append(text, Origin.LOCAL)

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _receive_loop(self, websocket: Any) -> None:
        while True:
            try:
                frame = await websocket.recv()
            except Exception as e:
                if websocket is not self.websocket:
                    return
                logger.error("Error receiving message: %s", e, extra=self._log_context())
                self._emit("error", ReceiveError("receive", e))
                await self._teardown()
                return
            try:
                self._handle_frame(frame)
            except Exception as e:
                logger.error("Failed to process inbound frame: %s", e, extra=self._log_context())

    async def _keepalive_loop(self, websocket: Any) -> None:
        unanswered: List[asyncio.Future] = []
        while True:
            await asyncio.sleep(self.config.ping_interval)
            try:
                pong_waiter = await websocket.ping()
            except Exception as e:
                if websocket is not self.websocket:
                    return
                logger.error("Error sending ping: %s", e, extra=self._log_context())
                self._emit("error", TransmitError("ping", e))
                await self._teardown()
                return
            if isinstance(pong_waiter, asyncio.Future):
                pong_waiter.add_done_callback(_log_pong)
                unanswered = [w for w in unanswered if not w.done()]
                unanswered.append(pong_waiter)
                if len(unanswered) > 1:
                    logger.warning("%d pings without a pong", len(unanswered), extra=self._log_context())

    def _handle_frame(self, frame: Union[str, bytes]) -> None:
        try:
            text = decode_frame(frame)
        except DecodeError as e:
            logger.debug("Dropping binary frame: %s", e)
            return

        if not isinstance(frame, str):
            self._append(text, Origin.REMOTE)
            return

        try:
            envelope = ChatEnvelope.from_json(text)
        except DecodeError as e:
            logger.debug("Showing raw text frame: %s", e)
            self._append(text, Origin.REMOTE)
            return

        log_chat_event(logger, "debug", "Received message", envelope=envelope.to_dict())
        if envelope.sender == self.config.sender_id:
            self._append(envelope.content, Origin.LOCAL)
        else:
            self._append(envelope.content, Origin.REMOTE)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open_websocket(self, url: str) -> websockets.ClientConnection:
        # Keep-alive is driven by the controller, not the library
        return await websockets.connect(
            url,
            ping_interval=None,
            open_timeout=self.config.open_timeout,
            close_timeout=self.config.close_timeout,
        )

    async def _teardown(self) -> None:
        self._generation += 1
        websocket, self.websocket = self.websocket, None
        tasks = [task for task in (self._keepalive_task, self._recv_task) if task is not None]
        self._keepalive_task = None
        self._recv_task = None

        self._set_state(ConnectionState.DISCONNECTED)
        if len(self.history):
            self.history.clear()
            self._emit("history", self.history.snapshot())

        current = asyncio.current_task()
        others = [task for task in tasks if task is not current]
        for task in others:
            task.cancel()
        if others:
            await asyncio.wait(others)

        if websocket is not None:
            await self._close_websocket(websocket)
            logger.info("Disconnected from %s", self.config.server_url)

    async def _close_websocket(self, websocket: Any) -> None:
        try:
            await websocket.close(code=NORMAL_CLOSURE)
        except Exception as e:
            logger.warning("Error closing connection: %s", e)

    def _append(self, text: str, origin: Origin) -> ChatMessage:
        message = self.history.append(text, origin)
        self._emit("history", self.history.snapshot())
        return message

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        logger.debug("State changed", extra=self._log_context())
        self._emit("state", state)

    def _emit(self, event: str, payload: Any) -> None:
        for handler in list(self.handlers[event]):
            try:
                handler(payload)
            except Exception as e:
                logger.error("Error in %s handler: %s", event, e)

    def _log_context(self) -> Dict[str, str]:
        return {"conn": self.config.server_url, "state": self._state.value}


def _log_pong(pong_waiter: asyncio.Future) -> None:
    if pong_waiter.cancelled():
        return
    exc = pong_waiter.exception()
    if exc is not None:
        logger.debug("Ping went unanswered: %s", exc)
    else:
        logger.debug("Pong received (latency %s)", pong_waiter.result())
