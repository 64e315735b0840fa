"""Server-sent-events channel backed by a bounded asyncio queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Final

from rector.notifications.contracts import ChannelClosedError

logger = logging.getLogger(__name__)

HEARTBEAT_FRAME: Final[bytes] = b": heartbeat\n\n"
DEFAULT_QUEUE_SIZE: Final[int] = 64

_CLOSE_SENTINEL: Final[bytes] = b""


def sse_frame(payload: bytes) -> bytes:
  """Frame an encoded JSON payload as a single SSE data event."""
  return b"data: " + payload + b"\n\n"


class QueueChannel:
  """A channel whose frames are drained by a streaming HTTP response.

  Writes never block: a full queue means the client stopped reading, and the
  channel closes itself so the bus can deregister it.
  """

  def __init__(self, *, maxsize: int = DEFAULT_QUEUE_SIZE, label: str | None = None) -> None:
    self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=maxsize)
    self._closed = False
    self.label = label

  @property
  def closed(self) -> bool:
    return self._closed

  async def send(self, payload: bytes) -> None:
    self._put(sse_frame(payload))

  async def send_heartbeat(self) -> None:
    self._put(HEARTBEAT_FRAME)

  def _put(self, frame: bytes) -> None:
    if self._closed:
      raise ChannelClosedError(f"Channel {self.label or id(self)} is closed")
    try:
      self._queue.put_nowait(frame)
    except asyncio.QueueFull as exc:
      logger.warning("Channel %s is not draining; closing it", self.label or id(self))
      self._mark_closed()
      raise ChannelClosedError(f"Channel {self.label or id(self)} queue is full") from exc

  async def close(self) -> None:
    if self._closed:
      return
    self._mark_closed()

  def _mark_closed(self) -> None:
    self._closed = True
    # Wake the consumer even when the queue is saturated.
    while True:
      try:
        self._queue.put_nowait(_CLOSE_SENTINEL)
        return
      except asyncio.QueueFull:
        try:
          self._queue.get_nowait()
        except asyncio.QueueEmpty:
          pass

  async def frames(self) -> AsyncIterator[bytes]:
    """Yield queued frames until the channel is closed."""
    while True:
      frame = await self._queue.get()
      if frame == _CLOSE_SENTINEL:
        return
      yield frame
