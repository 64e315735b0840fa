"""Per-owner registry of live channels with heartbeats and best-effort fan-out."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from rector.jobs.models import utc_now
from rector.notifications.contracts import Channel, ChannelClosedError, ConnectedEvent, StatusEvent, encode_event

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 30.0


@dataclass(eq=False)
class Subscription:
  """One registered channel and its keepalive timer."""

  owner_id: str
  channel: Channel
  created_at: datetime = field(default_factory=utc_now)
  last_heartbeat_at: datetime | None = None
  heartbeat_task: asyncio.Task[None] | None = None


class NotificationBus:
  """Fans status events out to every channel an owner has open.

  Delivery is at-most-once: nothing is buffered for owners without channels,
  and a channel that fails a write is dropped for good.
  """

  def __init__(self, *, heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS) -> None:
    self._heartbeat_interval = heartbeat_interval_seconds
    self._lock = asyncio.Lock()
    self._subscriptions: dict[str, list[Subscription]] = {}

  async def subscribe(self, owner_id: str, channel: Channel) -> Subscription:
    """Register a channel, send the handshake and start its heartbeat."""
    subscription = Subscription(owner_id=owner_id, channel=channel)
    async with self._lock:
      self._subscriptions.setdefault(owner_id, []).append(subscription)

    try:
      await channel.send(encode_event(ConnectedEvent()))
    except ChannelClosedError:
      await self._drop(subscription)
      raise

    subscription.heartbeat_task = asyncio.create_task(self._heartbeat(subscription), name=f"heartbeat:{owner_id}")
    subscription.heartbeat_task.add_done_callback(self._log_task_error)
    logger.info("Channel subscribed owner=%s channels=%s", owner_id, self.channel_count(owner_id))
    return subscription

  async def unsubscribe(self, owner_id: str, channel: Channel) -> bool:
    """Remove a channel; returns False when it was not registered."""
    async with self._lock:
      subscription = next((sub for sub in self._subscriptions.get(owner_id, ()) if sub.channel is channel), None)
    if subscription is None:
      return False
    await self._drop(subscription)
    logger.info("Channel unsubscribed owner=%s channels=%s", owner_id, self.channel_count(owner_id))
    return True

  async def publish(self, owner_id: str, event: StatusEvent) -> int:
    """Write an event to every channel of the owner; returns how many accepted it."""
    async with self._lock:
      targets = list(self._subscriptions.get(owner_id, ()))

    if not targets:
      logger.debug("No channels for owner=%s; dropping %s event", owner_id, event.status)
      return 0

    payload = encode_event(event)
    delivered = 0
    # Writes happen outside the lock so one slow channel cannot stall subscribe/unsubscribe.
    for subscription in targets:
      try:
        await subscription.channel.send(payload)
      except ChannelClosedError:
        logger.info("Dropping closed channel owner=%s", owner_id)
        await self._drop(subscription)
        continue
      except Exception as exc:  # noqa: BLE001
        logger.warning("Channel write failed owner=%s: %s", owner_id, exc)
        await self._drop(subscription)
        continue
      delivered += 1
    return delivered

  def channel_count(self, owner_id: str) -> int:
    return len(self._subscriptions.get(owner_id, ()))

  def total_channel_count(self) -> int:
    return sum(len(subs) for subs in self._subscriptions.values())

  async def close(self) -> None:
    """Cancel every heartbeat and close every channel."""
    async with self._lock:
      subscriptions = [sub for subs in self._subscriptions.values() for sub in subs]
      self._subscriptions.clear()

    for subscription in subscriptions:
      await self._release(subscription)
    if subscriptions:
      logger.info("Notification bus closed %s channel(s)", len(subscriptions))

  async def _heartbeat(self, subscription: Subscription) -> None:
    while True:
      await asyncio.sleep(self._heartbeat_interval)
      try:
        await subscription.channel.send_heartbeat()
      except ChannelClosedError:
        logger.info("Heartbeat failed; deregistering channel owner=%s", subscription.owner_id)
        await self._drop(subscription)
        return
      subscription.last_heartbeat_at = utc_now()

  async def _drop(self, subscription: Subscription) -> None:
    async with self._lock:
      subs = self._subscriptions.get(subscription.owner_id)
      if subs is not None and subscription in subs:
        subs.remove(subscription)
        if not subs:
          del self._subscriptions[subscription.owner_id]
    await self._release(subscription)

  @staticmethod
  async def _release(subscription: Subscription) -> None:
    task = subscription.heartbeat_task
    if task is not None and task is not asyncio.current_task() and not task.done():
      task.cancel()
    await subscription.channel.close()

  @staticmethod
  def _log_task_error(task: asyncio.Task[None]) -> None:
    """Log heartbeat task crashes so a dead timer is never silent."""
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Heartbeat task failed: %s", exc, exc_info=exc)
