import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from starlette.responses import StreamingResponse

from rector.api.deps import get_bus, get_owner_id
from rector.notifications.bus import NotificationBus
from rector.notifications.channels import QueueChannel

router = APIRouter()
logger = logging.getLogger("rector.api.routes.events")

_SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


@router.get("")
async def stream_events(  # noqa: B008
  owner_id: str = Depends(get_owner_id),  # noqa: B008
  bus: NotificationBus = Depends(get_bus),  # noqa: B008
) -> StreamingResponse:
  """Open a server-sent event stream of job status updates for the caller."""
  channel = QueueChannel(label=owner_id)
  await bus.subscribe(owner_id, channel)

  async def _frames() -> AsyncIterator[bytes]:
    try:
      async for frame in channel.frames():
        yield frame
    finally:
      # Runs on client disconnect (generator cancelled) and on bus shutdown.
      await bus.unsubscribe(owner_id, channel)
      logger.info("Event stream ended owner=%s remaining=%s", owner_id, bus.channel_count(owner_id))

  return StreamingResponse(_frames(), media_type="text/event-stream", headers=_SSE_HEADERS)
