"""Contracts for live status delivery channels."""

from __future__ import annotations

from typing import Literal, Protocol

import msgspec


class StatusEvent(msgspec.Struct, rename="camel", omit_defaults=True, kw_only=True):
  """Job status transition pushed to every session of the owning user."""

  type: Literal["status_update"] = "status_update"
  document_id: str
  job_id: str
  status: str
  artifact_ref: str | None = None
  message: str | None = None


class ConnectedEvent(msgspec.Struct, kw_only=True):
  """Handshake sent once when a channel is registered."""

  type: Literal["connected"] = "connected"
  message: str = "Event stream established"


# Defaults are dropped from the wire, so the literal type tag is always encoded explicitly.
def encode_event(event: StatusEvent | ConnectedEvent) -> bytes:
  """Serialize an event to compact JSON with its type tag."""
  payload = {"type": event.type, **msgspec.to_builtins(event)}
  return msgspec.json.encode(payload)


class ChannelClosedError(Exception):
  """Raised when writing to a channel whose connection is gone or saturated."""


class Channel(Protocol):
  """One live push connection to a single client session."""

  @property
  def closed(self) -> bool:
    """Whether the channel can no longer accept writes."""

  async def send(self, payload: bytes) -> None:
    """Deliver an encoded event; raises ChannelClosedError when undeliverable."""

  async def send_heartbeat(self) -> None:
    """Write a keepalive frame; raises ChannelClosedError when undeliverable."""

  async def close(self) -> None:
    """Close the channel; idempotent."""
