"""Central message bus with adversary hooks.

Single interception point for the adversary. Protocol messages travel in
delivery waves: everything sent during wave k is delivered in wave k+1.
With wire=True every message is encoded on send and decoded on delivery,
so the bus also exercises the binary codec.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from tdkg.messages import Message, decode_message

logger = logging.getLogger(__name__)


@dataclass
class Envelope:
    src: int
    dst: int
    message: object
    wave_sent: int = 0
    id: int = 0


class AdversaryHook:
    """Base class for adversary interception hooks."""

    def on_send(self, env: Envelope) -> Optional[Envelope]:
        """Called when a message is sent. Return None to drop, or modified envelope."""
        return env

    def on_deliver(self, env: Envelope) -> Optional[Envelope]:
        """Called just before delivery. Return None to drop."""
        return env


class SimMessageBus:
    """Routes protocol messages between participants, one wave at a time."""

    def __init__(self, wire: bool = True):
        self.wire = wire
        self.wave = 0
        self._msg_seq = 0
        self._pending: list = []
        self._delivered: list = []  # audit log
        self._dropped: list = []
        self._hooks: list[AdversaryHook] = []
        self._handlers: dict = {}  # participant id -> callback(message) -> outbound list

    def register_handler(self, node_id: int, handler: Callable):
        self._handlers[node_id] = handler

    def clear_handlers(self):
        self._handlers.clear()

    def add_hook(self, hook: AdversaryHook):
        self._hooks.append(hook)

    def remove_hook(self, hook: AdversaryHook):
        self._hooks.remove(hook)

    def send(self, src: int, dst: int, message: Message):
        env = Envelope(src=src, dst=dst, message=message, wave_sent=self.wave,
                       id=self._msg_seq)
        self._msg_seq += 1
        for hook in self._hooks:
            env = hook.on_send(env)
            if env is None:
                return
        if self.wire:
            env.message = env.message.to_bytes()
        self._pending.append(env)

    def broadcast(self, src: int, message: Message, recipients: list = None):
        targets = recipients if recipients is not None else [
            nid for nid in self._handlers if nid != src
        ]
        for dst in targets:
            self.send(src, dst, message)

    def route(self, src: int, outbound: list, recipients: list = None):
        """Send a session's outbound messages: addressed ones to their
        receiver, everything else to all recipients."""
        for message in outbound:
            dst = getattr(message, 'receiver_id', None)
            if dst is not None:
                self.send(src, dst, message)
            else:
                self.broadcast(src, message, recipients)

    def deliver_wave(self) -> int:
        """Deliver everything queued before this call. Returns the count."""
        batch, self._pending = self._pending, []
        self.wave += 1
        count = 0
        for env in batch:
            if self.wire:
                env.message = decode_message(env.message)
            for hook in self._hooks:
                env = hook.on_deliver(env)
                if env is None:
                    break
            if env is None:
                continue
            handler = self._handlers.get(env.dst)
            if handler is None:
                self._dropped.append(env)
                continue
            self._delivered.append(env)
            count += 1
            outbound = handler(env.message) or []
            self.route(env.dst, outbound)
        return count

    def run_until_idle(self, max_waves: int = 100) -> int:
        """Deliver waves until nothing is pending. Returns waves run."""
        start = self.wave
        while self._pending and self.wave - start < max_waves:
            self.deliver_wave()
        if self._pending:
            logger.warning("bus still has %d messages after %d waves",
                           len(self._pending), max_waves)
        return self.wave - start

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def delivered_count(self) -> int:
        return len(self._delivered)

    @property
    def audit_log(self) -> list:
        return list(self._delivered)

    def messages_from(self, src: int, kind: type = None) -> list:
        return [e.message for e in self._delivered
                if e.src == src and (kind is None or isinstance(e.message, kind))]
