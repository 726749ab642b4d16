"""Chain listeners and the service that wires them to the relay pipeline.

One listener thread per chain polls ``LogMessagePublished`` events and
queues them in order. One consumer thread per chain drains that queue and
hands each event to a shared worker pool, so a slow attestation never
blocks observation of later events.
"""

from __future__ import annotations

import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

from liquidity_relayer.core.chain import EvmChainGateway, PublishedMessage
from liquidity_relayer.core.pipeline import RelayOutcome, RelayPipeline
from liquidity_relayer.core.utils import get_logger

LOGGER = get_logger("liquidity_relayer.listener")

_QUEUE_POLL_SECONDS = 0.5


class ChainListener(threading.Thread):
    """Poll one chain for published messages and queue them for relaying."""

    def __init__(
        self,
        *,
        chain_id: int,
        gateway: EvmChainGateway,
        emitters: Sequence[str],
        events: "queue.Queue[PublishedMessage]",
        cancel: threading.Event,
        poll_interval: float,
        lookback: int = 0,
        start_block: Optional[int] = None,
        max_block_range: int = 1000,
    ) -> None:
        super().__init__(name=f"listener-{chain_id}", daemon=True)
        self.chain_id = chain_id
        self.gateway = gateway
        self.emitters = tuple(emitters)
        self.events = events
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.lookback = lookback
        self.next_block = start_block
        self.max_block_range = max_block_range
        self.head: Optional[int] = None

    @property
    def behind(self) -> bool:
        """Whether blocks up to the last seen head are still unscanned."""
        return self.head is not None and self.next_block is not None and self.next_block <= self.head

    def poll_once(self) -> int:
        """Fetch the next range of events, at most ``max_block_range`` blocks; return how many were queued."""
        head = self.gateway.block_number(self.chain_id)
        self.head = head
        if self.next_block is None:
            self.next_block = max(head - self.lookback, 0)
            LOGGER.info("Listening on chain %s from block %s", self.chain_id, self.next_block)
        if head < self.next_block:
            return 0
        to_block = min(head, self.next_block + self.max_block_range - 1)
        messages = self.gateway.poll_published_messages(self.chain_id, self.emitters, self.next_block, to_block)
        for message in messages:
            self.events.put(message)
        self.next_block = to_block + 1
        if messages:
            LOGGER.debug("Queued %s message(s) from chain %s", len(messages), self.chain_id)
        return len(messages)

    def run(self) -> None:
        while not self.cancel.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                LOGGER.error("Error polling chain %s: %s", self.chain_id, exc)
            else:
                if self.behind:
                    continue
            self.cancel.wait(self.poll_interval)
        LOGGER.info("Listener for chain %s stopped", self.chain_id)


class RelayService:
    """Run a listener and a consumer per chain against a shared pipeline."""

    def __init__(
        self,
        *,
        pipeline: RelayPipeline,
        gateway: EvmChainGateway,
        chain_ids: Optional[Sequence[int]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.pipeline = pipeline
        self.gateway = gateway
        self.config = pipeline.config
        self.cancel = cancel or pipeline.cancel
        self.chain_ids = tuple(chain_ids or sorted(self.config.execution_routes))
        self.queues: Dict[int, "queue.Queue[PublishedMessage]"] = {chain: queue.Queue() for chain in self.chain_ids}
        self.listeners: List[ChainListener] = []
        self._consumers: List[threading.Thread] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    def emitters(self, chain_id: int) -> List[str]:
        """Contracts whose published messages may need settling: the token bridge and CCTP integration."""
        route = self.config.route(chain_id)
        emitters = [route.bridge]
        if route.cctp is not None:
            emitters.append(route.cctp)
        return emitters

    def start(self) -> None:
        defaults = self.config.defaults
        self._executor = ThreadPoolExecutor(max_workers=defaults.max_workers, thread_name_prefix="relay")
        for chain_id in self.chain_ids:
            listener = ChainListener(
                chain_id=chain_id,
                gateway=self.gateway,
                emitters=self.emitters(chain_id),
                events=self.queues[chain_id],
                cancel=self.cancel,
                poll_interval=defaults.log_poll_interval,
                lookback=defaults.start_block_lookback,
                max_block_range=defaults.max_block_range,
            )
            consumer = threading.Thread(
                target=self._consume, args=(chain_id,), name=f"consumer-{chain_id}", daemon=True
            )
            self.listeners.append(listener)
            self._consumers.append(consumer)
            listener.start()
            consumer.start()
        LOGGER.info("Relayer started for chains: %s", ", ".join(map(str, self.chain_ids)))

    def _consume(self, chain_id: int) -> None:
        events = self.queues[chain_id]
        while not self.cancel.is_set():
            try:
                event = events.get(timeout=_QUEUE_POLL_SECONDS)
            except queue.Empty:
                continue
            self.dispatch(event)

    def dispatch(self, event: PublishedMessage) -> Future:
        if self._executor is None:
            raise RuntimeError("RelayService has not been started")
        future = self._executor.submit(self.pipeline.handle, event)
        future.add_done_callback(self._log_outcome)
        return future

    @staticmethod
    def _log_outcome(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            LOGGER.error("Relay worker crashed: %s", exc)
            return
        outcome: RelayOutcome = future.result()
        LOGGER.debug("Outcome %s at stage %s", outcome.status.value, outcome.stage.value)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal cancellation and wait for the listeners and in-flight work to end."""
        self.cancel.set()
        for thread in [*self.listeners, *self._consumers]:
            thread.join(timeout)
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None
        self.pipeline.close()
        LOGGER.info("Relayer stopped")

    def run_forever(self) -> None:
        self.start()
        try:
            while not self.cancel.wait(1.0):
                pass
        except KeyboardInterrupt:
            LOGGER.info("Interrupted, shutting down")
        finally:
            self.stop()


__all__ = ["ChainListener", "RelayService"]
