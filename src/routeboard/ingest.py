"""Write path: hand-off of externally submitted configuration.

The REST API never touches the SnapshotStore directly. A PUT enqueues a
ConfigMessage on the ConfigIngestChannel and returns; the
ConfigurationAggregator thread drains the channel and installs merged
snapshots. The queue is bounded, so a slow consumer makes submitters wait
instead of losing messages.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Optional

from .models import ConfigSnapshot, ProviderConfiguration
from .snapshot import SnapshotStore

logger = logging.getLogger("routeboard.ingest")

DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class ConfigMessage:
    """Brief: One provider's configuration submitted for aggregation.

    Inputs (fields):
      - provider_name: Provider id the configuration belongs to (e.g. "web").
      - configuration: The submitted ProviderConfiguration.
    """

    provider_name: str
    configuration: ProviderConfiguration


class ConfigIngestChannel:
    """Brief: Bounded many-producer/one-consumer queue of ConfigMessage.

    Inputs (constructor):
      - queue_size: Maximum number of pending messages (>= 1).

    Outputs:
      - ConfigIngestChannel instance.

    Example:
      >>> channel = ConfigIngestChannel(queue_size=1)
      >>> channel.send("web", ProviderConfiguration())
      >>> channel.receive(timeout=0).provider_name
      'web'
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if int(queue_size) < 1:
            raise ValueError("queue_size must be >= 1")
        self._queue: "queue.Queue[ConfigMessage]" = queue.Queue(maxsize=int(queue_size))

    def send(
        self,
        provider_name: str,
        configuration: ProviderConfiguration,
        timeout: Optional[float] = None,
    ) -> None:
        """Brief: Enqueue a configuration, blocking while the queue is full.

        Inputs:
          - provider_name: Provider id.
          - configuration: ProviderConfiguration to forward.
          - timeout: Optional seconds to wait for room; None waits forever.

        Outputs:
          - None.

        Raises:
          - queue.Full: only when timeout is given and expires.
        """

        self._queue.put(ConfigMessage(provider_name, configuration), timeout=timeout)
        logger.debug("Queued configuration from provider %s", provider_name)

    def receive(self, timeout: Optional[float] = None) -> Optional[ConfigMessage]:
        """Brief: Dequeue the next message.

        Inputs:
          - timeout: Seconds to wait; 0 polls; None waits forever.

        Outputs:
          - ConfigMessage, or None when nothing arrived before the timeout.
        """

        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


class ConfigurationAggregator(threading.Thread):
    """
    Background daemon thread that installs submitted configurations.

    Inputs (constructor):
        channel: ConfigIngestChannel to drain
        store: SnapshotStore[ConfigSnapshot] to install merged snapshots into
        poll_interval: Seconds between stop checks while idle (default 0.5)

    Outputs:
        ConfigurationAggregator thread instance (call start() to begin)

    Each message replaces exactly one provider's entry; every other provider
    is carried over from the current snapshot. A message identical to the
    provider's current configuration is dropped without installing anything.

    Example:
        >>> store = SnapshotStore(ConfigSnapshot())
        >>> channel = ConfigIngestChannel()
        >>> aggregator = ConfigurationAggregator(channel, store)
        >>> aggregator.start()
        >>> channel.send("web", ProviderConfiguration())
        >>> aggregator.stop()
    """

    def __init__(
        self,
        channel: ConfigIngestChannel,
        store: SnapshotStore[ConfigSnapshot],
        poll_interval: float = 0.5,
    ) -> None:
        super().__init__(daemon=True, name="ConfigurationAggregator")
        self.channel = channel
        self.store = store
        self.poll_interval = max(0.01, float(poll_interval))
        self._stop_event = threading.Event()

    def apply(self, message: ConfigMessage) -> bool:
        """Brief: Merge one message into the store.

        Inputs:
          - message: ConfigMessage to install.

        Outputs:
          - bool: True when a new snapshot was installed, False when the
            provider's configuration was unchanged.
        """

        current = self.store.load().providers.get(message.provider_name)
        if current is not None and current == message.configuration:
            logger.debug(
                "Skipping unchanged configuration from provider %s",
                message.provider_name,
            )
            return False

        self.store.update(
            lambda snap: snap.with_provider(
                message.provider_name, message.configuration
            )
        )
        logger.info(
            "Installed configuration from provider %s (%d backends, %d frontends)",
            message.provider_name,
            len(message.configuration.backends),
            len(message.configuration.frontends),
        )
        return True

    def run(self) -> None:
        """
        Aggregator main loop (called by start()).

        Waits for messages and applies them in arrival order until stop() is
        called. Errors while applying a message are logged and the loop
        continues with the next one.
        """
        while not self._stop_event.is_set():
            message = self.channel.receive(timeout=self.poll_interval)
            if message is None:
                continue
            try:
                self.apply(message)
            except Exception as e:  # pragma: no cover
                logger.error(
                    "Failed to install configuration from provider %s: %s",
                    message.provider_name,
                    e,
                    exc_info=True,
                )

    def stop(self, timeout: float = 5.0) -> None:
        """
        Signal the aggregator to stop and wait for the thread to exit.

        Inputs:
            timeout: Maximum seconds to wait for thread join (default 5.0)
        """
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
