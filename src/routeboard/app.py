"""Module exposing a ready-made ASGI app for ``uvicorn routeboard.app:app``.

The app is wired to its own empty snapshot store and an aggregator thread
that installs configurations submitted through PUT /api/providers/web, so it
is usable standalone in addition to the in-process server run by
routeboard.main.
"""

from __future__ import annotations

from .ingest import ConfigIngestChannel, ConfigurationAggregator
from .servers.webserver import create_app
from .snapshot import new_config_store

store = new_config_store()
channel = ConfigIngestChannel()
aggregator = ConfigurationAggregator(channel, store)
aggregator.start()
app = create_app(store, channel)
