"""pgdiscovery: service discovery core for a PostgreSQL metrics collector.

Providers learn which databases exist (cloud API, local catalog, external
script) and keep subscribers in sync with incremental add/remove calls.

Quickstart::

    from pgdiscovery.providers import instantiate

    providers = instantiate(config)          # {id: {"type": ..., "config": ...}}
    sd = providers["local"]
    await sd.subscribe("collector", on_add, on_remove)
    await sd.start(errors=asyncio.Queue())
"""

__version__ = "1.0.0"
