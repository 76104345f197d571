"""agentsync: project canonical agent content into per-tool outputs."""

__version__ = "0.1.0"
