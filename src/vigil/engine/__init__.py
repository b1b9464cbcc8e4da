"""Engine module for event-driven test selection in watch mode."""

from __future__ import annotations

from vigil.engine import debounce, decision, engine, graph, sinks, sources, trackers, types

__all__ = ["debounce", "decision", "engine", "graph", "sinks", "sources", "trackers", "types"]
