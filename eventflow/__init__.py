"""
EventFlow - an event-driven, async workflow execution engine.

Nodes consume typed events and produce new ones; a graph routes each event
to its single consumer. Runs can pause on a human-in-the-loop interrupt,
persist a snapshot and resume later with feedback.
"""

__version__ = "1.0.0"
