"""Reading tracker: timed reading sessions with a live microphone transcript."""

from . import audio, cli, config

__all__ = ["audio", "cli", "config"]
