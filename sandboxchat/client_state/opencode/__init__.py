"""Client for the per-workspace agent server."""

from sandboxchat.client_state.opencode.client import OpencodeClient

__all__ = ["OpencodeClient"]
