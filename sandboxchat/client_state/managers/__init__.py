"""State operations for the client layer.

``conversations`` holds pure snapshot transforms; ``workspaces`` holds async
provisioning calls.  Both raise domain exceptions from
``sandboxchat.client_state.errors`` (or, for snapshots, nothing at all).
"""
