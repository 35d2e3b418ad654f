"""Sandbox chat client state layer."""
