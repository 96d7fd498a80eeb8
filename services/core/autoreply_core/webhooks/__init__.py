"""Inbound webhook verification and payload parsing."""
