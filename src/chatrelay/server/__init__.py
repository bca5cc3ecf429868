"""HTTP relay that injects a system instruction and streams completion chunks.

Single conversation endpoint plus acknowledgment stubs; chunks are forwarded
as server-sent events in upstream order.
"""

__all__ = []
