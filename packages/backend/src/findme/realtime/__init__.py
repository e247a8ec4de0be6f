"""Real-time chat — websocket rooms routed by an in-memory hub.

Learn: One process owns all rooms (no cross-process fan-out). Messages
flow: socket → Client.read_pump → ChatHub coordinator → every Client's
outbox in the same room → Client.write_pump → socket.
"""
