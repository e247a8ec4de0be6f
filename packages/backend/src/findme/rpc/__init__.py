"""gRPC clients for the ML services.

Learn: The embedding and recommendation services are Python ML services
reached over gRPC with insecure credentials (they run next to the API in
the same network). Message types are described once in messages.py and
each client owns exactly one long-lived channel.
"""
