"""FindMe — asynchronous effects core of the collaborator-matching backend.

The side effects that HTTP handlers fire after committing to the database:
embedding and recommendation fan-out over gRPC, real-time chat rooms over
websockets, and the daily trial-ending reminder sweep.
"""

__version__ = "0.1.0"
