"""Infrastructure Layer — external service clients, persistence adapters, cross-cutting concerns.

Invariants:
    - Infrastructure never imports from services/ (workflows depend on it, not the reverse)
    - All external calls wrapped with retry/timeout/error mapping
    - Adapters implement the Protocols in core/repository_protocols.py

Design Decisions:
    - Resilient wrappers over raw clients: retry policy isolated from workflow code
"""
