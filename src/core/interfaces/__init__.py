"""Core interfaces.

Notes:
- Defines the Protocols that concrete adapters implement (discovery sources,
  DNS providers, event sinks).
- The core depends on these abstractions, never on a specific adapter.
"""
