"""Domain models, events and errors.

The domain knows nothing about HTTP, the CLI, or provider SDKs: only
addresses, domains and the outcomes of detection and updates.
"""
