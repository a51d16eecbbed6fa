"""
helix-sync - learner state synchronization and scheduling core.

Tracks a learner's position across three interleaved content tubes,
drives a spaced-repetition review schedule, and keeps the local copy
consistent with the backend record across offline use, reconnects and
concurrent devices.

Packages:
- core: state model, scheduler, triple-helix machine, learning events
- store: record store interface and adapters (memory, SQL, HTTP, offline cache)
- sync: reconciliation engine, merge policy, background worker
- session: session manager and notification registry
- cli: developer CLI
"""

__version__ = "1.0.0"
