"""statsvault - Self-healing embedded SQLite store for usage telemetry.

statsvault owns a single SQLite file per installation and keeps it usable
across crashes and on-disk corruption:
- Integrity validation on every open, with quarantine of damaged files
- Daily checkpointed backups with rotation, and fallback restore
- Schema migrations and weekly space reclamation
"""

__version__ = "0.3.1"
__all__ = ["__version__"]
