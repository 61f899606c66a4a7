"""
Trivia Feed Engine.

Adaptive question selection and weight synchronization for the trivia feed:
- core: fingerprints, domain records, error taxonomy, feature flags
- weights: interest weight model with skip compensation
- pool: question pool index and related-topic lookup
- feed: feed assembler and the owned per-user feed state
- db: on-device SQLite store
- sync: remote client, reconciler and background sync
"""

__version__ = "1.0.0"
