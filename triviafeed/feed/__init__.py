"""
Feed: ranked, never-resurfacing question batches.
"""

from triviafeed.feed.assembler import FeedAssembler, FeedStore
from triviafeed.feed.state import FeedState

__all__ = ["FeedAssembler", "FeedState", "FeedStore"]
