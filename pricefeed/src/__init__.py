"""
Price Feed - Authorized Multi-Source Aggregation Module

This module provides trusted per-asset prices from authorized reporters:
- PriceFeedEngine: Owns all tables and exposes submission, reads and admin
- PriceAggregator: Weighted average over active, fresh quotes
- AuthorizationRegistry: Owner-controlled source allowlist
- QuoteStore: Latest quote per (asset, source)
- Clock: Monotonic height sources (manual and web3-backed)
- StateStore: CBOR snapshots of the engine tables
- PriceReporter: Exchange ticker reporter submitting as one source
"""

from .AuthorizationRegistry import AuthorizationRegistry, OwnerCapability
from .Clock import Clock, ManualClock, Web3Clock
from .errors import (
    AlreadyExists,
    InsufficientSources,
    InvalidAsset,
    InvalidPrice,
    NotAuthorized,
    PriceFeedError,
    SourceNotFound,
    StalePrice,
)
from .PriceAggregator import AggregationResult, PriceAggregator
from .PriceFeedEngine import AggregatePrice, PriceFeedEngine, PriceFeedEvent
from .PriceReporter import PriceReporter, ReporterError
from .QuoteStore import Quote, QuoteStore

__all__ = [
    "AggregatePrice",
    "AggregationResult",
    "AlreadyExists",
    "AuthorizationRegistry",
    "Clock",
    "InsufficientSources",
    "InvalidAsset",
    "InvalidPrice",
    "ManualClock",
    "NotAuthorized",
    "OwnerCapability",
    "PriceAggregator",
    "PriceFeedEngine",
    "PriceFeedError",
    "PriceFeedEvent",
    "PriceReporter",
    "Quote",
    "QuoteStore",
    "ReporterError",
    "SourceNotFound",
    "StalePrice",
    "Web3Clock",
]
