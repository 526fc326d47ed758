"""PayConferHub: partner payment aggregation and plan target processing."""

__version__ = "0.1.0"
