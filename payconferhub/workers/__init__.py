"""Command-line workers."""
from .payment_worker import aggregate_partners, run_worker

__all__ = ["aggregate_partners", "run_worker"]
