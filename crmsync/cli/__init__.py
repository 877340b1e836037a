"""
CLI Module - runner wiring and console summaries
"""

from .runner import SyncRunner, print_push_summary, print_sweep_summary

__all__ = ["SyncRunner", "print_push_summary", "print_sweep_summary"]
