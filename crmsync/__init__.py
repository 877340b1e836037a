"""Mapping-driven sync between form submissions and CRM/helpdesk modules."""

__version__ = "0.1.0"
