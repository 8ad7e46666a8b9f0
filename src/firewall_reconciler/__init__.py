"""firecraft - firewall fleet reconciliation and staged deployment engine."""

__version__ = "0.1.0"
