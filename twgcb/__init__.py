"""TWGCB RHEL 8.5 configuration baseline: compliance checks and remediation."""

__version__ = "0.1.0"
