"""HydroZen core — leak anomaly detection and incentive ledger backend."""

__version__ = "0.1.0"
