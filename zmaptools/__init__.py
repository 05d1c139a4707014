"""Scan-pipeline helpers: result tee, gateway discovery, frame sending and scan options."""

__version__ = "0.1.0"

__all__ = ["config", "gateway", "options", "sender", "ztee"]