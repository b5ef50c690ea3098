"""GUI components."""

from .panel_ctk import SyncPanelCTk

__all__ = ["SyncPanelCTk"]
