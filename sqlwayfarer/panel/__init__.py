"""
Panel module - UI message surface
"""

from sqlwayfarer.panel.controller import PanelController, create_panel_controller

__all__ = [
    "PanelController",
    "create_panel_controller",
]
