"""
nixdesk — provision a Nix + Hyprland desktop workstation.
"""

__version__ = "0.3.0"
