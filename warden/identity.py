"""Version and naming metadata for Warden."""

__version__ = "0.4.0"
__codename__ = "WARDEN"
__tagline__ = "Trust-gated autonomous remediation"

BANNER = r"""
 __      __  _   ___ ___  ___ _  _
 \ \    / / /_\ | _ \   \| __| \| |
  \ \/\/ / / _ \|   / |) | _|| .` |
   \_/\_/ /_/ \_\_|_\___/|___|_|\_|
"""
