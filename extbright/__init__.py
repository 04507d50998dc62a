"""External monitor brightness control over DDC/CI and Apple/LG USB HID."""

__version__ = "0.3.0"
