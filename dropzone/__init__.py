"""DropZone: receive files and text messages from devices on the local network."""

__version__ = "0.1.0"
