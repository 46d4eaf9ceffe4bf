"""tguploader - upload build artifacts to Telegram."""

__version__ = "1.0.0"
