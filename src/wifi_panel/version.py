"""Version information for the connectivity panel service."""

APP_VERSION = "0.1.0"
