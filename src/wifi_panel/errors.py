"""Exception hierarchy shared by the Wi-Fi, hotspot and Bluetooth managers."""

from __future__ import annotations


class PanelError(RuntimeError):
    """Base class for failures surfaced to the presentation layer."""


class DaemonUnavailable(PanelError):
    """Raised when NetworkManager or BlueZ cannot be reached on the system bus."""


class DeviceNotFound(PanelError):
    """Raised when no Wi-Fi device (or Bluetooth adapter) is present."""


class CredentialRequired(PanelError):
    """Raised when a secured network is joined without a credential."""


class InvalidCredential(PanelError):
    """Raised when a credential fails local validation."""


class UnsupportedSecurity(PanelError):
    """Raised for enterprise (802.1X) networks, which are never joined."""


class NotConnected(PanelError):
    """Raised when disconnecting while no connection is active."""


class NoSavedProfile(PanelError):
    """Raised when forgetting an SSID that has no stored profile."""


class RadioBusy(PanelError):
    """Raised when an orchestration is already running on the same radio."""


class OperationFailed(PanelError):
    """A daemon call was rejected; ``str(exc)`` carries the daemon message verbatim."""

    def __init__(self, message: str, *, error_name: str | None = None) -> None:
        super().__init__(message)
        self.error_name = error_name


class PairingFailed(OperationFailed):
    """Raised when BlueZ refuses to pair with a device."""


__all__ = [
    "CredentialRequired",
    "DaemonUnavailable",
    "DeviceNotFound",
    "InvalidCredential",
    "NoSavedProfile",
    "NotConnected",
    "OperationFailed",
    "PairingFailed",
    "PanelError",
    "RadioBusy",
    "UnsupportedSecurity",
]
