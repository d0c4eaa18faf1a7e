"""Custom exceptions for InfraDeck."""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Error categories reported in per-node sync outcomes."""

    CONFIGURATION = "configuration"
    DECRYPTION = "decryption"
    AUTHENTICATION = "authentication"
    REMOTE_API = "remote_api"
    NOT_FOUND = "not_found"
    INVALID_ACTION = "invalid_action"
    SESSION_BINDING = "session_binding"
    INTERNAL = "internal"


class InfraDeckError(Exception):
    """Base class for errors raised by the vault and control-plane engine."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ConfigurationError(InfraDeckError):
    """Raised when the master passphrase or a node configuration is missing."""

    kind = ErrorKind.CONFIGURATION


class DecryptionError(InfraDeckError):
    """Raised when a sealed blob fails authentication or is malformed.

    Indicates data corruption or a key mismatch. Never silently ignored.
    """

    kind = ErrorKind.DECRYPTION


class NotFoundError(InfraDeckError):
    """Raised when a referenced secret or node does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} '{identifier}' not found")


class AuthenticationError(InfraDeckError):
    """Raised when a remote node rejects credentials or cannot issue a ticket.

    The message names the node and never contains the password.
    """

    kind = ErrorKind.AUTHENTICATION

    def __init__(self, node_name: str, reason: str = "authentication failed"):
        self.node_name = node_name
        self.reason = reason
        super().__init__(f"Proxmox authentication failed for node '{node_name}': {reason}")


class RemoteAPIError(InfraDeckError):
    """Raised for any other non-2xx response from the control-plane API."""

    kind = ErrorKind.REMOTE_API

    def __init__(self, status: Optional[int], body: str = "", message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"Proxmox API error (HTTP {status}): {body}")


class RemoteUnavailableError(RemoteAPIError):
    """Raised when a control-plane call times out or the transport fails."""

    def __init__(self, target: str, reason: str):
        self.target = target
        super().__init__(
            status=None,
            body="",
            message=f"Proxmox API unreachable at {target}: {reason}",
        )


class InvalidActionError(InfraDeckError, ValueError):
    """Raised for an unknown control action or resource type."""

    kind = ErrorKind.INVALID_ACTION


class SessionBindingError(InfraDeckError):
    """Raised when a session is used against a node it was not issued for."""

    kind = ErrorKind.SESSION_BINDING
