"""Shared constant values for the CapsLock runtime."""

CAPSLOCK_VERSION = "0.1"
TRACE_VERSION = "0.1"

REVOCATION_MODES = ("lazy", "eager")
DEFAULT_MODE = "lazy"

# Sentinel written over a tagged allocation when foreign code touches it.
REVOKED_TAG = 0xDEAD_BEEF
TAG_MASK = (1 << 64) - 1

MONITOR_EVENTS = ("alloc", "reborrow", "access", "free")
TAGGED_EVENTS = ("register", "check", "revoke")

PERMISSION_COLORS = {
    "shared": "#8BC34A",
    "mutable": "#FF7043",
}

STATUS_COLORS = {
    "active": "#34495e",
    "revoked": "#B0BEC5",
}

LOGBOOK_FILE = "capslock.logbook.jsonl"
KEY_FILE = "capslock_private_key.pem"
PUB_FILE = "capslock_public_key.pem"
LOGBOOK_LIMIT = 10

__all__ = [
    "CAPSLOCK_VERSION",
    "TRACE_VERSION",
    "REVOCATION_MODES",
    "DEFAULT_MODE",
    "REVOKED_TAG",
    "TAG_MASK",
    "MONITOR_EVENTS",
    "TAGGED_EVENTS",
    "PERMISSION_COLORS",
    "STATUS_COLORS",
    "LOGBOOK_FILE",
    "KEY_FILE",
    "PUB_FILE",
    "LOGBOOK_LIMIT",
]
