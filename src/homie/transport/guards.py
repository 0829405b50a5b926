"""Allow-list policies for privileged transports.

Both validators run before any I/O and raise ``ValidationError`` naming
the rule that was violated.

The remote-command policy narrows what can be sent over SSH but is not a
sandbox: an allowed command is executed verbatim by the remote shell, so
an allowed binary that can itself write files or spawn processes still
can. Callers that need stronger isolation should restrict the remote
account.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass

from homie.errors import ValidationError

_API_VERSION_PREFIX = re.compile(r"^/v\d+(\.\d+)?(?=/)")

DEFAULT_ALLOWED_METHODS = frozenset({"GET", "HEAD"})

DEFAULT_ALLOWED_PATHS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/_ping$"),
    re.compile(r"^/version$"),
    re.compile(r"^/info$"),
    re.compile(r"^/containers/json$"),
    re.compile(r"^/containers/[^/]+/json$"),
    re.compile(r"^/images/json$"),
    re.compile(r"^/images/[^/]+/json$"),
    re.compile(r"^/networks$"),
    re.compile(r"^/networks/[^/]+$"),
    re.compile(r"^/volumes$"),
    re.compile(r"^/volumes/[^/]+$"),
)

MUTATING_VERBS = frozenset(
    {
        "create",
        "kill",
        "remove",
        "restart",
        "pause",
        "unpause",
        "exec",
        "start",
        "stop",
        "prune",
        "update",
        "rename",
        "attach",
        "commit",
        "delete",
        "wait",
        "resize",
        "archive",
    }
)

SHELL_METACHARACTERS: tuple[str, ...] = ("|", "&&", "&", ";", ">", "<", "`", "$(", "\n", "\r")

DESTRUCTIVE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\brm\s+-[a-z]*r[a-z]*f", re.IGNORECASE),
    re.compile(r"\brm\s+-[a-z]*f[a-z]*r", re.IGNORECASE),
    re.compile(r"\bmkfs(\.\w+)?\b", re.IGNORECASE),
    re.compile(r"\bdd\s+if=", re.IGNORECASE),
    re.compile(r":\s*\(\s*\)\s*\{"),
    re.compile(r"\b(shutdown|reboot|halt|poweroff)\b", re.IGNORECASE),
    re.compile(r"\b(chmod|chown|useradd|userdel|usermod|passwd)\b", re.IGNORECASE),
    re.compile(r"\b(systemctl|service)\s+(stop|restart|disable|mask)\b", re.IGNORECASE),
)

DEFAULT_ALLOWED_COMMANDS = frozenset(
    {
        "cat",
        "df",
        "du",
        "uptime",
        "ls",
        "ps",
        "free",
        "whoami",
        "uname",
        "hostname",
        "id",
        "date",
        "head",
        "tail",
        "wc",
        "lsblk",
        "ip",
        "sensors",
        "nproc",
        "vmstat",
        "iostat",
    }
)


@dataclass(frozen=True)
class ControlSocketPolicy:
    """Default-deny policy for container control socket requests."""

    allowed_methods: frozenset[str] = DEFAULT_ALLOWED_METHODS
    allowed_paths: tuple[re.Pattern[str], ...] = DEFAULT_ALLOWED_PATHS
    mutating_verbs: frozenset[str] = MUTATING_VERBS


@dataclass(frozen=True)
class RemoteCommandPolicy:
    allowed_commands: frozenset[str] = DEFAULT_ALLOWED_COMMANDS
    metacharacters: tuple[str, ...] = SHELL_METACHARACTERS
    destructive_patterns: tuple[re.Pattern[str], ...] = DESTRUCTIVE_PATTERNS


DEFAULT_CONTROL_SOCKET_POLICY = ControlSocketPolicy()
DEFAULT_REMOTE_COMMAND_POLICY = RemoteCommandPolicy()


def normalize_socket_path(path: str) -> str:
    """Strip query string, trailing slash and an optional ``/vX.Y`` prefix."""
    bare = path.split("?", 1)[0] or "/"
    if not bare.startswith("/"):
        bare = "/" + bare
    bare = _API_VERSION_PREFIX.sub("", bare, count=1)
    if len(bare) > 1:
        bare = bare.rstrip("/")
    return bare


def validate_control_socket_request(
    method: str,
    path: str,
    policy: ControlSocketPolicy = DEFAULT_CONTROL_SOCKET_POLICY,
) -> None:
    """Reject anything but allow-listed read-only control socket calls."""
    normalized = normalize_socket_path(path)
    segments = [s.lower() for s in normalized.split("/") if s]
    for segment in segments:
        if segment in policy.mutating_verbs:
            raise ValidationError(
                f"Control socket path uses mutating operation {segment!r}: {path}",
                code="GUARD_MUTATING_PATH",
            )

    upper = (method or "GET").upper()
    if upper not in policy.allowed_methods:
        raise ValidationError(
            f"Control socket method not allowed: {upper}",
            code="GUARD_METHOD_NOT_ALLOWED",
        )

    if not any(pattern.match(normalized) for pattern in policy.allowed_paths):
        raise ValidationError(
            f"Control socket path not allowed: {path}",
            code="GUARD_PATH_NOT_ALLOWED",
        )


def validate_remote_command(
    command: str,
    policy: RemoteCommandPolicy = DEFAULT_REMOTE_COMMAND_POLICY,
) -> None:
    """Reject chained, redirected, destructive or unknown remote commands."""
    cmd = (command or "").strip()
    if not cmd:
        raise ValidationError("Remote command is required", code="GUARD_EMPTY_COMMAND")

    for token in policy.metacharacters:
        if token in cmd:
            raise ValidationError(
                f"Remote command contains shell metacharacter {token!r}",
                code="GUARD_METACHARACTER",
            )

    for pattern in policy.destructive_patterns:
        if pattern.search(cmd):
            raise ValidationError(
                "Remote command matches destructive pattern",
                code="GUARD_DESTRUCTIVE_COMMAND",
                details={"pattern": pattern.pattern},
            )

    try:
        argv = shlex.split(cmd)
    except ValueError as exc:
        raise ValidationError(
            f"Remote command could not be parsed: {exc}",
            code="GUARD_UNPARSEABLE_COMMAND",
        ) from exc

    binary = argv[0].rsplit("/", 1)[-1] if argv else ""
    if binary not in policy.allowed_commands:
        raise ValidationError(
            f"Remote command not allowed by policy: {binary}",
            code="GUARD_COMMAND_NOT_ALLOWED",
        )
