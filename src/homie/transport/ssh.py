"""Remote command execution over SSH (asyncssh)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit

import asyncssh

from homie.core.types import Transport
from homie.errors import RemoteError, TransportError, ValidationError
from homie.transport.base import PreparedCall, TransportClient, decode_text
from homie.transport.guards import (
    DEFAULT_REMOTE_COMMAND_POLICY,
    RemoteCommandPolicy,
    validate_remote_command,
)
from homie.transport.models import ServiceRecord, TransportResult

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


def ssh_target(service: ServiceRecord) -> dict[str, Any]:
    """Pull host and credentials out of a service's free-form config."""
    cfg = service.config
    host = cfg.get("host") or (urlsplit(cfg["url"]).hostname if cfg.get("url") else None)
    return {
        "host": host,
        "port": int(cfg.get("sshPort") or cfg.get("ssh_port") or 22),
        "username": cfg.get("username"),
        "password": cfg.get("password"),
        "private_key": cfg.get("privateKey") or cfg.get("private_key"),
    }


class SSHTransport(TransportClient):
    """Runs a single guarded command per call and closes the session."""

    transport = Transport.SSH

    def __init__(
        self,
        *,
        known_hosts: str | None = None,
        policy: RemoteCommandPolicy = DEFAULT_REMOTE_COMMAND_POLICY,
        connect: Connector | None = None,
    ) -> None:
        self._known_hosts = known_hosts
        self._policy = policy
        self._connect = connect or asyncssh.connect

    def _connect_options(self, target: dict[str, Any]) -> dict[str, Any]:
        options: dict[str, Any] = {"port": target["port"], "username": target["username"]}
        if self._known_hosts:
            options["known_hosts"] = self._known_hosts
        if target["password"]:
            options["password"] = target["password"]
        if target["private_key"]:
            options["client_keys"] = [asyncssh.import_private_key(target["private_key"])]
        return options

    async def send(self, service: ServiceRecord, call: PreparedCall) -> TransportResult:
        target = ssh_target(service)
        if not target["host"] or not target["username"]:
            raise ValidationError("SSH requires a host and a username", code="SSH_CONFIG_INCOMPLETE")
        if not (target["password"] or target["private_key"]):
            raise ValidationError(
                "SSH requires a password or a private key", code="SSH_CONFIG_INCOMPLETE"
            )
        validate_remote_command(call.target, self._policy)

        try:
            options = self._connect_options(target)
        except (asyncssh.KeyImportError, ValueError) as exc:
            raise ValidationError(f"Invalid SSH private key: {exc}", code="SSH_BAD_KEY") from exc

        try:
            conn = await asyncio.wait_for(
                self._connect(target["host"], **options), timeout=call.timeout
            )
        except asyncio.TimeoutError as exc:
            raise TransportError("SSH connection timed out", code="TIMEOUT", cause=exc) from exc
        except asyncssh.PermissionDenied as exc:
            raise RemoteError(
                "SSH authentication failed", code="SSH_AUTH_FAILED", retryable=False, cause=exc
            ) from exc
        except ConnectionRefusedError as exc:
            raise RemoteError(
                f"SSH connection refused by {target['host']}",
                code="SSH_CONNECTION_REFUSED",
                retryable=True,
                cause=exc,
            ) from exc
        except (OSError, asyncssh.Error) as exc:
            raise TransportError(f"SSH connection failed: {exc}", cause=exc) from exc

        async with conn:
            try:
                result = await asyncio.wait_for(
                    conn.run(call.target, check=False), timeout=call.timeout
                )
            except asyncio.TimeoutError as exc:
                raise TransportError("SSH command timed out", code="TIMEOUT", cause=exc) from exc
            except (OSError, asyncssh.Error) as exc:
                raise TransportError(f"SSH session failed: {exc}", cause=exc) from exc

        stdout = _text(result.stdout)
        stderr = _text(result.stderr)
        exit_code = result.exit_status
        if exit_code not in (0, None) and not call.allow_non_zero_exit:
            raise RemoteError(
                f"Remote command exited with status {exit_code}",
                code="SSH_NON_ZERO_EXIT",
                retryable=False,
                details={"exitCode": exit_code, "stderr": stderr},
            )

        if call.parser == "json":
            data = decode_text(stdout, "json")
        else:
            data = {"stdout": stdout, "stderr": stderr, "exitCode": exit_code}
        return TransportResult(data=data, status_code=exit_code)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
