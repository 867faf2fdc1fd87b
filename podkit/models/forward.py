"""Port pairs requested from and reported by a port-forward tunnel."""

from __future__ import annotations

from dataclasses import dataclass

from podkit.errors import ConfigError

# A local port of 0 asks the tunnel for an ephemeral port.
PORT_UNSPECIFIED = 0

_MAX_PORT = 65535


def _parse_port(value: str, raw: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f"invalid port in {raw!r}: {value!r}") from None
    if not 0 <= port <= _MAX_PORT:
        raise ConfigError(f"port out of range in {raw!r}: {port}")
    return port


@dataclass(frozen=True)
class PortPair:
    """A requested ``local -> remote`` port mapping."""

    remote: int
    local: int = PORT_UNSPECIFIED

    def validate(self) -> None:
        if self.remote == PORT_UNSPECIFIED:
            raise ConfigError("remote port is required")
        if not 0 < self.remote <= _MAX_PORT:
            raise ConfigError(f"remote port out of range: {self.remote}")
        if not 0 <= self.local <= _MAX_PORT:
            raise ConfigError(f"local port out of range: {self.local}")

    @classmethod
    def parse(cls, raw: str) -> PortPair:
        """Parse ``[local:]remote``.

        ``"8080"`` maps 8080 to 8080, ``":8080"`` maps an ephemeral local
        port to 8080 and ``"9000:8080"`` maps 9000 to 8080.
        """
        raw = raw.strip()
        if ":" in raw:
            local_raw, remote_raw = raw.split(":", 1)
            if not remote_raw:
                raise ConfigError(f"invalid port pair: {raw!r}")
            local = _parse_port(local_raw, raw) if local_raw else PORT_UNSPECIFIED
            pair = cls(remote=_parse_port(remote_raw, raw), local=local)
        else:
            port = _parse_port(raw, raw)
            pair = cls(remote=port, local=port)
        pair.validate()
        return pair

    def __str__(self) -> str:
        return f"{self.local}:{self.remote}"


@dataclass(frozen=True)
class ForwardedPort:
    """A port mapping as actually bound by a ready tunnel."""

    local: int
    remote: int
