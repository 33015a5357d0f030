"""Secure serving options with port reuse and extra ports."""

from __future__ import annotations

import argparse
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

_NETWORK_FAMILIES = {
    "tcp": socket.AF_UNSPEC,
    "tcp4": socket.AF_INET,
    "tcp6": socket.AF_INET6,
}

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {text!r}")


def _parse_ports(text: str) -> List[int]:
    try:
        return [int(part) for part in text.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid port list: {text!r}") from exc


class _BindOption(argparse.Action):
    """Stores a parsed flag value straight onto the options object."""

    def __init__(
        self,
        option_strings: List[str],
        dest: str,
        *,
        target: Any,
        convert: Callable[[str], Any] = str,
        append: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(option_strings, dest, **kwargs)
        self._target = target
        self._convert = convert
        self._append = append
        self._changed = False

    def __call__(self, parser, namespace, values, option_string=None):
        try:
            value = self._convert(values)
        except argparse.ArgumentTypeError as exc:
            parser.error(f"argument {option_string}: {exc}")
        if self._append and self._changed:
            value = list(getattr(self._target, self.dest)) + value
        self._changed = True
        setattr(self._target, self.dest, value)
        setattr(namespace, self.dest, value)


@dataclass
class SecureServingOptions:
    """HTTPS serving options, optionally on several ports with port reuse."""

    bind_address: str = "0.0.0.0"
    bind_port: int = 443
    bind_network: str = ""
    required: bool = True
    cert_directory: str = "apiserver.local.config/certificates"
    pair_name: str = "apiserver"
    cert_file: str = ""
    key_file: str = ""
    generated_cert: Any = None
    http2_max_streams_per_connection: int = 1000
    reuse_port: bool = False
    other_ports: List[int] = field(default_factory=list)
    loopback_client_token: str = ""
    listener: Optional[socket.socket] = None

    def validate(self) -> List[ValueError]:
        """Return every problem found; an empty list means the options are valid."""
        errors: List[ValueError] = []
        if self.reuse_port and not self.loopback_client_token:
            errors.append(
                ValueError("--loopback-client-token must be set when reuse port is enabled")
            )

        used_ports = {self.bind_port}
        for port in self.other_ports:
            if port < 1 or port > 65535:
                errors.append(
                    ValueError(
                        f"port {port} in --orther-secure-ports must be between 1 and 65535, "
                        "inclusive. It cannot be turned off with 0"
                    )
                )
            if port in used_ports:
                errors.append(ValueError(f"port {port} in --orther-secure-ports is duplicate"))
            else:
                used_ports.add(port)

        errors.extend(self._validate_base())
        return errors

    def _validate_base(self) -> List[ValueError]:
        errors: List[ValueError] = []
        if self.required and (self.bind_port < 1 or self.bind_port > 65535):
            errors.append(
                ValueError(
                    f"--secure-port {self.bind_port} must be between 1 and 65535, inclusive. "
                    "It cannot be turned off with 0"
                )
            )
        elif self.bind_port < 0 or self.bind_port > 65535:
            errors.append(
                ValueError(
                    f"--secure-port {self.bind_port} must be between 0 and 65535, inclusive. "
                    "0 for turning off secure port"
                )
            )
        if (self.cert_file or self.key_file) and self.generated_cert is not None:
            errors.append(ValueError("cert/key file and in-memory certificate cannot both be set"))
        return errors

    def add_arguments(self, parser: argparse.ArgumentParser) -> None:
        """Register command-line flags that write into these options."""
        group = parser.add_argument_group("secure serving")

        def bind(flag: str, dest: str, help_text: str, **kwargs: Any) -> None:
            group.add_argument(
                flag,
                dest=dest,
                action=_BindOption,
                target=self,
                default=getattr(self, dest),
                help=help_text,
                **kwargs,
            )

        bind(
            "--bind-address",
            "bind_address",
            "The IP address on which to listen for the --secure-port port.",
        )
        bind(
            "--secure-port",
            "bind_port",
            "The port on which to serve HTTPS with authentication and authorization.",
            convert=int,
        )
        bind(
            "--cert-dir",
            "cert_directory",
            "The directory where the TLS certs are located.",
        )
        bind(
            "--tls-cert-file",
            "cert_file",
            "File containing the default x509 certificate for HTTPS.",
        )
        bind(
            "--tls-private-key-file",
            "key_file",
            "File containing the default x509 private key matching --tls-cert-file.",
        )
        bind(
            "--other-secure-ports",
            "other_ports",
            "A list of ports which to serve HTTPS with authentication and authorization. "
            "The same with --secure-ports",
            convert=_parse_ports,
            append=True,
        )
        bind(
            "--enable-reuse-port",
            "reuse_port",
            "enable reuse port on secure serving port",
            convert=_parse_bool,
            nargs="?",
            const="true",
        )
        bind(
            "--loopback-client-token",
            "loopback_client_token",
            "privileged loopback client token used for reuse port mode",
        )


def _split_host_port(addr: str) -> Tuple[str, str]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


def create_reuse_port_listener(network: str, addr: str) -> Tuple[socket.socket, int]:
    """Listen on ``addr`` with address and port reuse; return the socket and its port."""
    network = network or "tcp"
    family = _NETWORK_FAMILIES.get(network)
    if family is None:
        raise ValueError(f"unsupported network {network!r}")
    host, port = _split_host_port(addr)

    try:
        infos = socket.getaddrinfo(
            host or None, port, family, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        )
        fam, kind, proto, _, sockaddr = infos[0]
        sock = socket.socket(fam, kind, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            reuse_port = getattr(socket, "SO_REUSEPORT", None)
            if reuse_port is not None:
                sock.setsockopt(socket.SOL_SOCKET, reuse_port, 1)
            sock.bind(sockaddr)
            sock.listen(socket.SOMAXCONN)
        except OSError:
            sock.close()
            raise
    except OSError as exc:
        raise OSError(f"failed to listen on {addr}: {exc}") from exc

    return sock, sock.getsockname()[1]