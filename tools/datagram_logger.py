#!/usr/bin/env python3
"""
UDP datagram logger: prints every received packet as a hex dump plus its raw text.

Each datagram produces one line:

    From <ip>:<port> - <hex bytes separated by spaces> - <raw text>

Datagrams addressed to a broadcast address are dropped unless --broadcast is
given. The destination is read from IP_PKTINFO ancillary data (Linux).
"""

import argparse
import socket
import struct
import sys
import time
from dataclasses import dataclass
from typing import Optional, TextIO, Tuple

DEFAULT_BIND_IP = "0.0.0.0"
DEFAULT_BIND_PORT = 12345
DEFAULT_MAX_BYTES = 65535
DEFAULT_TIMEOUT = 0.5

# struct in_pktinfo: ifindex, spec_dst (local address), addr (header destination)
IP_PKTINFO = getattr(socket, "IP_PKTINFO", 8)
PKTINFO = struct.Struct("=i4s4s")
PKTINFO_BUFSIZE = socket.CMSG_SPACE(PKTINFO.size)
LIMITED_BROADCAST = socket.inet_aton("255.255.255.255")

UNBOUND = "unbound"
BOUND = "bound"
CLOSED = "closed"

Address = Tuple[str, int]


class BindError(OSError):
    """The listening address could not be reserved."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"cannot bind {host}:{port}: {reason}")
        self.host = host
        self.port = port


@dataclass
class Datagram:
    payload: bytes
    sender: Address


@dataclass
class ListenerStats:
    packets: int = 0
    payload_bytes: int = 0
    dropped_broadcast: int = 0

    def account(self, datagram: Datagram) -> None:
        self.packets += 1
        self.payload_bytes += len(datagram.payload)

    def summary(self, elapsed: float) -> str:
        mbps = (self.payload_bytes * 8.0 / 1e6) / elapsed if elapsed > 0 else 0.0
        pps = self.packets / elapsed if elapsed > 0 else 0.0
        return f"{self.packets} pkts, {self.payload_bytes} bytes, {mbps:.2f} Mbps, {pps:.1f} pkt/s"


def hexdump(buf: bytes) -> str:
    """Two lowercase hex digits per byte, single-space separated."""
    return " ".join(f"{b:02x}" for b in buf)


def render_text(buf: bytes) -> str:
    """Best-effort UTF-8 decoding.

    Control bytes pass through untouched, so a payload containing CR/LF spans
    several console lines; the hex field is the unambiguous one.
    """
    return buf.decode("utf-8", errors="replace")


def format_datagram(payload: bytes, sender: Address) -> str:
    return f"From {sender[0]}:{sender[1]} - {hexdump(payload)} - {render_text(payload)}"


def is_broadcast_delivery(ancdata) -> bool:
    """True if IP_PKTINFO says the packet was not addressed to a local unicast address."""
    for level, kind, data in ancdata:
        if level == socket.IPPROTO_IP and kind == IP_PKTINFO and len(data) >= PKTINFO.size:
            _ifindex, local, dest = PKTINFO.unpack_from(data)
            return dest == LIMITED_BROADCAST or dest != local
    return False


def port_number(value: str) -> int:
    port = int(value)
    if not 0 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"port must be 0-65535, got {port}")
    return port


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {number}")
    return number


class DatagramLogger:
    """Owns one UDP socket for its whole lifetime: unbound -> bound -> closed."""

    def __init__(
        self,
        bind_ip: str = DEFAULT_BIND_IP,
        bind_port: int = DEFAULT_BIND_PORT,
        broadcast: bool = False,
        max_bytes: int = DEFAULT_MAX_BYTES,
        rcvbuf: Optional[int] = None,
        timeout: float = DEFAULT_TIMEOUT,
        out: Optional[TextIO] = None,
    ) -> None:
        self.bind_ip = bind_ip
        self.bind_port = bind_port
        self.broadcast = broadcast
        self.max_bytes = max_bytes
        self.rcvbuf = rcvbuf
        self.timeout = timeout
        self.out = out if out is not None else sys.stdout
        self.stats = ListenerStats()
        self.state = UNBOUND
        self.address: Optional[Address] = None
        self._sock: Optional[socket.socket] = None

    def __enter__(self) -> "DatagramLogger":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def start(self) -> Address:
        if self.state != UNBOUND:
            raise RuntimeError(f"cannot start a logger that is {self.state}")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            if self.broadcast:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            else:
                sock.setsockopt(socket.IPPROTO_IP, IP_PKTINFO, 1)
            if self.rcvbuf is not None:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self.rcvbuf)
            sock.bind((self.bind_ip, self.bind_port))
            sock.settimeout(self.timeout)
        except (OSError, OverflowError, ValueError) as exc:
            sock.close()
            reason = getattr(exc, "strerror", None) or str(exc)
            raise BindError(self.bind_ip, self.bind_port, reason) from exc
        except BaseException:
            sock.close()
            raise

        self._sock = sock
        self.state = BOUND
        self.address = sock.getsockname()[:2]
        print(f"Listening on {self.address[0]}:{self.address[1]}", file=self.out)
        return self.address

    def on_message(self, payload: bytes, sender: Address) -> str:
        line = format_datagram(payload, sender)
        self.stats.account(Datagram(payload, sender))
        print(line, file=self.out)
        return line

    def receive_once(self) -> Optional[Datagram]:
        sock = self._sock
        if sock is None:
            return None
        try:
            data, ancdata, _flags, addr = sock.recvmsg(self.max_bytes, PKTINFO_BUFSIZE)
        except socket.timeout:
            return None
        except OSError:
            # stop() closed the socket under us
            if self.state == CLOSED:
                return None
            raise
        if self.state != BOUND:
            return None
        if not self.broadcast and is_broadcast_delivery(ancdata):
            self.stats.dropped_broadcast += 1
            return None
        sender = (addr[0], addr[1])
        self.on_message(data, sender)
        return Datagram(data, sender)

    def should_stop(
        self,
        elapsed: float,
        limit_packets: Optional[int] = None,
        limit_seconds: Optional[float] = None,
    ) -> bool:
        if self.state != BOUND:
            return True
        if limit_seconds is not None and elapsed >= limit_seconds:
            return True
        if limit_packets is not None and self.stats.packets >= limit_packets:
            return True
        return False

    def serve(
        self,
        limit_packets: Optional[int] = None,
        limit_seconds: Optional[float] = None,
        stats_interval: float = 0,
    ) -> ListenerStats:
        start = time.time()
        next_stats = start + stats_interval if stats_interval > 0 else None

        while not self.should_stop(time.time() - start, limit_packets, limit_seconds):
            self.receive_once()

            now = time.time()
            if next_stats is not None and now >= next_stats:
                elapsed = max(now - start, 1e-6)
                print(f"stats: {self.stats.summary(elapsed)}", file=self.out)
                next_stats = now + stats_interval

        return self.stats

    def stop(self) -> None:
        if self.state == CLOSED:
            return
        self.state = CLOSED
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()


def add_listener_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--bind", default=DEFAULT_BIND_IP, help="IP/interface to bind (default: 0.0.0.0)")
    parser.add_argument(
        "--port", type=port_number, default=DEFAULT_BIND_PORT, help="UDP port to listen on (default: 12345)"
    )
    parser.add_argument(
        "--broadcast",
        action="store_true",
        help="Accept datagrams sent to broadcast addresses (dropped by default)",
    )
    parser.add_argument(
        "--max-bytes", type=positive_int, default=DEFAULT_MAX_BYTES, help="Max bytes to read per packet"
    )
    parser.add_argument("--rcvbuf", type=int, default=None, help="SO_RCVBUF size (default: kernel default)")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print UDP datagrams as hex and raw text")
    add_listener_args(parser)
    parser.add_argument("--limit-packets", type=int, default=None, help="Stop after this many packets")
    parser.add_argument("--limit-seconds", type=float, default=None, help="Stop after this many seconds")
    parser.add_argument(
        "--stats",
        type=float,
        default=0.0,
        help="Seconds between throughput prints (default 0: disabled)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logger = DatagramLogger(args.bind, args.port, broadcast=args.broadcast, max_bytes=args.max_bytes, rcvbuf=args.rcvbuf)
    try:
        logger.start()
    except BindError as exc:
        print(f"bind failed: {exc}", file=sys.stderr)
        sys.exit(1)

    start = time.time()
    try:
        logger.serve(args.limit_packets, args.limit_seconds, args.stats)
    except KeyboardInterrupt:
        pass
    finally:
        logger.stop()
        elapsed = max(time.time() - start, 1e-6)
        print(f"stopped after {elapsed:.1f}s: {logger.stats.summary(elapsed)}")


if __name__ == "__main__":
    main()
