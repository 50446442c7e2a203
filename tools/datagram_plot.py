#!/usr/bin/env python3
import argparse
import sys
import time
from collections import deque

import matplotlib.pyplot as plt
import numpy as np

from datagram_logger import BindError, DatagramLogger, add_listener_args, positive_int

# Plot window
WINDOW_BYTES = 1024
THROUGHPUT_WINDOW_S = 1.0
BYTE_FULL_SCALE = 256


def payload_frame(payload: bytes) -> np.ndarray:
    return np.frombuffer(payload, dtype=np.uint8)


class ThroughputWindow:
    def __init__(self, window_s: float = THROUGHPUT_WINDOW_S) -> None:
        self.window_s = window_s
        self.log = deque()

    def add(self, now: float, nbytes: int) -> None:
        self.log.append((now, nbytes))
        self.trim(now)

    def trim(self, now: float) -> None:
        while self.log and (now - self.log[0][0]) > self.window_s:
            self.log.popleft()

    def mbps(self, now: float) -> float:
        self.trim(now)
        bytes_in_window = sum(sz for _, sz in self.log)
        return (bytes_in_window * 8.0) / self.window_s / 1e6


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live plot of UDP payload bytes")
    add_listener_args(parser)
    parser.add_argument(
        "--window",
        type=positive_int,
        default=WINDOW_BYTES,
        help="Payload bytes to plot from each datagram (default: 1024)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logger = DatagramLogger(
        args.bind,
        args.port,
        broadcast=args.broadcast,
        max_bytes=args.max_bytes,
        rcvbuf=args.rcvbuf,
        timeout=0.01,
    )
    try:
        logger.start()
    except BindError as exc:
        print(f"bind failed: {exc}", file=sys.stderr)
        sys.exit(1)

    throughput = ThroughputWindow()

    fig, ax = plt.subplots()
    (line,) = ax.plot([], [], drawstyle="steps-mid")
    ax.set_xlabel("byte offset")
    ax.set_ylabel("byte value")
    ax.set_xlim(0, args.window)
    ax.set_ylim(0, BYTE_FULL_SCALE)
    throughput_text = ax.text(
        0.98,
        0.98,
        "UDP --.- Mbps",
        ha="right",
        va="top",
        transform=ax.transAxes,
    )

    try:
        while plt.fignum_exists(fig.number):
            datagram = logger.receive_once()
            now = time.monotonic()
            if datagram is None:
                throughput_text.set_text(f"UDP {throughput.mbps(now):4.1f} Mbps")
                plt.pause(0.01)
                continue

            throughput.add(now, len(datagram.payload))
            throughput_text.set_text(f"UDP {throughput.mbps(now):4.1f} Mbps")

            frame = payload_frame(datagram.payload[: args.window])
            line.set_data(np.arange(frame.size), frame)
            ax.set_title(f"{datagram.sender[0]}:{datagram.sender[1]} ({len(datagram.payload)} bytes)")
            fig.canvas.draw_idle()
            plt.pause(0.001)
    except KeyboardInterrupt:
        pass
    finally:
        logger.stop()


if __name__ == "__main__":
    main()
