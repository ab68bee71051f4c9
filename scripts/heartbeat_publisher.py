#!/usr/bin/env python3
"""Demo heartbeat writer for the software watchdog.

Publishes heartbeats for one or more checkpoint ids over a single
connection. With ``--stop-after`` one checkpoint goes silent after the given
number of seconds; once the whole connection stops (``--exit-after``) the
watchdog's lease expires and it reports the checkpoint that is most overdue.

Usage examples:
  - python scripts/heartbeat_publisher.py --ids 1 2 3 --period 0.1
  - python scripts/heartbeat_publisher.py --ids 1 2 --stop 2 --stop-after 3 --exit-after 5
"""

from __future__ import annotations

import argparse
import asyncio
import time


async def publish_heartbeats(host: str, port: int, topic: str, ids: list[int], period: float,
                             stop_id: int | None, stop_after: float, exit_after: float | None,
                             linger: float) -> None:
    reader, writer = await asyncio.open_connection(host, port)
    started = time.time()
    try:
        while True:
            elapsed = time.time() - started
            if exit_after is not None and elapsed >= exit_after:
                break
            for checkpoint_id in ids:
                if checkpoint_id == stop_id and elapsed >= stop_after:
                    continue
                writer.write(f"PUB {topic} {checkpoint_id} {time.time()}\n".encode("utf-8"))
                await writer.drain()
                resp = await reader.readline()
                print(resp.decode().strip())
            await asyncio.sleep(period)
        # Stay connected while silent so the lease expires before the writer unmatches
        await asyncio.sleep(linger)
        writer.write(b"QUIT\n")
        await writer.drain()
        await reader.readline()
    finally:
        writer.close()
        await writer.wait_closed()


def main() -> None:
    parser = argparse.ArgumentParser(description="Heartbeat publisher")
    parser.add_argument("--host", default="127.0.0.1", help="Watchdog host")
    parser.add_argument("--port", type=int, default=9400, help="Watchdog wire port")
    parser.add_argument("--topic", default="heartbeat", help="Heartbeat topic")
    parser.add_argument("--ids", type=int, nargs="+", default=[1], help="Checkpoint ids to publish")
    parser.add_argument("--period", type=float, default=0.1, help="Heartbeat period in seconds")
    parser.add_argument("--stop", dest="stop_id", type=int, help="Checkpoint id that goes silent")
    parser.add_argument("--stop-after", type=float, default=3.0, help="Seconds before --stop applies")
    parser.add_argument("--exit-after", type=float, help="Stop publishing entirely after N seconds")
    parser.add_argument("--linger", type=float, default=2.0,
                        help="Seconds to stay connected after publishing stops")
    args = parser.parse_args()
    asyncio.run(publish_heartbeats(args.host, args.port, args.topic, args.ids, args.period,
                                   args.stop_id, args.stop_after, args.exit_after, args.linger))


if __name__ == "__main__":
    main()
