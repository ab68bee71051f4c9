"""Text-based wire protocol for heartbeat writers and failure subscribers.

Supported commands:
- PING -> PONG
- PUB <topic> <checkpoint_id> [<timestamp>] -> OK <checkpoint_id> | OK dropped
- SUB <topic> -> OK subscribed <topic>, then FAILURE <checkpoint_id> <reported_at> lines
- STATE -> STATE <state>
- QUIT -> OK bye

Each connection that publishes heartbeats counts as one liveliness writer.
"""

from __future__ import annotations

import asyncio
import math
import time


def _writer_key(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return f"conn-{id(writer)}"


def _handle_pub(line: str, node, writer_key: str) -> bytes:
    if node is None:
        return b"ERR unavailable\n"
    parts = line.split()
    if len(parts) not in (3, 4):
        return b"ERR usage: PUB <topic> <checkpoint_id> [<timestamp>]\n"
    topic = parts[1]
    if topic != node.settings.heartbeat_topic:
        return b"ERR unknown_topic\n"
    try:
        checkpoint_id = int(parts[2])
    except ValueError:
        return b"ERR checkpoint_id_must_be_int\n"
    try:
        ts = float(parts[3]) if len(parts) == 4 else time.time()
    except ValueError:
        return b"ERR timestamp_must_be_float\n"
    if not math.isfinite(ts):
        return b"ERR timestamp_must_be_finite\n"
    if not node.ingest_heartbeat(writer_key, checkpoint_id, ts):
        return b"OK dropped\n"
    return f"OK {checkpoint_id}\n".encode()


def _handle_sub(line: str, node, writer: asyncio.StreamWriter) -> bytes:
    parts = line.split(maxsplit=1)
    if len(parts) != 2:
        return b"ERR usage: SUB <topic>\n"
    if node is None:
        return b"ERR unavailable\n"
    topic = parts[1].strip()
    if topic != node.settings.failure_topic:
        return b"ERR unknown_topic\n"
    node.add_subscriber(topic, writer)
    return f"OK subscribed {topic}\n".encode()


async def _handle_client(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, node=None) -> None:
    writer_key = _writer_key(writer)
    published = False
    try:
        while True:
            try:
                data = await reader.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # readline() has already discarded the oversized chunk
                writer.write(b"ERR line_too_long\n")
                await writer.drain()
                continue
            if not data:
                break
            try:
                line = data.decode("utf-8").strip()
            except UnicodeDecodeError:
                writer.write(b"ERR invalid_encoding\n")
                await writer.drain()
                continue
            if not line:
                continue

            command = line.split(maxsplit=1)[0].upper()
            if command == "PING":
                writer.write(b"PONG\n")
            elif command == "PUB":
                reply = _handle_pub(line, node, writer_key)
                published = published or reply.startswith(b"OK")
                writer.write(reply)
            elif command == "SUB":
                writer.write(_handle_sub(line, node, writer))
            elif command == "STATE":
                if node is None:
                    writer.write(b"ERR unavailable\n")
                else:
                    writer.write(f"STATE {node.lifecycle.state.value}\n".encode())
            elif command == "QUIT":
                writer.write(b"OK bye\n")
                await writer.drain()
                break
            else:
                writer.write(b"ERR unknown\n")
            await writer.drain()
    except ConnectionError:
        pass
    finally:
        if node is not None:
            node.remove_writer(writer)
            if published:
                node.writer_gone(writer_key)
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, RuntimeError):
            pass


async def create_api_server(host: str, port: int, node=None,
                            limit: int = 2 ** 16) -> asyncio.AbstractServer:
    """Create the wire server (does not block). Useful for tests.

    ``limit`` bounds the length of a single command line.
    """
    server = await asyncio.start_server(lambda r, w: _handle_client(r, w, node=node), host, port,
                                        limit=limit)
    return server
