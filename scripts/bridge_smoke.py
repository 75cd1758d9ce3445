#!/usr/bin/env python3
"""
Bridge Smoke Test Script
========================

Standalone script to exercise one bridge session against live endpoints.

This script:
    1. Creates a session bridging the given MCP SSE endpoint to a WebSocket sink
    2. Runs for a configurable duration
    3. Logs session stats every report interval
    4. Reports a final summary and tears the session down

Prerequisites:
    - A reachable MCP server exposing an SSE endpoint
    - A reachable WebSocket sink (or a Xiaozhi token)
    - Install the package: pip install -e .

Usage:
    python scripts/bridge_smoke.py --source https://mcp.example.com/sse --sink wss://echo.example/ws
    python scripts/bridge_smoke.py --source https://mcp.example.com/sse --token YOUR_TOKEN --duration 60
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from collections import Counter

from mcp_bridge.bridge import SessionRegistry
from mcp_bridge.errors import BridgeError


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run_smoke(
    source: str,
    sink: str,
    token: str,
    duration: int,
    report_interval: int,
) -> dict:
    """
    Run the smoke test.

    Args:
        source: MCP SSE endpoint
        sink: WebSocket sink URL (may be empty when token is given)
        token: Xiaozhi token used when sink is empty
        duration: Test duration in seconds
        report_interval: Seconds between progress reports

    Returns:
        Final stats dict
    """
    logger.info("=" * 60)
    logger.info("Bridge Smoke Test")
    logger.info("=" * 60)
    logger.info(f"Source: {source}")
    logger.info(f"Sink: {sink or '(derived from token)'}")
    logger.info(f"Duration: {duration} seconds")
    logger.info("=" * 60)

    registry = SessionRegistry()
    payload = {"mcpServerUrl": source}
    if sink:
        payload["xiaozhiWssUrl"] = sink
    if token:
        payload["xiaozhiToken"] = token

    try:
        session = await registry.create(payload)
    except BridgeError as e:
        logger.error(f"TEST FAILED - could not create bridge: {e.message}")
        return {"created": False, "records": 0}

    start_time = time.time()
    last_report_time = start_time

    try:
        while time.time() - start_time < duration:
            if time.time() - last_report_time >= report_interval:
                status = session.get_status()
                logger.info("-" * 40)
                logger.info(f"Progress Report (elapsed: {time.time() - start_time:.0f}s)")
                logger.info(f"  State: {status.state.value}")
                logger.info(f"  Fully connected: {status.is_fully_connected}")
                logger.info(f"  Reconnect attempts: {status.reconnect_attempts}")
                logger.info(f"  History: {session.history.metrics()}")
                last_report_time = time.time()

            await asyncio.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Test interrupted by user")

    directions = Counter(r.direction.value for r in session.get_history(session.history.capacity))
    metrics = session.history.metrics()
    await registry.shutdown()

    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Total runtime: {time.time() - start_time:.1f} seconds")
    logger.info(f"Records appended: {metrics['total_appended']}")
    for direction, count in sorted(directions.items()):
        logger.info(f"  {direction}: {count}")
    logger.info("=" * 60)

    if directions.get("source_to_sink", 0) > 0:
        logger.info("TEST PASSED - events relayed")
    else:
        logger.error("TEST FAILED - no events relayed")

    return {
        "created": True,
        "records": metrics["total_appended"],
        "relayed": directions.get("source_to_sink", 0),
        "errors": directions.get("error", 0),
    }


def main():
    parser = argparse.ArgumentParser(description="Smoke test for one bridge session")
    parser.add_argument(
        "--source",
        type=str,
        default=os.environ.get("BRIDGE_SOURCE_URL", ""),
        help="MCP SSE endpoint",
    )
    parser.add_argument(
        "--sink",
        type=str,
        default=os.environ.get("BRIDGE_SINK_URL", ""),
        help="WebSocket sink URL",
    )
    parser.add_argument(
        "--token",
        type=str,
        default=os.environ.get("XIAOZHI_TOKEN", ""),
        help="Xiaozhi token (used when --sink is empty)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=60,
        help="Test duration in seconds (default: 60)",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between progress reports (default: 10)",
    )

    args = parser.parse_args()

    result = asyncio.run(run_smoke(
        source=args.source,
        sink=args.sink,
        token=args.token,
        duration=args.duration,
        report_interval=args.report_interval,
    ))

    sys.exit(0 if result.get("relayed", 0) > 0 else 1)


if __name__ == "__main__":
    main()
