#!/usr/bin/env python3
"""Demo script showing two boards following one shared session store."""

import asyncio
import tempfile
from pathlib import Path

from grounds.engine.catalog import CatalogLoader
from grounds.engine.control_plane import SimulatedControlPlaneClient
from grounds.engine.controller import LifecycleController
from grounds.engine.reconciler import LabBoard
from grounds.shared.formatters.lab_view import STATUS_LABELS, summary_line
from grounds.shared.services.session_store import FileSessionStore

CATALOG = Path(__file__).resolve().parent / "data" / "boxes.json"


def show(label, board):
    print(f"  [{label}] {summary_line(board.summary)}")
    for view in board.views:
        address = view.leased_address or "-"
        print(f"      {view.id}  {view.name:<18} {STATUS_LABELS[view.status]:<12} {address}")


async def run(store_path):
    catalog = CatalogLoader(CATALOG).load()

    # Same process: both boards share one store instance.
    shared = FileSessionStore(store_path)
    board_a = LabBoard(catalog, shared)
    board_b = LabBoard(catalog, shared)

    # "Other process": a second instance on the same file, seen via poll().
    remote = FileSessionStore(store_path)
    board_c = LabBoard(catalog, remote)

    client = SimulatedControlPlaneClient(delay_seconds=0.5, fail_ids=[3])
    controller = LifecycleController(shared, client)

    print("Starting box 1 and box 3 (box 3 is set up to fail):")
    start_1 = asyncio.create_task(controller.start(1, owner="demo"))
    start_3 = asyncio.create_task(controller.start(3, owner="demo"))
    await asyncio.sleep(0.1)
    show("A", board_a)
    show("B", board_b)

    results = await asyncio.gather(start_1, start_3)
    for result in results:
        mark = "✓" if result.ok else "✗"
        print(f"  {mark} box {result.environment_id}: {result.outcome.value} {result.error or ''}")

    print()
    print("Board C before polling the file:")
    show("C", board_c)
    remote.poll()
    print("Board C after polling the file:")
    show("C", board_c)

    print()
    print("Stopping box 1:")
    result = await controller.stop(1)
    print(f"  {'✓' if result.ok else '✗'} {result.outcome.value}")
    remote.poll()
    show("A", board_a)
    show("C", board_c)

    for board in (board_a, board_b, board_c):
        board.close()


def main():
    print("=== Proving Grounds - Shared Session Store Demo ===\n")
    with tempfile.TemporaryDirectory() as tmpdir:
        store_path = Path(tmpdir) / "sessions.json"
        print(f"Session store: {store_path}\n")
        asyncio.run(run(store_path))
    print("\n=== Demo Complete ===")


if __name__ == "__main__":
    main()
