"""Replay a venue timeline against a running backend via the HTTP API.

Usage examples:

- Default (uses the built-in presets):
    `python scenario_replay.py`

- Provide a JSON/YAML config:
    `python scenario_replay.py --config ./my_scenario.yaml`

- Preview without sending requests:
    `python scenario_replay.py --dry-run`

The config file may define `baseUrl`, `devices`, `tables`, `stepSeconds` and
`timeline`. Timeline keys are step numbers; each step is a list of actions
`{"type", "device", "payload"}` where type is one of:
  - start       -> POST /sessions
  - controllers -> PUT  /sessions/{id}/controllers
  - end         -> PUT  /sessions/{id}/end
  - link_table  -> PUT  /sessions/{id}/link-table
  - unlink      -> PUT  /sessions/{id}/unlink-table
  - pay         -> POST /bills/{id}/payments
  - move        -> PUT  /sessions/{id}/move   (payload.toDevice names the target bill)
  - reconcile   -> POST /admin/reconcile
"""
from __future__ import annotations

import argparse
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

BASE_URL = "http://localhost:8000"
SESSION = requests.Session()
DRY_RUN = False
CONSOLE = Console()
STEP_SECONDS = 1.0
SNAPSHOT_ROWS: List[Dict[str, Any]] = []

DEVICE_PRESETS: List[Dict[str, Any]] = [
    {"name": "PS 1", "type": "playstation", "number": "1"},
    {"name": "PS 2", "type": "playstation", "number": "2"},
    {"name": "PC 1", "type": "computer", "number": "1"},
]

TABLE_PRESETS: List[Dict[str, Any]] = [
    {"number": "1", "name": "Window"},
    {"number": "2", "name": "Corner"},
]

TIMELINE: Dict[int, List[Dict[str, Any]]] = {
    1: [
        {"type": "start", "device": "ps1", "payload": {"controllers": 2}},
        {"type": "start", "device": "pc1"},
    ],
    3: [
        {"type": "controllers", "device": "ps1", "payload": {"controllers": 4}},
        {"type": "start", "device": "ps2", "payload": {"table": "1"}},
    ],
    4: [
        {"type": "link_table", "device": "ps1", "payload": {"table": "1"}},
    ],
    6: [
        {"type": "end", "device": "pc1"},
        {"type": "pay", "device": "pc1"},
    ],
    7: [
        {"type": "reconcile"},
    ],
    8: [
        {"type": "end", "device": "ps1"},
        {"type": "end", "device": "ps2"},
        {"type": "pay", "device": "ps1"},
    ],
}

# Filled while replaying: device number -> session id, table number -> table id.
SESSIONS: Dict[str, str] = {}
TABLES: Dict[str, str] = {}
BILLS: Dict[str, str] = {}


def load_config(path: Optional[str]) -> None:
    global BASE_URL, DEVICE_PRESETS, TABLE_PRESETS, TIMELINE, STEP_SECONDS
    if not path:
        return

    file = Path(path)
    if not file.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    if file.suffix.lower() in (".yml", ".yaml"):
        content = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
    else:
        content = json.loads(file.read_text(encoding="utf-8")) or {}

    if isinstance(content.get("baseUrl"), str):
        BASE_URL = content["baseUrl"].rstrip("/")
    if isinstance(content.get("devices"), list):
        DEVICE_PRESETS = content["devices"]
    if isinstance(content.get("tables"), list):
        TABLE_PRESETS = content["tables"]
    if "stepSeconds" in content:
        STEP_SECONDS = float(content["stepSeconds"])
    if isinstance(content.get("timeline"), dict):
        timeline: Dict[int, List[Dict[str, Any]]] = {}
        for key, actions in content["timeline"].items():
            try:
                step = int(key)
            except (TypeError, ValueError):
                raise ValueError(f"Timeline step keys must be integers: got {key}") from None
            if not isinstance(actions, list):
                raise ValueError(f"Timeline step {step} must be a list of actions")
            timeline[step] = actions
        TIMELINE = timeline


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay a venue session timeline")
    parser.add_argument("--config", type=str, default=None, help="Path to JSON/YAML scenario")
    parser.add_argument("--dry-run", action="store_true", help="Print requests without sending")
    parser.add_argument("--base-url", type=str, default=None, help="Override backend base URL")
    parser.add_argument("--max-steps", type=int, default=None, help="Limit replay to N steps")
    parser.add_argument("--excel", type=str, default=None, help="Export bill snapshots to this .xlsx file")
    return parser.parse_args()


def main() -> None:
    global DRY_RUN, BASE_URL
    args = parse_args()
    load_config(args.config)
    DRY_RUN = bool(args.dry_run)
    if args.base_url:
        BASE_URL = args.base_url.rstrip("/")

    register_devices(DEVICE_PRESETS)
    register_tables(TABLE_PRESETS)
    simulate_timeline(max_steps=args.max_steps)
    if args.excel:
        export_excel_snapshots(SNAPSHOT_ROWS, args.excel)


# HTTP helpers ---------------------------------------------------------------

def _request(method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Send one request; failures are printed and ``None`` is returned."""
    if DRY_RUN:
        CONSOLE.print(Panel.fit(f"[DRY] {method} {BASE_URL}{path}\n{body or ''}", title="Dry Run", border_style="magenta"))
        return None
    try:
        resp = SESSION.request(method, f"{BASE_URL}{path}", json=body, timeout=5)
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        CONSOLE.print(Panel(f"[red]{method} {path} failed[/]\n[yellow]{exc}[/]", title="Network Error", border_style="red"))
        return None
    if not payload.get("success"):
        CONSOLE.print(
            Panel(
                f"[red]{method} {path} rejected ({payload.get('error')})[/]\n[yellow]{payload.get('message')}[/]",
                title="Request Rejected",
                border_style="red",
            )
        )
        return None
    return payload.get("data")


def register_devices(presets: List[Dict[str, Any]]) -> None:
    existing = _request("GET", "/devices") or []
    known = {device["number"] for device in existing}
    for device in presets:
        data = _request("POST", "/devices", device) if not _already(device, known) else None
        if data:
            CONSOLE.print(f"[green]✔ Registered device {data['number']}[/]")


def _already(device: Dict[str, Any], known: set) -> bool:
    prefix = "ps" if device.get("type") == "playstation" else "pc"
    return f"{prefix}{device.get('number')}" in known


def register_tables(presets: List[Dict[str, Any]]) -> None:
    existing = _request("GET", "/tables") or []
    for table in existing:
        TABLES[table["number"]] = table["tableId"]
    for table in presets:
        if table["number"] in TABLES:
            continue
        data = _request("POST", "/tables", table)
        if data:
            TABLES[data["number"]] = data["tableId"]
            CONSOLE.print(f"[green]✔ Created table {data['name']}[/]")


# Timeline -------------------------------------------------------------------

def simulate_timeline(max_steps: Optional[int] = None) -> None:
    last_step = max(TIMELINE.keys(), default=0)
    if max_steps is not None:
        last_step = min(last_step, max_steps)

    CONSOLE.print(
        Panel.fit(
            f"steps={last_step}\nstepSeconds={STEP_SECONDS}\nDRY_RUN={DRY_RUN}",
            title="Starting Timeline",
            border_style="cyan",
        )
    )
    for step in range(0, last_step + 1):
        actions = TIMELINE.get(step, [])
        if actions:
            CONSOLE.print(Panel.fit(f"Step {step}", border_style="blue"))
            for action in actions:
                send_action(action)
            snapshot_bills(step)
        else:
            CONSOLE.print(f"[dim]Step {step}: No actions[/]")
        if not DRY_RUN:
            time.sleep(STEP_SECONDS)


def send_action(action: Dict[str, Any]) -> None:
    action_type = action["type"]
    device = action.get("device", "")
    payload = action.get("payload") or {}
    session_id = SESSIONS.get(device, "<session>")

    if action_type == "start":
        body = {"deviceNumber": device, "controllers": payload.get("controllers")}
        if payload.get("table"):
            body["tableId"] = TABLES.get(str(payload["table"]))
        data = _request("POST", "/sessions", body)
        if data:
            SESSIONS[device] = data["session"]["sessionId"]
            BILLS[device] = data["bill"]["billId"]
    elif action_type == "controllers":
        data = _request("PUT", f"/sessions/{session_id}/controllers", {"controllers": payload["controllers"]})
    elif action_type == "end":
        data = _request("PUT", f"/sessions/{session_id}/end")
        if data and data.get("bill"):
            BILLS[device] = data["bill"]["billId"]
    elif action_type == "link_table":
        data = _request("PUT", f"/sessions/{session_id}/link-table", {"tableId": TABLES.get(str(payload["table"]))})
        if data:
            BILLS[device] = data["bill"]["billId"]
    elif action_type == "unlink":
        data = _request("PUT", f"/sessions/{session_id}/unlink-table")
        if data:
            BILLS[device] = data["bill"]["billId"]
    elif action_type == "move":
        target = BILLS.get(payload.get("toDevice", ""), "<bill>")
        data = _request("PUT", f"/sessions/{session_id}/move", {"targetBillId": target})
        if data:
            BILLS[device] = data["bill"]["billId"]
    elif action_type == "reconcile":
        data = _request("POST", "/admin/reconcile", {})
        if data:
            CONSOLE.print(data)
    elif action_type == "pay":
        bill_id = BILLS.get(device, "<bill>")
        bill = _request("GET", f"/bills/{bill_id}")
        amount = payload.get("amount") or (bill or {}).get("remaining") or 0
        data = _request("POST", f"/bills/{bill_id}/payments", {"amount": amount, "method": payload.get("method", "cash")})
    else:
        raise ValueError(f"Unknown action type: {action_type}")

    if data:
        CONSOLE.print(f"[green]✔ {action_type} → {device}[/]")


def snapshot_bills(step: int) -> None:
    bills = _request("GET", "/bills") or []
    table = Table(title=f"Bills after step {step}", box=box.SIMPLE)
    for column in ("Bill", "Status", "Sessions", "Total", "Paid", "Remaining"):
        table.add_column(column)
    for bill in bills:
        table.add_row(
            bill["billNumber"],
            bill["status"],
            str(len(bill["sessionIds"])),
            f"{bill['total']:.2f}",
            f"{bill['paid']:.2f}",
            f"{bill['remaining']:.2f}",
        )
        SNAPSHOT_ROWS.append(
            {
                "step": step,
                "billNumber": bill["billNumber"],
                "status": bill["status"],
                "sessions": len(bill["sessionIds"]),
                "total": bill["total"],
                "paid": bill["paid"],
                "remaining": bill["remaining"],
            }
        )
    if bills:
        CONSOLE.print(table)


def export_excel_snapshots(rows: List[Dict[str, Any]], filename: str) -> None:
    if not rows:
        CONSOLE.print("[yellow]⚠ No snapshots to export[/]")
        return
    wb = Workbook()
    ws = wb.active
    ws.title = "Bill snapshots"

    header_fill = PatternFill("solid", fgColor="FFF2CC")
    headers = ["Step", "Bill", "Status", "Sessions", "Total", "Paid", "Remaining"]
    ws.append(headers)
    for col in range(1, len(headers) + 1):
        cell = ws.cell(row=1, column=col)
        cell.fill = header_fill
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")

    for row in rows:
        ws.append(
            [
                row["step"],
                row["billNumber"],
                row["status"],
                row["sessions"],
                row["total"],
                row["paid"],
                row["remaining"],
            ]
        )

    for col_idx in range(1, ws.max_column + 1):
        max_len = max(len(str(ws.cell(row=r, column=col_idx).value or "")) for r in range(1, ws.max_row + 1))
        ws.column_dimensions[get_column_letter(col_idx)].width = max(9, min(24, max_len + 2))

    try:
        wb.save(filename)
        CONSOLE.print(f"[green]✔ Excel exported: {filename}[/]")
    except OSError as exc:
        CONSOLE.print(f"[red]Failed to write Excel: {exc}[/]")


if __name__ == "__main__":
    main()
