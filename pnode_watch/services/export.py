from __future__ import annotations

import csv
import io
import json
from typing import Dict, List, Sequence

from pnode_watch.schemas.nodes import Node

CSV_COLUMNS = [
    "Node ID",
    "Public Key",
    "Status",
    "Credits",
    "Uptime %",
    "Uptime Badge",
    "Online Duration (seconds)",
    "Version",
    "Version Status",
    "Is Public",
    "Storage Total (bytes)",
    "Storage Used (bytes)",
    "Storage Usage %",
    "Country",
    "City",
    "IP Address",
    "Last Seen",
]


def _csv_row(node: Node) -> List[str]:
    location = node.location
    return [
        node.id,
        node.public_key or "",
        node.status,
        f"{node.credits:g}",
        f"{node.uptime:.2f}",
        node.uptime_badge,
        str(node.uptime_seconds),
        node.version,
        node.version_status,
        "Yes" if node.is_public else "No",
        str(node.storage.total),
        str(node.storage.used),
        f"{node.storage.usage_percent:.2f}",
        location.country if location else "",
        (location.city or "") if location else "",
        node.network.ip_address,
        node.last_seen or "",
    ]


def nodes_to_csv(nodes: Sequence[Node]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for node in nodes:
        writer.writerow(_csv_row(node))
    return buffer.getvalue()


def parse_nodes_csv(text: str) -> List[Dict[str, str]]:
    """Parse an export back into one dict per row, keyed by column header."""
    reader = csv.DictReader(io.StringIO(text))
    return [dict(row) for row in reader]


def nodes_to_json(nodes: Sequence[Node], *, exported_at: str) -> str:
    payload = {
        "exported_at": exported_at,
        "total": len(nodes),
        "nodes": [node.model_dump(mode="json") for node in nodes],
    }
    return json.dumps(payload, indent=2)


def export_filename(extension: str, *, date: str) -> str:
    return f"pnode-watch-nodes-{date}.{extension}"
