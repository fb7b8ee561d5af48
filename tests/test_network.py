from __future__ import annotations

from pnode_watch.services.network import IssuePolicy, calculate_network_stats, detect_issues, enrich_nodes
from tests.helpers import NOW, make_node


def test_offline_node_reports_only_offline_issue() -> None:
    node = make_node("pk-a", status="offline", uptime=10.0, response_time=5000.0)

    issues = detect_issues([node], now=NOW, policy=IssuePolicy())

    assert [issue.type for issue in issues] == ["offline"]
    assert issues[0].severity == "high"


def test_issues_sorted_by_severity() -> None:
    nodes = [
        make_node("pk-slow", response_time=1500.0),
        make_node("pk-low", uptime=40.0),
        make_node("pk-full", storage_total=100, storage_used=99),
    ]

    issues = detect_issues(nodes, now=NOW, policy=IssuePolicy())

    severities = [issue.severity for issue in issues]
    assert severities == sorted(severities, key={"high": 0, "medium": 1, "low": 2}.get)
    assert {issue.type for issue in issues} == {"high_latency", "low_uptime", "storage_full"}


def test_enrich_attaches_credits_by_public_key() -> None:
    nodes = [make_node("pk-a", score=0.0), make_node("pk-b", score=0.0)]

    enriched = enrich_nodes(nodes, {"pk-a": 900.0})

    by_id = {node.id: node for node in enriched}
    assert by_id["pk-a"].credits == 900.0
    assert by_id["pk-b"].credits == 0.0
    assert by_id["pk-a"].score > by_id["pk-b"].score
    assert by_id["pk-a"].version_status == "current"
    assert nodes[0].credits == 0.0


def test_network_stats_for_empty_collection() -> None:
    stats = calculate_network_stats([], now=NOW)

    assert stats.total_nodes == 0
    assert stats.storage_utilization == 0.0


def test_network_stats_counts_statuses() -> None:
    nodes = [make_node("a"), make_node("b", status="degraded"), make_node("c", status="offline", is_public=False)]

    stats = calculate_network_stats(nodes, now=NOW)

    assert (stats.online_nodes, stats.degraded_nodes, stats.offline_nodes) == (1, 1, 1)
    assert stats.public_nodes == 2
    assert stats.version_distribution == {"0.8.0": 3}
