from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from pnode_watch.clock import utcnow
from pnode_watch.config import Settings, get_settings
from pnode_watch.dependencies import get_node_store
from pnode_watch.errors import PollError, UpstreamError
from pnode_watch.logger import get_logger
from pnode_watch.schemas.nodes import (
    NetworkStats,
    Node,
    NodeIssue,
    NodeListOut,
    NodeStatsOut,
    NodeStatsRequest,
    RpcRequest,
    RpcResponse,
)
from pnode_watch.schemas.scoring import (
    LeaderboardEntry,
    NetworkHealth,
    NodeBenchmark,
    NodeComparisonOut,
    NodeDetailOut,
)
from pnode_watch.services import export as export_service
from pnode_watch.services.badges import calculate_all_badges, calculate_badges
from pnode_watch.services.benchmark import benchmark_node, compare_nodes
from pnode_watch.services.credits import calculate_credit_stats, is_reward_eligible
from pnode_watch.services.network import IssuePolicy, calculate_network_stats, detect_issues
from pnode_watch.services.nodes import NodeCollection, NodeStore, find_node
from pnode_watch.services.scoring import (
    calculate_contribution_scores,
    calculate_network_health,
    get_top_contributors,
)

router = APIRouter(prefix="/api", tags=["nodes"])
_logger = get_logger("api.nodes")


async def _collection(store: NodeStore, *, force: bool = False) -> NodeCollection:
    try:
        return await store.get_collection(force=force)
    except PollError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _require(collection: NodeCollection, node_id: str) -> Node:
    node = find_node(collection.nodes, node_id)
    if node is None:
        raise HTTPException(status_code=404, detail=f"Node {node_id} not found")
    return node


@router.get("/nodes", response_model=NodeListOut)
async def list_nodes(
    refresh: bool = Query(default=False),
    store: NodeStore = Depends(get_node_store),
) -> NodeListOut:
    collection = await _collection(store, force=refresh)
    return NodeListOut(
        nodes=collection.nodes,
        total=len(collection.nodes),
        stale=collection.stale,
        seed=collection.seed,
        response_time_ms=collection.response_time_ms,
        timestamp=collection.fetched_at.isoformat(),
    )


@router.get("/nodes/export.csv")
async def export_nodes_csv(store: NodeStore = Depends(get_node_store)) -> Response:
    collection = await _collection(store)
    filename = export_service.export_filename("csv", date=utcnow().date().isoformat())
    return Response(
        content=export_service.nodes_to_csv(collection.nodes),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/nodes/export.json")
async def export_nodes_json(store: NodeStore = Depends(get_node_store)) -> Response:
    collection = await _collection(store)
    now = utcnow()
    filename = export_service.export_filename("json", date=now.date().isoformat())
    return Response(
        content=export_service.nodes_to_json(collection.nodes, exported_at=now.isoformat()),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/nodes/{node_id}", response_model=NodeDetailOut)
async def get_node(node_id: str, store: NodeStore = Depends(get_node_store)) -> NodeDetailOut:
    collection = await _collection(store)
    node = _require(collection, node_id)
    threshold = calculate_credit_stats(item.credits for item in collection.nodes).threshold80
    return NodeDetailOut(
        node=node,
        contribution=calculate_contribution_scores(collection.nodes)[node.id],
        badges=calculate_badges(node, collection.nodes),
        reward_eligible=is_reward_eligible(node.credits, threshold),
        credits_threshold=threshold,
    )


@router.get("/nodes/{node_id}/benchmark", response_model=NodeBenchmark)
async def get_node_benchmark(node_id: str, store: NodeStore = Depends(get_node_store)) -> NodeBenchmark:
    collection = await _collection(store)
    return benchmark_node(_require(collection, node_id), collection.nodes)


@router.get("/compare", response_model=NodeComparisonOut)
async def compare(
    ids: str = Query(..., description="Two comma-separated node ids or prefixes"),
    store: NodeStore = Depends(get_node_store),
) -> NodeComparisonOut:
    wanted = [item.strip() for item in ids.split(",") if item.strip()]
    if len(wanted) != 2:
        raise HTTPException(status_code=400, detail="Provide exactly two node ids")
    collection = await _collection(store)
    node_a, node_b = (_require(collection, item) for item in wanted)
    return compare_nodes(node_a, node_b, collection.nodes)


@router.get("/network/stats", response_model=NetworkStats)
async def network_stats(store: NodeStore = Depends(get_node_store)) -> NetworkStats:
    collection = await _collection(store)
    return calculate_network_stats(collection.nodes, now=utcnow())


@router.get("/network/health", response_model=NetworkHealth)
async def network_health(store: NodeStore = Depends(get_node_store)) -> NetworkHealth:
    collection = await _collection(store)
    return calculate_network_health(collection.nodes)


@router.get("/network/issues", response_model=List[NodeIssue])
async def network_issues(
    store: NodeStore = Depends(get_node_store),
    settings: Settings = Depends(get_settings),
) -> List[NodeIssue]:
    collection = await _collection(store)
    return detect_issues(collection.nodes, now=utcnow(), policy=IssuePolicy.from_settings(settings))


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
async def leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    store: NodeStore = Depends(get_node_store),
) -> List[LeaderboardEntry]:
    collection = await _collection(store)
    badges = calculate_all_badges(collection.nodes)
    return [
        LeaderboardEntry(
            rank=rank,
            node=node,
            contribution=contribution,
            badges=[badge for badge in badges[node.id] if badge.earned],
        )
        for rank, (node, contribution) in enumerate(get_top_contributors(collection.nodes, count=limit), start=1)
    ]


@router.post("/prpc", response_model=RpcResponse)
async def proxy_rpc(payload: RpcRequest, store: NodeStore = Depends(get_node_store)) -> RpcResponse:
    poller = store.poller
    if not poller.seeds:
        raise HTTPException(status_code=500, detail="No seed nodes configured")
    try:
        rpc = await poller.call(payload.method)
    except PollError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return RpcResponse(data=rpc.result, response_time_ms=rpc.response_time_ms, seed=rpc.seed)


@router.post("/node-stats", response_model=NodeStatsOut)
async def node_stats(payload: NodeStatsRequest, store: NodeStore = Depends(get_node_store)) -> NodeStatsOut:
    if not payload.ip.strip():
        raise HTTPException(status_code=400, detail="IP address is required")
    try:
        rpc = await store.poller.get_stats(payload.ip.strip(), payload.port)
    except UpstreamError as exc:
        _logger.info("node_stats.unreachable", "Node did not answer get-stats", ip=payload.ip, error=str(exc))
        return NodeStatsOut(success=False, unreachable=True, error=str(exc))
    data = rpc.result if isinstance(rpc.result, dict) else {"result": rpc.result}
    return NodeStatsOut(success=True, data=data, response_time_ms=rpc.response_time_ms)
