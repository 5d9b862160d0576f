"""Command line interface for Janus."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, List, Optional

from janus.budget import BudgetLedger
from janus.config import Config, get_config
from janus.council import CouncilSettings, CouncilSwarm
from janus.council.prompts import load_manifesto
from janus.errors import BudgetExceededError, JanusError
from janus.executor import ExecutorSafety, ExecutorSwarm
from janus.models.catalog import load_catalog
from janus.models.feedback import FeedbackSettings, PeerRater, RatingEvent, TierSnapshot, recompute_and_save, record_rating
from janus.models.freshness import CatalogStatus, ensure_catalog_freshness
from janus.models.oracle import OracleRunner
from janus.models.router import ModelRouter
from janus.parsing import coerce_number
from janus.store import ContextStore

logger = logging.getLogger(__name__)


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _session_id(args: argparse.Namespace) -> str:
    return getattr(args, "session", None) or f"cli-{uuid.uuid4().hex[:8]}"


def _runtime(config: Config, session_id: str | None = None):
    store = ContextStore(config.context_path)
    ledger = BudgetLedger.from_store(store, config.monthly_budget_usd, session_id=session_id)
    router = ModelRouter.from_config(config, store, ledger)
    return store, ledger, router


def cmd_route(args: argparse.Namespace, config: Config) -> None:
    _, _, router = _runtime(config)
    decision = router.route(
        args.prompt,
        args.task,
        preferred_model=args.model,
        min_quality=args.min_quality,
        max_cost=args.max_cost,
    )
    _print(decision.to_dict())


def cmd_budget(args: argparse.Namespace, config: Config) -> None:
    store = ContextStore(config.context_path)
    action = args.budget_cmd or "show"
    if action == "set":
        if args.amount is None or args.amount < 0:
            raise JanusError("budget set requires a non-negative amount")
        store.write_budget_override(args.amount)
    elif action == "clear":
        store.clear_budget_override()
    ledger = BudgetLedger.from_store(store, config.monthly_budget_usd)
    payload = ledger.status()
    payload["override"] = store.read_budget_override() is not None
    _print(payload)


def cmd_models(args: argparse.Namespace, config: Config) -> None:
    store = ContextStore(config.context_path)
    settings = FeedbackSettings.from_config(config.feedback)
    action = args.models_cmd or "show"
    if action == "recompute":
        snapshot = recompute_and_save(store, settings)
        _print({"snapshot": snapshot.to_dict()})
        return
    if action == "reset":
        store.clear_tier_snapshot()
        _print({"ok": True, "snapshot": None})
        return
    if action == "refresh":
        freshness = config.freshness
        runner = OracleRunner(
            command=freshness.get("oracle_command") or ["oracle"],
            model=freshness.get("oracle_model"),
            timeout_seconds=int(freshness.get("oracle_timeout_seconds", 120)),
        )
        status, updated = ensure_catalog_freshness(
            store,
            runner,
            list(freshness.get("critical_keys") or []),
            ttl_hours=float(freshness.get("ttl_hours", 48)),
            force=args.force,
        )
        _print({"updated": updated, "status": status.to_dict()})
        return

    catalog = load_catalog(store)
    snapshot = TierSnapshot.from_dict(store.read_tier_snapshot())
    status = CatalogStatus.from_dict(store.read_catalog_status())
    _print({
        "providerPreference": catalog.provider_preference,
        "models": [model.to_dict() for model in catalog.models],
        "snapshot": snapshot.to_dict() if snapshot else None,
        "status": status.to_dict() if status else None,
    })


def cmd_rate(args: argparse.Namespace, config: Config) -> None:
    if not 1 <= args.rating <= 5:
        raise JanusError("rating must be between 1 and 5")
    store = ContextStore(config.context_path)
    last_run = store.read_last_model_run()
    if not last_run or not last_run.get("modelKey") or not last_run.get("taskId"):
        raise JanusError("No previous model run to rate")
    event = RatingEvent(
        session_id=str(last_run.get("sessionId") or "manual"),
        from_model_key="human",
        to_model_key=str(last_run["modelKey"]),
        to_task_id=str(last_run["taskId"]),
        rating=args.rating,
        rationale=" ".join(args.notes) or None,
        method="manual",
        to_cost_usd=coerce_number(last_run.get("costUsd")),
        to_latency_ms=coerce_number(last_run.get("latencyMs")),
    )
    snapshot = record_rating(store, event, FeedbackSettings.from_config(config.feedback))
    _print({"rating": event.to_dict(), "tiers": snapshot.tiers})


def cmd_council(args: argparse.Namespace, config: Config) -> None:
    session_id = _session_id(args)
    store, ledger, router = _runtime(config, session_id)
    council = CouncilSwarm(
        router,
        CouncilSettings.from_config(config.council),
        store=store,
        manifesto=load_manifesto(config.context_path),
    )
    try:
        result = asyncio.run(council.run(args.task, args.context, session_id=session_id, task_id=args.task_id))
    finally:
        ledger.persist(store)
    _print({
        "sessionId": session_id,
        "deliberation": result.deliberation.to_dict(),
        "synthesis": result.synthesis_meta,
        "droppedAdvisors": result.dropped_advisors,
        "artifacts": result.artifacts,
        "budget": ledger.status(),
    })


def cmd_execute(args: argparse.Namespace, config: Config) -> None:
    session_id = _session_id(args)
    store, ledger, router = _runtime(config, session_id)
    executor_cfg = config.executor
    repo_root = Path(args.repo_root) if args.repo_root else None
    peer_rater = PeerRater(router, store, FeedbackSettings.from_config(config.feedback))
    executor = ExecutorSwarm(
        router,
        store,
        ExecutorSafety.from_config(executor_cfg, repo_root),
        plan_max_tokens=int(executor_cfg.get("plan_max_tokens", 1800)),
        peer_rater=peer_rater,
    )
    task_id = args.task_id or f"exec-{uuid.uuid4().hex[:8]}"
    try:
        result = asyncio.run(executor.run(session_id, task_id, args.goal, args.context or ""))
    finally:
        ledger.persist(store)
    _print({"sessionId": session_id, "result": result.to_dict(), "budget": ledger.status()})
    if not result.success:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="janus")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command")

    route = sub.add_parser("route", help="Show the routing decision for a prompt")
    route.add_argument("--prompt", required=True)
    route.add_argument("--task", default="general")
    route.add_argument("--model", help="Preferred model key")
    route.add_argument("--min-quality", choices=["fast", "balanced", "quality"])
    route.add_argument("--max-cost", type=float)

    budget = sub.add_parser("budget")
    budget_sub = budget.add_subparsers(dest="budget_cmd")
    budget_sub.add_parser("show")
    budget_set = budget_sub.add_parser("set")
    budget_set.add_argument("amount", type=float)
    budget_sub.add_parser("clear")

    models = sub.add_parser("models")
    models_sub = models.add_subparsers(dest="models_cmd")
    models_sub.add_parser("show")
    models_sub.add_parser("recompute")
    models_sub.add_parser("reset")
    refresh = models_sub.add_parser("refresh")
    refresh.add_argument("--force", action="store_true")

    rate = sub.add_parser("rate", help="Rate the last model run (1-5)")
    rate.add_argument("rating", type=int)
    rate.add_argument("notes", nargs="*")

    council = sub.add_parser("council")
    council.add_argument("--task", required=True)
    council.add_argument("--context")
    council.add_argument("--session")
    council.add_argument("--task-id")

    execute = sub.add_parser("execute")
    execute.add_argument("--goal", required=True)
    execute.add_argument("--context")
    execute.add_argument("--session")
    execute.add_argument("--task-id")
    execute.add_argument("--repo-root")

    return parser


COMMANDS = {
    "route": cmd_route,
    "budget": cmd_budget,
    "models": cmd_models,
    "rate": cmd_rate,
    "council": cmd_council,
    "execute": cmd_execute,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return
    config = get_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        handler(args, config)
    except BudgetExceededError as exc:
        print(f"[janus] {exc}", file=sys.stderr)
        raise SystemExit(2)
    except JanusError as exc:
        print(f"[janus] {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
