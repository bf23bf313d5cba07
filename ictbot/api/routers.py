"""Internal API routers — /status, /positions, /stats, /refinements endpoints.

Read-only. No business logic: every route reads the running engine or the
shared status dict the engine pushes into.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException

logger = logging.getLogger("ictbot.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_DEFAULT_STATUS: dict = {
    "mode": "idle",
    "running": False,
    "symbol": None,
    "balance": None,
    "drawdown_pct": None,
    "open_positions": 0,
    "started_at": None,
    "cycle_count": 0,
    "last_cycle_at": None,
}

_status: dict = dict(_DEFAULT_STATUS)
_engine = None  # Set via configure_routers()


def configure_routers(engine=None, bot_status: Optional[dict] = None) -> None:
    """Inject dependencies from the application startup.

    Args:
        engine: The running ``TradingEngine`` (or a duck-type for tests).
        bot_status: Optional fields to seed the status dict with.
    """
    global _engine  # noqa: PLW0603
    _engine = engine
    _status.clear()
    _status.update(_DEFAULT_STATUS)
    if bot_status:
        _status.update(bot_status)


def update_bot_status(**fields) -> None:
    """Update individual fields of the status dict."""
    _status.update(fields)


def _require_engine():
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not running")
    return _engine


@router.get("/status")
async def get_status():
    """Loop status merged with the engine's own snapshot when one is attached."""
    status = dict(_status)
    if _engine is not None:
        status.update(_engine.status())
    return status


@router.get("/positions")
async def get_positions():
    engine = _require_engine()
    return [p.to_dict() for p in engine.trader.open_positions]


@router.get("/stats")
async def get_stats():
    engine = _require_engine()
    stats = engine.trader.get_stats().to_dict()
    stats["kelly_by_scale"] = {
        scale: {
            "applied_fraction": kr.applied_fraction,
            "win_rate": kr.win_rate,
            "payoff_ratio": kr.payoff_ratio,
            "edge": kr.edge,
            "sample_size": kr.sample_size,
        }
        for scale, kr in engine.trader.get_kelly_by_scale().items()
    }
    return stats


@router.get("/refinements")
async def get_refinements():
    engine = _require_engine()
    return {
        "adjustment_history": [a.to_dict() for a in engine.refiner.adjustment_history],
        "skip_combos": sorted(engine.refiner.skip_combos),
    }
