"""CLI dashboard — prints bot status to the console."""


def print_status(status: dict) -> str:
    """Format and print the current bot status.

    Args:
        status: Dict as returned by ``TradingEngine.status()``.

    Returns:
        The formatted string (also printed to stdout).
    """
    balance = status.get("balance")
    drawdown = status.get("drawdown_pct")
    profile = status.get("weekly_profile")
    confidence = status.get("weekly_confidence")

    balance_str = f"${balance:,.2f}" if balance is not None else "N/A"
    dd_str = f"{drawdown:.2f}%" if drawdown is not None else "N/A"
    if profile is None:
        weekly_str = "not analysed"
    else:
        weekly_str = f"{profile} {status.get('weekly_direction')} ({(confidence or 0.0) * 100:.0f}%)"
    kelly_str = (
        f"{status.get('kelly_fraction', 0.0):.4f} "
        f"({'default' if status.get('kelly_using_default', True) else 'calculated'})"
    )

    lines = [
        "──────────────── ICT Bot Status ────────────────",
        f"  Running:         {status.get('running', False)}",
        f"  Symbol:          {status.get('symbol', 'N/A')}",
        f"  Session:         {status.get('session', 'N/A')} (weight {status.get('session_weight', 'N/A')})",
        f"  Day:             {status.get('day', 'N/A')}",
        f"  Weekly:          {weekly_str}",
        f"  Balance:         {balance_str}",
        f"  Drawdown:        {dd_str}",
        f"  Trades:          {status.get('total_trades', 0)} (win rate {status.get('win_rate', 0.0)}%)",
        f"  Open Positions:  {status.get('open_positions', 0)}",
        f"  Kelly:           {kelly_str}",
        "────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
