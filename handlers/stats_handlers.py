"""
Stats Handlers
Self-scoped dashboard and report aggregates.
"""

from typing import Any

from query.access import Caller
from .common import dump


async def handle_stats_overview(arguments: dict, repos: Any, caller: Caller) -> dict:
    return dump(await repos.stats.overview(caller))


async def handle_stats_patients(arguments: dict, repos: Any, caller: Caller) -> dict:
    """Paginated patient audit: q, sex, order, limit (1-200, default 10), page"""
    report = await repos.stats.patient_report(
        caller,
        search=arguments.get("q"),
        sex=arguments.get("sex"),
        order=arguments.get("order"),
        limit=arguments.get("limit"),
        page=arguments.get("page"),
    )
    return dump(report)


async def handle_stats_modules(arguments: dict, repos: Any, caller: Caller) -> list:
    return dump(await repos.stats.modules(caller, days=arguments.get("days")))


async def handle_stats_module_summary(arguments: dict, repos: Any, caller: Caller) -> dict:
    summary = await repos.stats.module_summary(caller, arguments.get("type"), days=arguments.get("days"))
    return dump(summary)


async def handle_stats_module_series(arguments: dict, repos: Any, caller: Caller) -> list:
    series = await repos.stats.module_series(caller, arguments.get("type"), days=arguments.get("days"))
    return dump(series)


async def handle_stats_module_top_patients(arguments: dict, repos: Any, caller: Caller) -> list:
    top = await repos.stats.module_top_patients(
        caller, arguments.get("type"), days=arguments.get("days"), limit=arguments.get("limit")
    )
    return dump(top)


async def handle_stats_notes(arguments: dict, repos: Any, caller: Caller) -> list:
    return dump(await repos.stats.recent_notes(caller, limit=arguments.get("limit")))
