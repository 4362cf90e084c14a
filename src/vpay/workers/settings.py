"""arq worker settings module.

Import path for arq CLI: arq vpay.workers.settings.WorkerSettings
"""

from __future__ import annotations

from arq import cron
from arq.connections import RedisSettings

from vpay.config import get_settings
from vpay.workers.jobs import (
    expire_quests,
    expire_recommendations,
    generate_weekly_quests_for_all,
    recompute_leaderboards,
    shutdown,
    startup,
    sweep_stale_streaks,
)

_settings = get_settings()

HOURLY_MINUTE = 5


class WorkerSettings:
    """arq worker settings for the gamification batch jobs."""

    functions = [
        sweep_stale_streaks,
        expire_quests,
        generate_weekly_quests_for_all,
        recompute_leaderboards,
        expire_recommendations,
    ]
    cron_jobs = [
        cron(sweep_stale_streaks, hour=_settings.stale_streak_sweep_hour, minute=1),
        cron(generate_weekly_quests_for_all, weekday=_settings.weekly_quest_weekday, hour=0, minute=2),
        cron(expire_quests, minute=HOURLY_MINUTE),
        cron(expire_recommendations, minute=HOURLY_MINUTE),
        cron(recompute_leaderboards, minute={0, 15, 30, 45}),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
    job_timeout = 300
