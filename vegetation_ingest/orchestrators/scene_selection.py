"""Scene scoring and selection.

Each candidate gets a recency score ``clamp(1 - days_old / 90, 0, 1)``
and a cloud score ``clamp(1 - cloud_pct / 100, 0, 1)``, combined with
policy-specific weights.  A scene with no date counts as 365 days old;
one with no cloud cover counts as fully clouded.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING

from vegetation_ingest.models.request import ScenePolicy

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date

    from vegetation_ingest.models.imagery import Scene

logger = logging.getLogger(__name__)

RECENCY_HORIZON_DAYS = 90.0
MISSING_DATE_AGE_DAYS = 365.0
MISSING_CLOUD_PCT = 100.0

# (recency weight, cloud weight) per policy.
POLICY_WEIGHTS: dict[ScenePolicy, tuple[float, float]] = {
    ScenePolicy.LOWEST_CLOUD: (0.18, 0.82),
    ScenePolicy.MOST_RECENT: (0.86, 0.14),
    ScenePolicy.BALANCED: (0.58, 0.42),
}
IN_WINDOW_BONUS = 0.1


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def score_scene(
    scene: Scene,
    policy: ScenePolicy,
    *,
    now: datetime,
    window: tuple[date, date],
) -> float:
    """Score *scene* under *policy*; higher is better.

    Args:
        scene: The candidate.
        policy: Ranking policy.
        now: Reference time for recency.
        window: Requested ``(from, to)`` dates; under the balanced policy
            scenes inside it get a bonus.
    """
    acquired = _as_utc(scene.acquisition_date) if scene.acquisition_date else None
    if acquired is not None:
        days_old = (_as_utc(now) - acquired).total_seconds() / 86_400
    else:
        days_old = MISSING_DATE_AGE_DAYS
    cloud = scene.cloud_cover_pct if scene.cloud_cover_pct is not None else MISSING_CLOUD_PCT

    recency_score = _clamp(1 - days_old / RECENCY_HORIZON_DAYS, 0.0, 1.0)
    cloud_score = _clamp(1 - cloud / 100, 0.0, 1.0)

    recency_weight, cloud_weight = POLICY_WEIGHTS[policy]
    score = recency_weight * recency_score + cloud_weight * cloud_score

    if policy is ScenePolicy.BALANCED and acquired is not None:
        start = datetime.combine(window[0], time.min, tzinfo=UTC)
        end = datetime.combine(window[1], time.max, tzinfo=UTC)
        if start <= acquired <= end:
            score += IN_WINDOW_BONUS
    return score


def pick_best_scene(
    scenes: Sequence[Scene],
    policy: ScenePolicy,
    *,
    required_assets: Sequence[str] = (),
    window: tuple[date, date],
    now: datetime | None = None,
) -> Scene | None:
    """Return the highest-scoring scene exposing *required_assets*.

    Ties keep the earlier scene (provider order).  Returns ``None`` when
    no candidate qualifies.
    """
    now = now or datetime.now(UTC)
    best: Scene | None = None
    best_score = float("-inf")
    skipped = 0
    for scene in scenes:
        if any(asset not in scene.assets for asset in required_assets):
            skipped += 1
            continue
        score = score_scene(scene, policy, now=now, window=window)
        if score > best_score:
            best, best_score = scene, score

    if skipped:
        logger.debug(
            "Scenes skipped for missing assets | skipped=%d | required=%s",
            skipped,
            ",".join(required_assets),
        )
    if best is not None:
        logger.info(
            "Best scene selected | scene=%s | provider=%s | policy=%s | score=%.4f",
            best.scene_id,
            best.provider,
            policy.value,
            best_score,
        )
    return best
