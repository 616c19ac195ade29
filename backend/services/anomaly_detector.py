"""
Module: anomaly_detector.py
Description: Per-user daily spend baselines and z-score fraud alerting.

Detection Steps:
    1. Aggregate: debit spend against expense accounts per user per day
       (done by the store, see LedgerStore.fetch_daily_debit_spend)
    2. Baseline: mean and population standard deviation of each user's
       daily totals, recomputed in full on every run
    3. Classify: a day is anomalous when |z| >= threshold, or, for users
       whose daily spend never varies, when both spend and mean are positive
    4. Persist: one unresolved alert per (user, day); days that already
       carry an unresolved alert are skipped, so re-runs are idempotent

Author: Spend Sentinel Team
"""

import uuid
from typing import Dict, List, Optional

import pandas as pd

from config import ZSCORE_THRESHOLD, FLAG_ZERO_VARIANCE
from services.observability import (
    logger, timed, timed_block,
    log_detection_start, log_detection_complete, log_alert_created,
)
from services.records import (
    ALERT_TYPE_ZSCORE, AnomalyCandidate, DailySpend, DetectionResult, UserBaseline,
)


# Standard deviations below this are float noise from identical daily totals
ZERO_VARIANCE_EPSILON = 1e-9


# =============================================================================
# Baselines
# =============================================================================

def compute_baselines(daily: List[DailySpend]) -> Dict[int, UserBaseline]:
    """
    Population mean and standard deviation of daily spend per user.

    Args:
        daily: DailySpend rows for any number of users.

    Returns:
        Baseline per user_id. Users with a single day get stddev 0.
    """
    if not daily:
        return {}

    df = pd.DataFrame(
        [{"user_id": d.user_id, "spend": float(d.total)} for d in daily]
    )
    grouped = df.groupby("user_id")["spend"]
    stats = pd.DataFrame({
        "mean": grouped.mean(),
        "stddev": grouped.std(ddof=0).fillna(0.0),
        "days": grouped.count(),
    })

    return {
        int(user_id): UserBaseline(
            user_id=int(user_id),
            mean=float(row["mean"]),
            stddev=float(row["stddev"]),
            days=int(row["days"]),
        )
        for user_id, row in stats.iterrows()
    }


# =============================================================================
# Classification
# =============================================================================

def score_day(spend: float, baseline: UserBaseline,
              threshold: float = ZSCORE_THRESHOLD,
              flag_zero_variance: bool = FLAG_ZERO_VARIANCE) -> Optional[float]:
    """
    Z-score of an anomalous day, or None if the day is normal.

    Zero-variance users have no defined z-score. With flag_zero_variance on,
    every positive day of a user with a positive constant spend is reported
    with z_score 0.0; this matches the ledger's historical alerting and
    flags all of that user's days, not just one.
    """
    if baseline.stddev > ZERO_VARIANCE_EPSILON:
        z_score = (spend - baseline.mean) / baseline.stddev
        if abs(z_score) >= threshold:
            return float(z_score)
        return None

    if flag_zero_variance and spend > 0 and baseline.mean > 0:
        return 0.0
    return None


def find_anomalies(daily: List[DailySpend], baselines: Dict[int, UserBaseline],
                   threshold: float = ZSCORE_THRESHOLD,
                   flag_zero_variance: bool = FLAG_ZERO_VARIANCE) -> List[AnomalyCandidate]:
    """Join each day with its user's baseline and keep the anomalous ones."""
    candidates = []
    for row in daily:
        baseline = baselines.get(row.user_id)
        if baseline is None:
            continue

        spend = float(row.total)
        z_score = score_day(spend, baseline, threshold, flag_zero_variance)
        if z_score is None:
            continue

        candidates.append(AnomalyCandidate(
            user_id=row.user_id,
            day=row.day,
            spend=spend,
            average=baseline.mean,
            z_score=z_score,
        ))

    candidates.sort(key=lambda c: (c.user_id, c.day))
    return candidates


# =============================================================================
# Detector
# =============================================================================

class AnomalyDetector:
    """
    Batch z-score detector over the whole ledger.

    The store is injected; see LedgerStore for the operations it needs.
    A run either commits all of its new alerts or none of them.
    """

    def __init__(self, store, threshold: float = ZSCORE_THRESHOLD,
                 flag_zero_variance: bool = FLAG_ZERO_VARIANCE):
        self.store = store
        self.threshold = threshold
        self.flag_zero_variance = flag_zero_variance

    @timed("anomaly_detection")
    def run(self) -> DetectionResult:
        """
        Recompute baselines, classify every day and raise new alerts.

        Returns:
            DetectionResult with the number of alerts created by this run.

        Raises:
            StoreUnavailable: The store failed; nothing from this run is kept.
        """
        daily = self.store.fetch_daily_debit_spend()
        log_detection_start(uuid.uuid4().hex[:8], len(daily))

        baselines = compute_baselines(daily)
        candidates = find_anomalies(daily, baselines, self.threshold, self.flag_zero_variance)

        result = DetectionResult(
            new_alerts_count=0,
            candidates=len(candidates),
            users_scanned=len(baselines),
        )

        try:
            with timed_block("alert_persistence"):
                for candidate in candidates:
                    if self.store.unresolved_alert_exists(candidate.user_id, candidate.day):
                        result.skipped_existing += 1
                        continue

                    inserted = self.store.insert_alert(
                        candidate.user_id,
                        ALERT_TYPE_ZSCORE,
                        candidate.to_details(),
                        candidate.day,
                    )
                    if not inserted:
                        result.skipped_existing += 1
                        continue

                    result.new_alerts_count += 1
                    log_alert_created(candidate.user_id, candidate.day,
                                      candidate.spend, candidate.z_score)

                self.store.commit()
        except Exception:
            logger.error("Anomaly detection aborted, rolling back",
                         pending_alerts=result.new_alerts_count)
            logger.clear_context()
            self.store.rollback()
            raise

        log_detection_complete(result.new_alerts_count, result.candidates, result.users_scanned)
        return result
