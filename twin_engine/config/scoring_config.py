"""
Scoring configuration for the Financial Twin engine.
Contains versioned pillar weights, pillar thresholds, lending-readiness
recombinations and component settings.
"""

PILLARS = (
    "income_stability",
    "spending_discipline",
    "debt_trajectory",
    "financial_resilience",
    "growth_momentum",
)

# Weights are versioned: a snapshot records the version it was scored with and
# its overall score is always recomputed from its pillars with that version.
CURRENT_WEIGHTS_VERSION = "2024.1"

SCORING_CONFIG = {
    "weights_version": CURRENT_WEIGHTS_VERSION,
    "overall_weights": {
        "2024.1": {
            "income_stability": 0.25,
            "spending_discipline": 0.20,
            "debt_trajectory": 0.20,
            "financial_resilience": 0.20,
            "growth_momentum": 0.15,
        },
    },

    # Fewer months than this flags the snapshot as low-confidence
    "min_months_for_confidence": 3,
    "default_analysis_window_months": 12,

    "income_stability": {
        "source_bonus_per_source": 5,
        "source_bonus_cap": 20,
        "payroll_fraction_for_bonus": 0.75,
        "payroll_bonus": 15,
        "zero_income_month_penalty": -8,
        "declining_trend_threshold": -0.02,  # slope / mean deposits
        "declining_trend_penalty": -10,
    },

    "spending_discipline": {
        "ratio_points": 70,  # 70 * (1 - discretionary/income)
        "savings_bonus": 15,
        "improving_trend_bonus": 15,
        "worsening_trend_penalty": -10,
        "trend_threshold": 0.01,  # slope of monthly discretionary ratio
        "overdraft_month_penalty": -5,
    },

    "debt_trajectory": {
        "trend_threshold": 0.001,
        "improving_trend_bonus": 20,
        "worsening_trend_penalty": -20,
        "high_dti_threshold": 0.43,
        "high_dti_penalty": -15,
    },

    "financial_resilience": {
        "points_per_runway_month": 20,
        "runway_points_cap": 60,
        "positive_buffer_bonus": 20,
        "spike_ratio": 1.2,
        "recovery_bonus": 10,
        "consistency_points": 10,
    },

    "growth_momentum": {
        "savings_rate_points": 60,
        "trend_multiplier": 500,
        "trend_points_cap": 25,
        "investment_bonus": 15,
    },

    # Lending readiness: weighted recombination of pillars plus product rules.
    # Each adjustment: {"when": (key, op, value), "action": "cap"|"add", "value": n}
    # where key is a pillar name or "min_pillar".
    "lending_readiness": {
        "personal": {
            "weights": {"income_stability": 0.4, "spending_discipline": 0.4, "debt_trajectory": 0.2},
            "adjustments": [
                {"when": ("income_stability", "<", 40), "action": "cap", "value": 50},
                {"when": ("spending_discipline", "<", 35), "action": "cap", "value": 50},
                {"when": ("debt_trajectory", "<", 30), "action": "add", "value": -15},
            ],
        },
        "auto": {
            "weights": {"debt_trajectory": 0.4, "income_stability": 0.35, "financial_resilience": 0.25},
            "adjustments": [
                {"when": ("debt_trajectory", "<", 35), "action": "cap", "value": 45},
                {"when": ("income_stability", ">", 70), "and": ("debt_trajectory", ">", 60), "action": "add", "value": 10},
            ],
        },
        "mortgage": {
            "weights": {
                "financial_resilience": 0.30,
                "income_stability": 0.30,
                "spending_discipline": 0.15,
                "debt_trajectory": 0.15,
                "growth_momentum": 0.10,
            },
            "adjustments": [
                {"when": ("min_pillar", "<", 40), "action": "cap", "value": 40},
                {"when": ("min_pillar", ">", 60), "action": "add", "value": 10},
                {"when": ("financial_resilience", "<", 50), "action": "add", "value": -10},
            ],
        },
        "small_business": {
            "weights": {"growth_momentum": 0.35, "income_stability": 0.35, "financial_resilience": 0.30},
            "adjustments": [
                {"when": ("growth_momentum", "<", 30), "action": "cap", "value": 35},
                {"when": ("income_stability", ">", 65), "and": ("growth_momentum", ">", 55), "action": "add", "value": 15},
            ],
        },
    },
}

RESOLVER_CONFIG = {
    "hint_confidence_threshold": 0.6,
    "fuzzy_threshold": 90,
    # Confidence attached to each resolution path
    "confidence": {
        "hint": None,  # the upstream hint confidence is kept
        "keyword": 0.85,
        "regex": 0.85,
        "fuzzy": 0.7,
        "payroll": 0.85,
        "income_fallback": 0.5,
        "none": 0.3,
    },
    "recurring_min_occurrences": 3,
}

ANCHOR_CONFIG = {
    "max_attempts": 3,
    "base_delay_seconds": 0.5,
    "max_delay_seconds": 8.0,
    "timeout_seconds": 5.0,
    "background_workers": 2,
}

SYNC_CONFIG = {
    "fetch_max_attempts": 3,
    "fetch_base_delay_seconds": 0.5,
    "fetch_max_delay_seconds": 8.0,
    "fetch_timeout_seconds": 10.0,
    "max_workers": 4,
    "webhook_type": "TRANSACTIONS",
    "refresh_codes": [
        "SYNC_UPDATES_AVAILABLE",
        "DEFAULT_UPDATE",
        "INITIAL_UPDATE",
        "HISTORICAL_UPDATE",
        "TRANSACTIONS_REMOVED",
    ],
}

ANALYTICS_CONFIG = {
    "stress": {
        "runway_cap_months": 36,
        "severity_bands": [
            {"min_runway": 6, "severity": "low"},
            {"min_runway": 3, "severity": "moderate"},
            {"min_runway": 1, "severity": "high"},
            {"min_runway": 0, "severity": "critical"},
        ],
    },
    "time_machine": {
        "default_months_forward": 12,
        "max_months_forward": 36,
        "default_subscription_cost": 1200,  # minor units, used when no subscriptions are seen
        # Projected overall score -> approval probability (percent), checked highest first
        "approval_bands": [
            {"min_overall": 80, "probability": 92},
            {"min_overall": 70, "probability": 78},
            {"min_overall": 60, "probability": 55},
            {"min_overall": 50, "probability": 35},
            {"min_overall": 40, "probability": 18},
            {"min_overall": 0, "probability": 5},
        ],
    },
    "anomalies": {
        "recent_months": 1,
        "baseline_months": 3,
        "min_baseline_spend": 5000,  # minor units; ignore tiny categories
        # Relative deviation of recent vs baseline, checked highest first
        "thresholds": {"alert": 1.0, "warning": 0.5, "info": 0.25},
        "income_cv_warning": 0.35,
        "income_cv_alert": 0.5,
        "spike_ratio_warning": 1.5,
        "spike_ratio_alert": 2.0,
        "spike_lookback_months": 3,
        "surplus_slope_warning": -5000,  # minor units per month
        "surplus_slope_alert": -15000,
        "health_penalties": {"alert": 15, "warning": 8, "info": 3},
    },
    "benchmark": {
        # Demographic dimensions, most important first; the last one present is
        # dropped first when a cohort is missing or too small
        "fallback_order": ["age_range", "region", "income_range"],
        "min_cohort_size": 30,
    },
    "explain": {
        "default_limit": 3,
    },
}
