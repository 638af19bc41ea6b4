"""
Fixed reference values used by the engine and its metrics.
"""

DAYS_PER_YEAR = 365

# Incidence rates are reported per 100,000 population
INCIDENCE_DENOMINATOR = 100_000

# WHO low-incidence threshold (per 100,000)
WHO_LOW_INCIDENCE_THRESHOLD = 10.0
# WHO End TB 2035 target rate (per 100,000), measured from the 2015 baseline
WHO_2035_TARGET_RATE = 10.0
WHO_BASELINE_INCIDENCE_RATE = 15.0

# Engine bookkeeping
MAX_EVENTS = 1000
# Days of history retained by the engine, oldest dropped first
MAX_HISTORY = 3650
OUTBREAK_WINDOW_DAYS = 7
OUTBREAK_MULTIPLIER = 2.0
OUTBREAK_MIN_INFECTIONS = 10.0
DEATH_MILESTONES = [100, 500, 1000, 5000, 10000]

MIN_SPEED = 0.1
MAX_SPEED = 10.0

# Share of recently infected latent cases placed in the high-risk compartment
HIGH_RISK_LATENT_PROPORTION = 0.2

# Vaccination mechanics
DAILY_BIRTH_RATE = 0.0011 / DAYS_PER_YEAR
HISTORICAL_BCG_ELIGIBLE_PROPORTION = 0.3  # population under 40, BCG given universally until the 2000s
RISK_BASED_NEONATAL_PROPORTION = 0.15
HEALTHCARE_WORKER_PROPORTION = 0.05
HEALTHCARE_WORKER_CAMPAIGN_DAYS = 30
CATCH_UP_CAMPAIGN_DAYS = 365
CATCH_UP_AGE_SPAN_YEARS = 80.0

# Reference incidence used to weight the regional partition
REGIONAL_REFERENCE_INCIDENCE = 10.0
