# constants.py

MONTHS_PER_YEAR: int = 12
SMALL_EPSILON: float = 1e-6
DEFAULT_INFLATION_RATE: float = 0.025
DEFAULT_SNAPSHOT_FILENAME: str = "monthly_snapshots.csv"

# Sequencing priority by tax treatment (lower withdraws first)
TAX_TREATMENT_PRIORITY = {
    "TAXABLE": 1,
    "PRE_TAX": 2,
    "ROTH": 3,
    "HSA": 4,
}

# Share of Social Security treated as taxable income in tax estimates
TAXABLE_SOCIAL_SECURITY_SHARE: float = 0.85
