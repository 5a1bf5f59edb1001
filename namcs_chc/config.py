from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
PROCESSED_DIR = DATA_DIR / "processed"

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
TABLES_DIR = OUTPUTS_DIR / "tables"
LOGS_DIR = OUTPUTS_DIR / "logs"

# Dataset identifiers (used in outputs/ metadata)
DATASET_VERSION = "namcs_2012_chc_ppp_v1"
ANALYSIS_FILE = PROCESSED_DIR / "namcs_2012_analysis.parquet"

# Public-use Stata archives published by NCHS. Overridable from scripts/01_build_dataset.py.
NCHS_STATA_BASE_URL = "https://ftp.cdc.gov/pub/Health_Statistics/NCHS/dataset_documentation/namcs/stata"
SOURCE_URLS = {
    "CHC": f"{NCHS_STATA_BASE_URL}/chc2012-stata.zip",
    "PPP": f"{NCHS_STATA_BASE_URL}/namcs2012-stata.zip",
}
SOURCE_FILES = {
    "CHC": RAW_DIR / "chc2012.dta",
    "PPP": RAW_DIR / "namcs2012.dta",
}

SOURCES = ["CHC", "PPP"]
SOURCE_LABELS = {
    "CHC": "Community health centers",
    "PPP": "Private physician practices",
}
SOURCE_COL = "source"
# Visits outside the analysis universe stay in the design and are excluded as a domain.
SCOPE_COL = "in_scope"

# Raw Stata variable -> analysis column. Lookups are case-insensitive.
DESIGN_COLUMN_MAP = {
    "CSTRATM": "stratum",
    "CPSUM": "psu",
    "PATWT": "weight",
}
DESIGN_COLS = ["stratum", "psu", "weight"]
AGE_RAW_COL = "AGE"
SPECCAT_RAW_COL = "SPECCAT"
TOTCHRON_RAW_COL = "TOTCHRON"

# Chronic condition checkboxes on the 2012 patient record form.
CONDITIONS = [
    "ARTHRTIS",
    "ASTHMA",
    "CANCER",
    "CEBVD",
    "CHF",
    "CRF",
    "COPD",
    "DEPRN",
    "DIABETES",
    "HYPLIPID",
    "HTN",
    "IHD",
    "OBESITY",
    "OSTPRSIS",
]
CONDITION_LABELS = {
    "ARTHRTIS": "Arthritis",
    "ASTHMA": "Asthma",
    "CANCER": "Cancer",
    "CEBVD": "Cerebrovascular disease",
    "CHF": "Congestive heart failure",
    "CRF": "Chronic renal failure",
    "COPD": "COPD",
    "DEPRN": "Depression",
    "DIABETES": "Diabetes",
    "HYPLIPID": "Hyperlipidemia",
    "HTN": "Hypertension",
    "IHD": "Ischemic heart disease",
    "OBESITY": "Obesity",
    "OSTPRSIS": "Osteoporosis",
}
CONDITION_COLS = [c.lower() for c in CONDITIONS]

CONDITION_YES_VALUES = (1,)
CONDITION_NO_VALUES = (0,)
CONDITION_MISSING_VALUES = (-9, -8, -7)

# TOTCHRON = -9 marks a blank chronic-conditions section.
TOTCHRON_UNANSWERED = -9

SPECCAT_LABELS = {
    1: "Primary care",
    2: "Surgical care",
    3: "Medical care",
}
# Only primary care visits are comparable across the two samples.
SPECCAT_KEEP = [1]

# Inclusive integer bounds. 0_100 is the union band, estimated independently.
AGE_BANDS = {
    "0_17": (0, 17),
    "18_64": (18, 64),
    "65_100": (65, 100),
    "0_100": (0, 100),
}
AGE_BAND_LABELS = {
    "0_17": "Ages 0-17",
    "18_64": "Ages 18-64",
    "65_100": "Ages 65+",
    "0_100": "All ages",
}

# Reliability standard for survey estimates
MIN_N = 30
MAX_RSE = 0.30

ALPHA = 0.05
P_VALUE_FLOOR = 0.001
P_VALUE_FLOOR_TOKEN = "<0.001"

# choices: adjust, remove, fail
LONELY_PSU = "adjust"

DOWNLOAD_TIMEOUT_SEC = 120
