# config.py - Configuration for the spectral clustering pipeline
# Edit paths and parameters as needed

from pathlib import Path

# ── Paths ──────────────────────────────────────────────────────────────────────
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
OUTPUTS_DIR = BASE_DIR / "outputs"

# Input data (produced by the feature engineering stage)
CLEAN_DATA_DIR = DATA_DIR / "clean_data"
STATS_FEATURES_FILE = CLEAN_DATA_DIR / "clean_stats.csv"
TEXT_FEATURES_FILE = CLEAN_DATA_DIR / "clean_text_SVD.csv"
IMAGE_FEATURES_FILE = CLEAN_DATA_DIR / "clean_images_PCA.csv"
KEY_COLUMN = "name"

# Output directories
RESULTS_DIR = OUTPUTS_DIR / "clustering_results"
FIGURES_DIR = OUTPUTS_DIR / "figures"

# ── Shrinkage covariance ──────────────────────────────────────────────────────
SHRINKAGE_METHOD = "oas"        # "oas", "ledoit_wolf" or "schafer_strimmer"

# ── Affinity ──────────────────────────────────────────────────────────────────
SIGMA_MULTIPLIER = 0.5          # sigma = multiplier * median pairwise distance
SIGMA_SWEEP_MULTIPLIERS = (0.5, 1, 2, 3, 4, 5)

# ── Spectral embedding ────────────────────────────────────────────────────────
GAP_SEARCH_LIMIT = 100          # only the first gaps are candidates
ZERO_EIGENVALUE_TOL = 1e-6
N_TOP_GAPS = 30                 # gaps reported in the log

# ── Clustering parameters ─────────────────────────────────────────────────────
RANDOM_SEED = 42
N_CLUSTERS = 18
N_RESTARTS = 25                 # Number of k-means random starts
MAX_ITER = 100
N_JOBS = 1

# ── Cluster-count diagnostics ─────────────────────────────────────────────────
K_MAX = 20
GAP_N_REFS = 50                 # reference datasets for the gap statistic
GAP_SE_FACTOR = 1.0
N_STABILITY_RUNS = 20

# ── Visualization parameters ──────────────────────────────────────────────────
FIGURE_DPI = 300
FIGURE_FORMAT = ["png"]
FIGSIZE_STANDARD = (10, 8)
FIGSIZE_WIDE = (14, 8)
