"""Configuration constants for cluster-aic."""

FAMILY_NAMES = ("gaussian", "poisson", "negative_binomial", "binomial", "ordinal")
DEFAULT_FAMILY = "poisson"
DEFAULT_TRIALS = 1  # K: 1 = presence/absence, >1 = successes out of K trials

MIN_CUT_LEVEL = 2
DEFAULT_MAX_CUT_LEVEL = 40  # default hierarchy scan is 2..min(40, n_obs)

# Merged clusters get integer labels counting up from here
MERGE_LABEL_OFFSET = 1000

CHARACTERISTIC_TYPES = ("per_cluster", "global")

SM_MAXITER = 200  # iteration cap handed to statsmodels optimisers
NB_LOG_ALPHA_BOUNDS = (-20.0, 5.0)  # ln(alpha) search range for the NB fallback
NB_LOG_ALPHA_XATOL = 1e-10  # ln(alpha) tolerance for the NB fallback

MAX_WORKERS = 1  # >1 scores columns / candidate pairs on a thread pool
