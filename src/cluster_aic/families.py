"""Per-column model families: fit one response against a categorical predictor.

Every family implements the ``ModelFamily`` protocol: ``prepare_response``
checks (and, where needed, recodes) one data column up front, and ``fit``
returns an ``Estimate`` for a treatment-coded cluster design. ``fit_column``
wraps the two and turns family-level failures into ``FitFailure`` records so
one bad column never aborts a batch.

The predictor is always a single factor, so for the Gaussian, Poisson,
negative binomial and binomial families the maximum-likelihood fitted means
are the per-cluster sample means. statsmodels does the fitting; when the MLE
sits on the boundary of the parameter space (a cluster with no counts, or a
binary cluster that is all zeros or all ones) or statsmodels fails to
converge, the exact closed-form group-mean estimate is used instead.
Ordinal (proportional odds) models have no such shortcut once k >= 2.

New families are added by implementing the protocol and calling
``register_family``.
"""

from __future__ import annotations

import warnings
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import numpy as np
import statsmodels.api as sm
from scipy import optimize, special
from statsmodels.miscmodels.ordinal_model import OrderedModel
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    HessianInversionWarning,
    PerfectSeparationWarning,
)

from cluster_aic.config import (
    DEFAULT_FAMILY,
    DEFAULT_TRIALS,
    NB_LOG_ALPHA_BOUNDS,
    NB_LOG_ALPHA_XATOL,
    SM_MAXITER,
)
from cluster_aic.models import Clustering, FitFailure, FitOutcome, FitResult

_FIT_WARNINGS = (
    ConvergenceWarning,
    HessianInversionWarning,
    PerfectSeparationWarning,
    RuntimeWarning,
)


class FitError(Exception):
    """Raised by a family when a column cannot be fitted; carries the reason."""


# -- Design -------------------------------------------------------------------


@dataclass(frozen=True)
class TreatmentDesign:
    """Cluster labels as integer codes; ``levels[0]`` is the reference level."""

    levels: tuple
    codes: np.ndarray

    @classmethod
    def from_clustering(
        cls, clustering: Clustering, reference: Hashable | None = None
    ) -> TreatmentDesign:
        levels = clustering.levels
        if reference is not None:
            if reference not in levels:
                msg = f"reference level {reference!r} does not occur in the clustering"
                raise ValueError(msg)
            levels = (reference,) + tuple(lv for lv in levels if lv != reference)
        index = {lv: i for i, lv in enumerate(levels)}
        codes = np.fromiter((index[lb] for lb in clustering.labels), dtype=int)
        return cls(levels, codes)

    @property
    def n_groups(self) -> int:
        return len(self.levels)

    @property
    def counts(self) -> np.ndarray:
        return np.bincount(self.codes, minlength=self.n_groups)

    def exog(self, intercept: bool = True) -> np.ndarray:
        """Dummy columns for the non-reference levels, optionally with a constant."""
        dummies = (self.codes[:, None] == np.arange(1, self.n_groups)[None, :]).astype(float)
        if intercept:
            return np.column_stack([np.ones(len(self.codes)), dummies])
        return dummies

    def group_sums(self, y: np.ndarray) -> np.ndarray:
        return np.bincount(self.codes, weights=y, minlength=self.n_groups)

    def group_means(self, y: np.ndarray) -> np.ndarray:
        return self.group_sums(y) / self.counts


@dataclass(frozen=True)
class Estimate:
    """Family-level fit on the link scale; ``coefficients`` exclude the reference."""

    intercept: float
    coefficients: np.ndarray
    standard_errors: np.ndarray
    log_likelihood: float
    n_params: int
    method: str = "statsmodels"
    converged: bool = True
    extras: dict = field(default_factory=dict)


@contextmanager
def quiet_fits() -> Iterator[None]:
    """Silence optimiser warnings while a batch of fits runs.

    Warning filters are process-wide, so enter this from the calling thread
    only. Convergence is read from each results object, never from warnings.
    """
    with warnings.catch_warnings():
        for category in _FIT_WARNINGS:
            warnings.simplefilter("ignore", category)
        yield


def _converged(res: Any) -> bool:
    retvals = getattr(res, "mle_retvals", None) or {}
    converged = bool(getattr(res, "converged", True)) and bool(retvals.get("converged", True))
    return converged and bool(np.all(np.isfinite(np.asarray(res.bse, dtype=float))))


def _contrasts(eta: np.ndarray, var: np.ndarray) -> tuple[float, np.ndarray, np.ndarray]:
    """Intercept, treatment contrasts and their SEs from per-group link values."""
    with np.errstate(invalid="ignore"):
        coefs = eta[1:] - eta[0]
        se = np.sqrt(var[1:] + var[0])
    return float(eta[0]), coefs, se


def _from_statsmodels(res: Any, k: int, n_params: int, **extras: Any) -> Estimate:
    params = np.asarray(res.params, dtype=float)
    bse = np.asarray(res.bse, dtype=float)
    return Estimate(
        intercept=float(params[0]),
        coefficients=params[1:k],
        standard_errors=bse[1:k],
        log_likelihood=float(res.llf),
        n_params=n_params,
        converged=_converged(res),
        extras=extras,
    )


def _require_counts(y: np.ndarray, family: str, variable: str | None) -> None:
    if np.any(y < 0) or not np.allclose(y, np.round(y)):
        msg = (
            f"{family} family needs non-negative integer counts; "
            f"column {variable!r} has other values"
        )
        raise ValueError(msg)


# -- Protocol -----------------------------------------------------------------


@runtime_checkable
class ModelFamily(Protocol):
    """Interface every per-column family implements."""

    @property
    def name(self) -> str: ...

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        """Validate one data column and return the response to fit.

        Raises ``ValueError`` when the column is outside the family's support.
        """
        ...

    def fit(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        """Fit *y* against *design*. Raises ``FitError`` when no estimate exists."""
        ...


class _GroupMeanFamily:
    """Shared fit logic for families whose MLE is the per-group mean."""

    def fit(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        if not self._on_boundary(design, y, K):
            try:
                est = self._fit_statsmodels(design, y, K)
            except Exception:  # noqa: BLE001
                est = None
            if est is not None and est.converged and np.isfinite(est.log_likelihood):
                return est
        est = self._fit_closed_form(design, y, K)
        if not np.isfinite(est.log_likelihood):
            raise FitError("closed-form estimate has a non-finite log-likelihood")
        return est

    def _on_boundary(self, design: TreatmentDesign, y: np.ndarray, K: int) -> bool:
        return False

    def _fit_statsmodels(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        raise NotImplementedError

    def _fit_closed_form(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        raise NotImplementedError


# -- Gaussian -----------------------------------------------------------------


@dataclass(frozen=True)
class GaussianFamily(_GroupMeanFamily):
    """Ordinary linear model; AIC counts the residual variance as a parameter."""

    @property
    def name(self) -> str:
        return "gaussian"

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        if not np.all(np.isfinite(y)):
            msg = f"gaussian family needs finite values; column {variable!r} has inf"
            raise ValueError(msg)
        return y

    def _residual_ss(self, design: TreatmentDesign, y: np.ndarray) -> float:
        resid = y - design.group_means(y)[design.codes]
        return float(resid @ resid)

    def _on_boundary(self, design: TreatmentDesign, y: np.ndarray, K: int) -> bool:
        return self._residual_ss(design, y) <= 1e-12 * max(1.0, float(y @ y))

    def _fit_statsmodels(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        res = sm.OLS(y, design.exog()).fit()
        return _from_statsmodels(res, design.n_groups, design.n_groups + 1)

    def _fit_closed_form(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        ssr = self._residual_ss(design, y)
        if self._on_boundary(design, y, K):
            raise FitError("zero residual variance: response is constant within every cluster")
        n, k = len(y), design.n_groups
        mu = design.group_means(y)
        s2 = ssr / (n - k) if n > k else np.nan
        intercept, coefs, se = _contrasts(mu, s2 / design.counts)
        llf = -0.5 * n * (np.log(2 * np.pi * ssr / n) + 1.0)
        return Estimate(intercept, coefs, se, float(llf), k + 1, method="closed_form")


# -- Poisson ------------------------------------------------------------------


@dataclass(frozen=True)
class PoissonFamily(_GroupMeanFamily):
    """Log-link count model."""

    @property
    def name(self) -> str:
        return "poisson"

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        _require_counts(y, self.name, variable)
        return y

    def _on_boundary(self, design: TreatmentDesign, y: np.ndarray, K: int) -> bool:
        return bool(np.any(design.group_sums(y) == 0))

    def _fit_statsmodels(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        model = sm.GLM(y, design.exog(), family=sm.families.Poisson())
        res = model.fit(maxiter=SM_MAXITER)
        return _from_statsmodels(res, design.n_groups, design.n_groups)

    def _fit_closed_form(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        mu = design.group_means(y)
        fitted = mu[design.codes]
        llf = float(np.sum(special.xlogy(y, fitted) - fitted - special.gammaln(y + 1)))
        with np.errstate(divide="ignore"):
            intercept, coefs, se = _contrasts(np.log(mu), 1.0 / (design.counts * mu))
        return Estimate(intercept, coefs, se, llf, design.n_groups, method="closed_form")


# -- Negative binomial --------------------------------------------------------


@dataclass(frozen=True)
class NegativeBinomialFamily(_GroupMeanFamily):
    """NB2 count model, ``Var(Y) = mu + alpha * mu**2``, with alpha estimated."""

    @property
    def name(self) -> str:
        return "negative_binomial"

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        _require_counts(y, self.name, variable)
        return y

    def _on_boundary(self, design: TreatmentDesign, y: np.ndarray, K: int) -> bool:
        return bool(np.any(design.group_sums(y) == 0))

    def _fit_statsmodels(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        model = sm.NegativeBinomial(y, design.exog())
        res = model.fit(disp=0, maxiter=SM_MAXITER)
        alpha = float(np.asarray(res.params)[-1])
        return _from_statsmodels(res, design.n_groups, design.n_groups + 1, alpha=alpha)

    def _fit_closed_form(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        mu = design.group_means(y)
        fitted = mu[design.codes]

        def neg_llf(log_alpha: float) -> float:
            size = np.exp(-log_alpha)
            llf = (
                special.gammaln(y + size)
                - special.gammaln(size)
                - special.gammaln(y + 1)
                - size * np.log1p(fitted / size)
                + special.xlogy(y, fitted / (size + fitted))
            )
            return -float(llf.sum())

        opt = optimize.minimize_scalar(
            neg_llf,
            bounds=NB_LOG_ALPHA_BOUNDS,
            method="bounded",
            options={"xatol": NB_LOG_ALPHA_XATOL},
        )
        alpha = float(np.exp(opt.x))
        with np.errstate(divide="ignore"):
            intercept, coefs, se = _contrasts(np.log(mu), (1.0 / mu + alpha) / design.counts)
        return Estimate(
            intercept,
            coefs,
            se,
            -float(opt.fun),
            design.n_groups + 1,
            method="closed_form",
            extras={"alpha": alpha},
        )


# -- Binomial -----------------------------------------------------------------


@dataclass(frozen=True)
class BinomialFamily(_GroupMeanFamily):
    """Presence/absence (K=1, cloglog link) or successes out of K trials (logit link)."""

    @property
    def name(self) -> str:
        return "binomial"

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        if K > 1 and np.all((y >= 0) & (y <= 1)) and not np.allclose(y, np.round(y)):
            y = np.round(y * K)
        if np.any(y < 0) or np.any(y > K) or not np.allclose(y, np.round(y)):
            msg = (
                f"binomial family with K={K} needs integer successes in [0, {K}] "
                f"or proportions; column {variable!r} has other values"
            )
            raise ValueError(msg)
        return y

    def _proportions(self, design: TreatmentDesign, y: np.ndarray, K: int) -> np.ndarray:
        return design.group_sums(y) / (design.counts * K)

    def _on_boundary(self, design: TreatmentDesign, y: np.ndarray, K: int) -> bool:
        p = self._proportions(design, y, K)
        return bool(np.any((p <= 0) | (p >= 1)))

    def _fit_statsmodels(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        if K == 1:
            family = sm.families.Binomial(link=sm.families.links.CLogLog())
            endog = y
        else:
            family = sm.families.Binomial(link=sm.families.links.Logit())
            endog = np.column_stack([y, K - y])
        model = sm.GLM(endog, design.exog(), family=family)
        res = model.fit(maxiter=SM_MAXITER)
        return _from_statsmodels(res, design.n_groups, design.n_groups)

    def _fit_closed_form(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        p = self._proportions(design, y, K)
        pf = p[design.codes]
        log_choose = special.gammaln(K + 1) - special.gammaln(y + 1) - special.gammaln(K - y + 1)
        llf = float(np.sum(log_choose + special.xlogy(y, pf) + special.xlog1py(K - y, -pf)))
        with np.errstate(divide="ignore", invalid="ignore"):
            if K == 1:
                eta = np.log(-np.log1p(-p))
                slope = 1.0 / ((1.0 - p) * -np.log1p(-p))
            else:
                eta = np.log(p) - np.log1p(-p)
                slope = 1.0 / (p * (1.0 - p))
            var = p * (1.0 - p) / (design.counts * K) * slope**2
        var = np.where((p <= 0) | (p >= 1), np.inf, var)
        intercept, coefs, se = _contrasts(eta, var)
        return Estimate(intercept, coefs, se, llf, design.n_groups, method="closed_form")


# -- Ordinal ------------------------------------------------------------------


@dataclass(frozen=True)
class OrdinalFamily:
    """Proportional-odds cumulative logit model.

    Categories are the sorted distinct values of the column (Enum columns
    arrive as their category codes). Coefficients are positive when a cluster
    shifts observations towards higher categories.
    """

    @property
    def name(self) -> str:
        return "ordinal"

    def prepare_response(
        self, y: np.ndarray, K: int, variable: str | None = None
    ) -> np.ndarray:
        _, codes = np.unique(y, return_inverse=True)
        return codes.astype(float)

    def fit(self, design: TreatmentDesign, y: np.ndarray, K: int) -> Estimate:
        n_categories = int(y.max()) + 1
        if n_categories < 2:
            raise FitError("ordinal response has a single category")
        k = design.n_groups
        if k == 1:
            counts = np.bincount(y.astype(int), minlength=n_categories)
            props = counts / counts.sum()
            llf = float(np.sum(counts * np.log(props)))
            cum = np.cumsum(props)[:-1]
            thresholds = (np.log(cum) - np.log1p(-cum)).tolist()
            return Estimate(
                intercept=float("nan"),
                coefficients=np.empty(0),
                standard_errors=np.empty(0),
                log_likelihood=llf,
                n_params=n_categories - 1,
                method="closed_form",
                extras={"n_categories": n_categories, "thresholds": thresholds},
            )

        try:
            model = OrderedModel(y.astype(int), design.exog(intercept=False), distr="logit")
            res = model.fit(method="bfgs", disp=0, maxiter=SM_MAXITER)
        except Exception as exc:  # noqa: BLE001
            raise FitError(f"ordinal fit failed: {exc}") from exc
        llf = float(res.llf)
        if not np.isfinite(llf):
            raise FitError("ordinal fit produced a non-finite log-likelihood")
        params = np.asarray(res.params, dtype=float)
        return Estimate(
            intercept=float("nan"),
            coefficients=params[: k - 1],
            standard_errors=np.asarray(res.bse, dtype=float)[: k - 1],
            log_likelihood=llf,
            n_params=(n_categories - 1) + (k - 1),
            converged=_converged(res),
            extras={"n_categories": n_categories},
        )


# -- Registry -----------------------------------------------------------------

_FAMILIES: dict[str, type] = {}


def register_family(name: str, cls: type) -> None:
    """Register a ``ModelFamily`` implementation under *name*."""
    if not isinstance(cls(), ModelFamily):
        msg = f"{cls!r} does not implement the ModelFamily protocol"
        raise TypeError(msg)
    _FAMILIES[name] = cls


def resolve_family(family: str | ModelFamily) -> ModelFamily:
    """Map a family name (``"negative.binomial"`` and ``"Negative-Binomial"`` work too)
    or a ready-made instance to a ``ModelFamily``."""
    if isinstance(family, ModelFamily):
        return family
    key = str(family).strip().lower().replace(".", "_").replace("-", "_")
    if key not in _FAMILIES:
        available = ", ".join(sorted(_FAMILIES))
        msg = f"Unknown family {family!r}. Available families: {available}"
        raise ValueError(msg)
    return _FAMILIES[key]()


def check_trials(K: int) -> int:
    if isinstance(K, bool) or int(K) != K or K < 1:
        msg = f"K must be a positive integer, got {K!r}"
        raise ValueError(msg)
    return int(K)


# -- Column fits --------------------------------------------------------------


def fit_prepared(
    family: ModelFamily,
    design: TreatmentDesign,
    y: np.ndarray,
    K: int,
    variable: str,
) -> FitOutcome:
    """Fit an already prepared response; family failures become ``FitFailure``."""
    try:
        est = family.fit(design, y, K)
    except FitError as exc:
        return FitFailure(variable=variable, family=family.name, reason=str(exc))
    others = design.levels[1:]
    return FitResult(
        variable=variable,
        family=family.name,
        reference=design.levels[0],
        intercept=est.intercept,
        coefficients=dict(zip(others, est.coefficients.tolist())),
        standard_errors=dict(zip(others, est.standard_errors.tolist())),
        log_likelihood=est.log_likelihood,
        n_params=est.n_params,
        method=est.method,
        converged=est.converged,
        extras=dict(est.extras),
    )


def fit_column(
    clustering: Clustering | object,
    response: np.ndarray,
    family: str | ModelFamily = DEFAULT_FAMILY,
    K: int = DEFAULT_TRIALS,
    variable: str | None = None,
    reference: Hashable | None = None,
) -> FitOutcome:
    """Fit one data column with cluster membership as the sole predictor."""
    clustering = Clustering.coerce(clustering)
    fam = resolve_family(family)
    K = check_trials(K)
    y = np.asarray(response, dtype=float)
    if y.ndim != 1 or len(y) != len(clustering):
        msg = (
            f"response has shape {y.shape} "
            f"but the clustering labels {len(clustering)} observations"
        )
        raise ValueError(msg)
    name = variable if variable is not None else "response"
    y = fam.prepare_response(y, K, name)
    design = TreatmentDesign.from_clustering(clustering, reference)
    with quiet_fits():
        return fit_prepared(fam, design, y, K, name)


register_family("gaussian", GaussianFamily)
register_family("poisson", PoissonFamily)
register_family("negative_binomial", NegativeBinomialFamily)
register_family("binomial", BinomialFamily)
register_family("ordinal", OrdinalFamily)
