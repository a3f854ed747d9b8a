"""
Cumulative Link Mixed Models Module
===================================

Fits cumulative link mixed models (ordinal regression with a per-subject
random intercept) for ordered rating scales:

    P(Y <= j | u_s) = F(theta_j - x'beta - u_s),    u_s ~ N(0, sigma^2)

The per-subject likelihood is integrated with adaptive Gauss-Hermite
quadrature (default 10 nodes). Each subject's integrand is centred on its
conditional mode and scaled by the conditional curvature, so the rule is
exact for Gaussian-shaped posteriors and reduces to the Laplace
approximation with a single node.

Architecture Note:
    Results are returned as ClmmResult dictionaries, mirroring the other
    wearstats records.

Key features:
- Logit (default), probit and complementary log-log links
- Deterministic start values and quadrature nodes (reproducible fits)
- Explicit ModelConvergenceError instead of degenerate coefficients
- Wald tests for fixed effects from the numerical Hessian
- Conditional modes and variances of the random intercepts
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
import warnings

import numpy as np
import pandas as pd
import patsy
from numpy.polynomial.hermite import hermgauss
from scipy import stats
from scipy.optimize import minimize
from scipy.special import expit, logsumexp
from statsmodels.tools.numdiff import approx_fprime, approx_hess3

from .formulas import ModelSpec
from .prepare import RowFilter, SurveyDataset, apply_row_filter


ClmmResult = Dict[str, Any]

_PROB_FLOOR = 1e-300
_NEWTON_MAX_ITER = 50
_NEWTON_TOL = 1e-10
_NEWTON_MAX_STEP = 5.0


class ModelConvergenceError(RuntimeError):
    """Raised when a model fit does not reach a valid maximum of the likelihood."""


# =============================================================================
# Link Functions
# =============================================================================

def _finite_only(fn: Callable[[np.ndarray], np.ndarray]) -> Callable[[np.ndarray], np.ndarray]:
    """Evaluate ``fn`` on finite inputs; densities vanish at +/- infinity."""
    def wrapped(x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        out = np.zeros_like(x)
        mask = np.isfinite(x)
        out[mask] = fn(x[mask])
        return out
    return wrapped


def _logistic_pdf(x: np.ndarray) -> np.ndarray:
    F = expit(x)
    return F * (1.0 - F)


def _logistic_dpdf(x: np.ndarray) -> np.ndarray:
    F = expit(x)
    return F * (1.0 - F) * (1.0 - 2.0 * F)


def _cloglog_cdf(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return -np.expm1(-np.exp(x))


def _cloglog_pdf(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return np.exp(x - np.exp(x))


def _cloglog_dpdf(x: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        return np.exp(x - np.exp(x)) * (1.0 - np.exp(x))


LINKS: Dict[str, Dict[str, Callable[[np.ndarray], np.ndarray]]] = {
    "logit": {
        "cdf": expit,
        "pdf": _finite_only(_logistic_pdf),
        "dpdf": _finite_only(_logistic_dpdf),
        "ppf": lambda p: np.log(p / (1.0 - p)),
    },
    "probit": {
        "cdf": stats.norm.cdf,
        "pdf": _finite_only(stats.norm.pdf),
        "dpdf": _finite_only(lambda x: -x * stats.norm.pdf(x)),
        "ppf": stats.norm.ppf,
    },
    "cloglog": {
        "cdf": _cloglog_cdf,
        "pdf": _finite_only(_cloglog_pdf),
        "dpdf": _finite_only(_cloglog_dpdf),
        "ppf": lambda p: np.log(-np.log1p(-p)),
    },
}


def get_link(name: str) -> Dict[str, Callable[[np.ndarray], np.ndarray]]:
    """Look up a link function by name."""
    if name not in LINKS:
        raise ValueError(f"Unknown link '{name}'. Available: {list(LINKS)}")
    return LINKS[name]


# =============================================================================
# Quadrature
# =============================================================================

def gauss_hermite_nodes(n: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gauss-Hermite nodes and weights for the weight function exp(-x^2).

    :param n: Number of quadrature points (>= 1)
    :returns: (nodes, weights)
    """
    if n < 1:
        raise ValueError("Number of quadrature points must be >= 1")
    return hermgauss(n)


def _observation_terms(
    link: Dict[str, Callable],
    upper: np.ndarray,
    lower: np.ndarray,
    offset: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Category probability and the density differences used by Newton steps."""
    a = upper - offset
    b = lower - offset
    prob = np.maximum(link["cdf"](a) - link["cdf"](b), _PROB_FLOOR)
    d1 = link["pdf"](a) - link["pdf"](b)
    d2 = link["dpdf"](a) - link["dpdf"](b)
    return prob, d1, d2


def _conditional_modes(
    link: Dict[str, Callable],
    upper: np.ndarray,
    lower: np.ndarray,
    eta: np.ndarray,
    group: np.ndarray,
    n_groups: int,
    sd: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Newton iterations for every subject's conditional mode of u.

    Returns the modes and the negative second derivative of the log
    integrand at the modes (the conditional precision).
    """
    precision = 1.0 / sd ** 2
    u = np.zeros(n_groups)

    for _ in range(_NEWTON_MAX_ITER):
        prob, d1, d2 = _observation_terms(link, upper, lower, eta + u[group])
        score = -d1 / prob
        grad = np.bincount(group, weights=score, minlength=n_groups) - precision * u
        curvature = np.bincount(group, weights=score ** 2 - d2 / prob, minlength=n_groups) + precision
        step = np.clip(grad / curvature, -_NEWTON_MAX_STEP, _NEWTON_MAX_STEP)
        u = u + step
        if np.max(np.abs(step)) < _NEWTON_TOL:
            break

    prob, d1, d2 = _observation_terms(link, upper, lower, eta + u[group])
    score = -d1 / prob
    curvature = np.bincount(group, weights=score ** 2 - d2 / prob, minlength=n_groups) + precision
    return u, curvature


# =============================================================================
# Likelihood
# =============================================================================

def _unpack(params: np.ndarray, n_thresholds: int, n_beta: int) -> Tuple[np.ndarray, np.ndarray, float]:
    theta = params[:n_thresholds]
    beta = params[n_thresholds:n_thresholds + n_beta]
    log_sd = params[n_thresholds + n_beta]
    return theta, beta, log_sd


def _marginal_loglik(
    params: np.ndarray,
    frame: Dict[str, Any],
    link: Dict[str, Callable],
    nodes: np.ndarray,
    log_weights: np.ndarray,
) -> Tuple[float, np.ndarray, np.ndarray]:
    """Marginal log-likelihood by adaptive Gauss-Hermite quadrature."""
    theta, beta, log_sd = _unpack(params, frame["n_thresholds"], frame["X"].shape[1])
    sd = float(np.exp(log_sd))
    y, group, n_groups = frame["y"], frame["group"], frame["n_groups"]

    cuts = np.concatenate([[-np.inf], theta, [np.inf]])
    upper = cuts[y + 1]
    lower = cuts[y]
    eta = frame["X"] @ beta

    modes, curvature = _conditional_modes(link, upper, lower, eta, group, n_groups, sd)
    scale = np.sqrt(2.0 / curvature)

    log_terms = np.empty((n_groups, len(nodes)))
    for k, x in enumerate(nodes):
        u_k = modes + scale * x
        offset = eta + u_k[group]
        prob = np.maximum(link["cdf"](upper - offset) - link["cdf"](lower - offset), _PROB_FLOOR)
        ll_obs = np.bincount(group, weights=np.log(prob), minlength=n_groups)
        log_terms[:, k] = ll_obs + stats.norm.logpdf(u_k, scale=sd) + x ** 2 + log_weights[k]

    per_group = logsumexp(log_terms, axis=1) + np.log(scale)
    return float(per_group.sum()), modes, curvature


# =============================================================================
# Model Frame
# =============================================================================

def _term_columns(spec: ModelSpec) -> List[str]:
    cols = []
    for term in spec["terms"]:
        for part in term.split(":"):
            if part not in cols:
                cols.append(part)
    return cols


def model_columns(spec: ModelSpec) -> List[str]:
    """Columns that must be non-missing for a row to enter the fit."""
    return [spec["response"], spec["group"]] + _term_columns(spec)


def _drop_aliased(X: np.ndarray, names: List[str]) -> Tuple[np.ndarray, List[str], List[str]]:
    """Drop design columns that are linear combinations of earlier ones (and the intercept)."""
    n = X.shape[0]
    current = np.ones((n, 1))
    keep, dropped = [], []
    for j, name in enumerate(names):
        candidate = np.column_stack([current, X[:, j]])
        if np.linalg.matrix_rank(candidate) > current.shape[1]:
            keep.append(j)
            current = candidate
        else:
            dropped.append(name)
    return X[:, keep], [names[j] for j in keep], dropped


def _build_frame(
    ds: SurveyDataset,
    spec: ModelSpec,
    subset: Optional[RowFilter],
    model_warnings: List[str],
) -> Dict[str, Any]:
    """Assemble response codes, design matrix and grouping index for one fit."""
    response = spec["response"]
    group_col = spec["group"]
    term_cols = _term_columns(spec)

    for col in [response, group_col] + term_cols:
        if col not in ds["data"].columns:
            raise ValueError(f"Column '{col}' not found in dataset")

    df = apply_row_filter(ds["data"], subset)
    df = df.dropna(subset=model_columns(spec))
    for col in term_cols:
        if isinstance(df[col].dtype, pd.CategoricalDtype):
            df[col] = df[col].cat.remove_unused_categories()

    # Response: ordered categories, unused ones dropped
    y_raw = df[response]
    if isinstance(y_raw.dtype, pd.CategoricalDtype):
        categories = [str(c) for c in y_raw.cat.categories]
        codes = y_raw.cat.codes.to_numpy()
    else:
        categories = [str(c) for c in sorted(y_raw.unique())]
        codes = pd.Categorical(y_raw.astype(str), categories=categories).codes
    counts = np.bincount(codes, minlength=len(categories))
    used = [i for i, c in enumerate(counts) if c > 0]
    if len(used) < len(categories):
        empty = [categories[i] for i, c in enumerate(counts) if c == 0]
        msg = f"Response categories with no observations dropped: {empty}"
        warnings.warn(msg)
        model_warnings.append(msg)
    if len(used) < 2:
        raise ValueError(f"Rating '{response}' needs at least two observed categories")
    remap = {old: new for new, old in enumerate(used)}
    y = np.array([remap[c] for c in codes], dtype=int)
    levels = [categories[i] for i in used]

    # Fixed effects design (thresholds play the role of the intercept)
    if term_cols:
        dm = patsy.dmatrix(spec["fixed"], df, return_type="dataframe")
        dm = dm.drop(columns=[c for c in dm.columns if c == "Intercept"])
        X, names, aliased = _drop_aliased(dm.to_numpy(dtype=float), list(dm.columns))
        if aliased:
            msg = f"Aliased coefficients dropped (not estimable): {aliased}"
            warnings.warn(msg)
            model_warnings.append(msg)
    else:
        X, names = np.empty((len(df), 0)), []

    group, group_labels = pd.factorize(df[group_col].astype(str), sort=True)
    factor_levels = {
        col: [str(c) for c in df[col].cat.categories]
        for col in term_cols
        if isinstance(df[col].dtype, pd.CategoricalDtype)
    }

    return {
        "y": y,
        "X": X,
        "names": names,
        "group": group.astype(int),
        "group_labels": list(group_labels),
        "n_groups": len(group_labels),
        "n_thresholds": len(levels) - 1,
        "levels": levels,
        "factor_levels": factor_levels,
        "n_obs": len(df),
    }


def _start_values(frame: Dict[str, Any], link: Dict[str, Callable]) -> np.ndarray:
    """Thresholds from marginal cumulative proportions; zero effects; unit SD."""
    counts = np.bincount(frame["y"], minlength=frame["n_thresholds"] + 1)
    cumulative = np.cumsum(counts)[:-1] / counts.sum()
    cumulative = np.clip(cumulative, 1e-4, 1 - 1e-4)
    theta = np.asarray(link["ppf"](cumulative), dtype=float)
    return np.concatenate([theta, np.zeros(frame["X"].shape[1]), [0.0]])


# =============================================================================
# ClmmResult (dict)
# =============================================================================

def create_clmm_result(
    outcome: str,
    spec: ModelSpec,
    frame: Dict[str, Any],
    params: np.ndarray,
    vcov: np.ndarray,
    llf: float,
    modes: np.ndarray,
    cond_var: np.ndarray,
    fit_stats: Dict[str, float],
    converged: bool,
    link: str,
    n_agq: int,
    model_warnings: List[str],
    subset_description: Optional[str] = None,
) -> ClmmResult:
    """
    Create a ClmmResult dictionary with all model output.

    :param outcome: Rating column
    :param spec: ModelSpec that was fitted
    :param frame: Model frame from _build_frame
    :param params: Estimated parameter vector (thresholds, beta, log SD)
    :param vcov: Covariance matrix of params (inverse Hessian)
    :param llf: Maximised log-likelihood
    :param modes: Conditional modes of the random intercepts
    :param cond_var: Conditional variances of the random intercepts
    :param fit_stats: Dict with llf, AIC, BIC and optimizer statistics
    :param converged: Whether the fit passed the convergence checks
    :param link: Link function name
    :param n_agq: Number of quadrature points
    :param model_warnings: Warnings collected during fitting
    :param subset_description: Description of the row filter applied
    :returns: ClmmResult dictionary
    """
    n_thr = frame["n_thresholds"]
    n_beta = len(frame["names"])
    se = np.sqrt(np.clip(np.diag(vcov), 0.0, None))
    theta, beta, log_sd = _unpack(params, n_thr, n_beta)

    beta_se = se[n_thr:n_thr + n_beta]
    with np.errstate(divide="ignore", invalid="ignore"):
        z = beta / beta_se
    coefficients = pd.DataFrame({
        "term": frame["names"],
        "estimate": beta,
        "std_error": beta_se,
        "z_value": z,
        "p_value": 2.0 * stats.norm.sf(np.abs(z)),
        "ci_lower": beta - 1.959963984540054 * beta_se,
        "ci_upper": beta + 1.959963984540054 * beta_se,
    })

    levels = frame["levels"]
    thresholds = pd.DataFrame({
        "threshold": [f"{levels[j]}|{levels[j + 1]}" for j in range(n_thr)],
        "estimate": theta,
        "std_error": se[:n_thr],
    })

    random_effects = pd.DataFrame({
        "group": frame["group_labels"],
        "mode": modes,
        "cond_var": cond_var,
    })

    sd = float(np.exp(log_sd))
    return {
        "outcome": outcome,
        "model_name": spec["name"],
        "formula": spec["formula"],
        "spec": spec,
        "fixed_terms": list(frame["names"]),
        "coefficients": coefficients,
        "thresholds": thresholds,
        "response_levels": list(levels),
        "factor_levels": frame["factor_levels"],
        "std_dev": sd,
        "variance": sd ** 2,
        "random_effects": random_effects,
        "fit_stats": fit_stats,
        "n_obs": frame["n_obs"],
        "n_groups": frame["n_groups"],
        "converged": converged,
        "params": params,
        "vcov": vcov,
        "link": link,
        "n_agq": n_agq,
        "subset": subset_description,
        "warnings": model_warnings,
    }


def summarize_clmm_result(result: ClmmResult) -> str:
    """
    Generate a summary string for a CLMM result.

    :param result: ClmmResult dictionary
    :returns: Human-readable summary string
    """
    lines = [
        f"CLMM Result: {result['outcome']} [{result['model_name']}]",
        f"  Formula: {result['formula']}",
        f"  Link: {result['link']} | Quadrature points: {result['n_agq']}",
        f"  N observations: {result['n_obs']}",
        f"  N subjects: {result['n_groups']}",
        f"  Converged: {result['converged']}",
        f"  logLik: {result['fit_stats'].get('llf', np.nan):.3f}",
        f"  AIC: {result['fit_stats'].get('aic', np.nan):.2f}",
        f"  Random intercept SD: {result['std_dev']:.3f}",
    ]
    if result.get("subset"):
        lines.append(f"  Subset: {result['subset']}")
    if result["warnings"]:
        lines.append(f"  Warnings: {len(result['warnings'])}")
    return "\n".join(lines)


# =============================================================================
# Model Fitting
# =============================================================================

def fit_clmm(
    ds: SurveyDataset,
    spec: ModelSpec,
    subset: Optional[RowFilter] = None,
    n_agq: int = 10,
    link: str = "logit",
    maxiter: int = 1000,
    gtol: float = 1e-5,
    grad_tol: float = 1e-3,
) -> ClmmResult:
    """
    Fit a cumulative link mixed model with a per-subject random intercept.

    :param ds: SurveyDataset dictionary
    :param spec: ModelSpec from build_formula_set()
    :param subset: Row predicate; only applied when spec["uses_subset"] is true
    :param n_agq: Adaptive Gauss-Hermite quadrature points (default: 10)
    :param link: "logit" (default), "probit" or "cloglog"
    :param maxiter: Maximum BFGS iterations
    :param gtol: BFGS gradient tolerance
    :param grad_tol: Largest accepted |gradient| of the negative log-likelihood
    :returns: ClmmResult dictionary
    :raises ModelConvergenceError: If the optimum is not a valid maximum
    :raises ValueError: If columns are missing or the response is degenerate

    Note:
        Estimation is by maximum likelihood, so log-likelihoods of nested
        fits on the same rows are directly comparable with an LRT.

    Example:
        >>> formulas = build_formula_set("comfort", ds)
        >>> result = fit_clmm(ds, get_model_spec(formulas, "m5"))
        >>> print(result["coefficients"])
    """
    model_warnings: List[str] = []
    link_fns = get_link(link)

    if subset is not None and not spec.get("uses_subset", True):
        subset = None
    subset_description = getattr(subset, "description", "custom filter") if subset is not None else None

    frame = _build_frame(ds, spec, subset, model_warnings)

    nodes, weights = gauss_hermite_nodes(n_agq)
    log_weights = np.log(weights)

    def objective(params: np.ndarray) -> float:
        llf, _, _ = _marginal_loglik(params, frame, link_fns, nodes, log_weights)
        return -llf if np.isfinite(llf) else np.inf

    start = _start_values(frame, link_fns)
    opt = minimize(
        objective,
        start,
        method="BFGS",
        options={"maxiter": maxiter, "gtol": gtol},
    )

    grad = np.ravel(approx_fprime(opt.x, objective, centered=True))
    hess = approx_hess3(opt.x, objective)
    max_grad = float(np.max(np.abs(grad))) if grad.size else 0.0

    try:
        np.linalg.cholesky(hess)
        hessian_ok = True
    except np.linalg.LinAlgError:
        hessian_ok = False

    converged = bool((opt.success or max_grad < grad_tol) and hessian_ok and np.isfinite(opt.fun))
    if not converged:
        raise ModelConvergenceError(
            f"Model {spec['name']} for '{spec['response']}' did not converge: "
            f"{opt.message} (max |gradient| = {max_grad:.2e}, "
            f"Hessian positive definite = {hessian_ok})"
        )
    if not opt.success:
        model_warnings.append(f"Optimizer message: {opt.message} (accepted, max |gradient| = {max_grad:.2e})")

    llf, modes, curvature = _marginal_loglik(opt.x, frame, link_fns, nodes, log_weights)
    vcov = np.linalg.inv(hess)

    theta = opt.x[:frame["n_thresholds"]]
    if np.any(np.diff(theta) <= 0):
        msg = f"Cut-points are not strictly increasing: {np.round(theta, 4).tolist()}"
        warnings.warn(msg)
        model_warnings.append(msg)

    n_params = len(opt.x)
    fit_stats = {
        "llf": llf,
        "aic": 2 * n_params - 2 * llf,
        "bic": np.log(frame["n_obs"]) * n_params - 2 * llf,
        "n_params": n_params,
        "iterations": int(opt.nit),
        "nfev": int(opt.nfev),
        "max_grad": max_grad,
        "cond_hessian": float(np.linalg.cond(hess)),
    }

    return create_clmm_result(
        outcome=spec["response"],
        spec=spec,
        frame=frame,
        params=opt.x,
        vcov=vcov,
        llf=llf,
        modes=modes,
        cond_var=1.0 / curvature,
        fit_stats=fit_stats,
        converged=converged,
        link=link,
        n_agq=n_agq,
        model_warnings=model_warnings,
        subset_description=subset_description,
    )


def fit_formula_set(
    ds: SurveyDataset,
    formulas: List[ModelSpec],
    subset: Optional[RowFilter] = None,
    **kwargs,
) -> Dict[str, ClmmResult]:
    """
    Fit every model of a formula set.

    The subset is applied only to models flagged ``uses_subset``.
    A convergence failure in any model propagates.

    :param ds: SurveyDataset dictionary
    :param formulas: Output of build_formula_set()
    :param subset: Row predicate (e.g. excluding sex == "Other")
    :param kwargs: Additional arguments passed to fit_clmm
    :returns: Dictionary mapping model name to ClmmResult
    """
    subset = shared_rows_filter(ds, formulas, subset)
    return {spec["name"]: fit_clmm(ds, spec, subset=subset, **kwargs) for spec in formulas}


def shared_rows_filter(
    ds: SurveyDataset,
    formulas: List[ModelSpec],
    subset: Optional[RowFilter] = None,
) -> Optional[RowFilter]:
    """
    Restrict the subset models of a formula set to one common set of rows.

    Nested models are compared by likelihood ratio, so a row with a missing
    covariate must leave every subset model, not only the models carrying
    that covariate. Without missing values the subset is returned unchanged.

    :param ds: SurveyDataset dictionary
    :param formulas: Output of build_formula_set()
    :param subset: Row predicate applied to the subset models
    :returns: Row predicate (or None when no restriction applies)
    """
    columns: List[str] = []
    for spec in formulas:
        if spec.get("uses_subset", True):
            columns += [c for c in model_columns(spec) if c not in columns]
    if not columns or not ds["data"][columns].isna().any().any():
        return subset

    def predicate(df: pd.DataFrame) -> pd.Series:
        keep = df[columns].notna().all(axis=1)
        if subset is not None:
            keep &= subset(df).astype(bool)
        return keep

    base = getattr(subset, "description", "custom filter") if subset is not None else None
    complete = f"complete {columns}"
    predicate.description = f"{base} and {complete}" if base else complete
    return predicate


# =============================================================================
# Accessors
# =============================================================================

def get_random_effects(result: ClmmResult) -> pd.DataFrame:
    """Conditional modes and variances of the random intercepts."""
    return result["random_effects"].copy()


def get_coefficient(result: ClmmResult, term: str) -> float:
    """Estimate of one fixed-effect term (0.0 for an absent reference level)."""
    coefs = result["coefficients"]
    match = coefs.loc[coefs["term"] == term, "estimate"]
    return float(match.iloc[0]) if not match.empty else 0.0
