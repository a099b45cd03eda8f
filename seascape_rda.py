# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

"""
Redundancy analysis toolkit for seascape genetics.

Linear constrained ordination of site allele frequencies on environmental and
spatial (dbMEM) predictors, following vegan/adespatial conventions:
- RDA and partial RDA (conditioning variables regressed out of Y and X).
- Adjusted R2, variance inflation factors, inertia decomposition.
- Permutation tests of the model, of each term (by margin) and of each axis.
- Forward selection with permutation tests and the double stopping criterion.
- Loading-distribution outlier detection for candidate loci.
- dbMEM spatial eigenvectors from site coordinates.

Every permutation routine takes an explicit numpy Generator; nothing here
touches global random state.
"""

import warnings
from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from scipy.sparse.csgraph import minimum_spanning_tree

from sklearn.preprocessing import StandardScaler

import statsmodels.api as sm
from statsmodels.stats.outliers_influence import variance_inflation_factor


# Relative tolerance for rank decisions
RANK_TOL = 1e-7
# Tolerance on F when counting permuted statistics (vegan uses sqrt(.Machine$double.eps))
PERM_EPS = np.sqrt(np.finfo(float).eps)


# =============================================================================
# Errors and warnings
# =============================================================================

class SiteMismatchError(ValueError):
    """Input matrices do not share the same set of site labels."""


class NoSignificantPredictorsError(ValueError):
    """An ordination was requested without any constraining variable."""


class HighVIFWarning(UserWarning):
    pass


# =============================================================================
# Helper functions
# =============================================================================

def adj_r2(r2, n, p):
    if (not np.isfinite(r2)) or (n <= p + 1):
        return np.nan
    return 1.0 - (1.0 - r2) * (n - 1) / (n - p - 1)

def _basis(M, tol=RANK_TOL):
    """Orthonormal basis of the column space of M (rank-revealing SVD)."""
    M = np.asarray(M, float)
    if M.ndim == 1:
        M = M[:, None]
    if M.shape[1] == 0:
        return np.zeros((M.shape[0], 0))
    U, s, _ = np.linalg.svd(M, full_matrices=False)
    keep = s > tol * max(1.0, s[0])
    return U[:, keep]

def _residualize(Q, M):
    if Q.shape[1] == 0:
        return M
    return M - Q @ (Q.T @ M)

def standardize(X):
    """Centre and scale predictor columns (zero-variance columns stay at zero)."""
    return StandardScaler().fit_transform(np.asarray(X, float))

def prepare_response(Y, scale=True):
    """Centre allele frequencies; with scale=True divide by the column sd (ddof=1)."""
    Y = np.asarray(Y, float)
    Yc = Y - Y.mean(axis=0)
    if not scale:
        return Yc
    sd = Yc.std(axis=0, ddof=1)
    bad = np.where(~(sd > 1e-12))[0]
    if bad.size:
        raise ValueError(f"Cannot scale {bad.size} invariant response column(s): index {bad[:10].tolist()}")
    return Yc / sd

def haversine_km(lat1, lon1, lat2, lon2):
    """Vectorized haversine distance (km)."""
    R = 6371.0088
    lat1 = np.deg2rad(lat1); lon1 = np.deg2rad(lon1)
    lat2 = np.deg2rad(lat2); lon2 = np.deg2rad(lon2)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = np.sin(dlat/2.0)**2 + np.cos(lat1)*np.cos(lat2)*np.sin(dlon/2.0)**2
    return 2*R*np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))

def pcoa(D):
    D2 = D**2
    n = D.shape[0]
    J = np.eye(n) - np.ones((n, n))/n
    B = -0.5 * J @ D2 @ J
    evals, evecs = np.linalg.eigh(B)
    idx = np.argsort(evals)[::-1]
    evals = evals[idx]
    evecs = evecs[:, idx]
    pos = evals > 1e-12 * max(1.0, evals[0])
    return evecs[:, pos], evals[pos]


# =============================================================================
# Ordination model
# =============================================================================

@dataclass
class RDAResult:
    sites: pd.Index
    loci: pd.Index
    predictors: List[str]
    conditions: List[str]
    X: np.ndarray          # standardized constraints
    Z: np.ndarray          # standardized conditions (n x 0 when not partial)
    Ys: np.ndarray         # centred/scaled response divided by sqrt(n - 1)
    Yr: np.ndarray         # Ys with conditions regressed out
    Xr: np.ndarray         # X with conditions regressed out
    Qz: np.ndarray
    Qx: np.ndarray
    eig: np.ndarray        # constrained eigenvalues
    eig_unconstrained: np.ndarray
    u: np.ndarray          # linear-combination site scores (orthonormal)
    v: np.ndarray          # locus loadings (orthonormal)
    wa: np.ndarray         # weighted-average site scores
    biplot: np.ndarray     # correlations of constraints with LC scores
    tot_chi: float
    partial_chi: float
    constrained_chi: float
    residual_chi: float

    @property
    def n(self):
        return len(self.sites)

    @property
    def rank(self):
        return self.Qx.shape[1]

    @property
    def partial_rank(self):
        return self.Qz.shape[1]

    @property
    def is_partial(self):
        return self.partial_rank > 0

    @property
    def df_residual(self):
        return self.n - 1 - self.partial_rank - self.rank

    @property
    def axis_names(self):
        return [f"RDA{i+1}" for i in range(len(self.eig))]

    @property
    def r_squared(self):
        return self.constrained_chi / self.tot_chi if self.tot_chi > 0 else np.nan

    @property
    def adj_r_squared(self):
        # Partial models: adjR2(X + Z) - adjR2(Z), as in vegan::RsquareAdj
        if self.is_partial:
            r2p = self.partial_chi / self.tot_chi
            return (adj_r2(self.r_squared + r2p, self.n, self.rank + self.partial_rank)
                    - adj_r2(r2p, self.n, self.partial_rank))
        return adj_r2(self.r_squared, self.n, self.rank)

    def scores(self, display="species", scaling=2, choices=None):
        """
        Ordination scores in vegan conventions.

        display: 'species' (locus loadings), 'sites' or 'wa' (weighted-average
        site scores), 'lc' (linear-combination site scores), 'bp' (biplot arrows).
        scaling: 1 (sites), 2 (species), 3 (symmetric).
        """
        if scaling not in (1, 2, 3):
            raise ValueError(f"scaling must be 1, 2 or 3 (got {scaling!r})")
        names = self.axis_names
        idx = list(range(len(names))) if choices is None else [c - 1 for c in choices]
        if any(i < 0 or i >= len(names) for i in idx):
            raise ValueError(f"choices {choices!r} outside 1..{len(names)}")

        slam = np.sqrt(self.eig[idx] / self.tot_chi)
        const = np.sqrt(np.sqrt((self.n - 1) * self.tot_chi))
        species_scal = {1: np.ones_like(slam), 2: slam, 3: np.sqrt(slam)}[scaling]
        site_scal = {1: slam, 2: np.ones_like(slam), 3: np.sqrt(slam)}[scaling]
        cols = [names[i] for i in idx]

        if display == "species":
            return pd.DataFrame(self.v[:, idx] * species_scal * const, index=self.loci, columns=cols)
        if display in ("sites", "wa"):
            return pd.DataFrame(self.wa[:, idx] * site_scal * const, index=self.sites, columns=cols)
        if display == "lc":
            return pd.DataFrame(self.u[:, idx] * site_scal * const, index=self.sites, columns=cols)
        if display == "bp":
            return pd.DataFrame(self.biplot[:, idx] * species_scal, index=self.predictors, columns=cols)
        raise ValueError(f"Unknown display {display!r}")


def fit_rda(Y, X, Z=None, scale=True):
    """
    Fit RDA of Y on X, optionally conditioned on Z (partial RDA).
    Y, X, Z are DataFrames sharing the same row labels in the same order.
    """
    Y = pd.DataFrame(Y)
    X = pd.DataFrame(X)
    if X.shape[1] == 0:
        raise NoSignificantPredictorsError("RDA needs at least one constraining variable.")
    if not Y.index.equals(X.index):
        raise SiteMismatchError("Response and constraint tables are not aligned by site.")

    n = Y.shape[0]
    Ys = prepare_response(Y.to_numpy(float), scale=scale) / np.sqrt(n - 1)
    tot_chi = float(np.sum(Ys**2))
    Xs = standardize(X)

    if Z is not None and pd.DataFrame(Z).shape[1] > 0:
        Z = pd.DataFrame(Z)
        if not Y.index.equals(Z.index):
            raise SiteMismatchError("Response and conditioning tables are not aligned by site.")
        Zs = standardize(Z)
        conditions = [str(c) for c in Z.columns]
    else:
        Zs = np.zeros((n, 0))
        conditions = []
    Qz = _basis(Zs)
    Yr = _residualize(Qz, Ys)
    Xr = _residualize(Qz, Xs)
    partial_chi = tot_chi - float(np.sum(Yr**2))

    Qx = _basis(Xr)
    if Qx.shape[1] == 0:
        raise NoSignificantPredictorsError("Constraining variables are fully explained by the conditioning variables.")

    Yfit = Qx @ (Qx.T @ Yr)
    U, s, Vt = np.linalg.svd(Yfit, full_matrices=False)
    k = min(Qx.shape[1], int(np.sum(s > RANK_TOL * max(1.0, s[0]))))
    s = s[:k]
    u = U[:, :k]
    v = Vt[:k, :].T
    wa = (Yr @ v) / s

    norms = np.linalg.norm(Xr, axis=0)
    biplot = np.zeros((Xr.shape[1], k))
    ok = norms > RANK_TOL
    biplot[ok, :] = (Xr[:, ok] / norms[ok]).T @ u

    s_ca = np.linalg.svd(Yr - Yfit, compute_uv=False)
    eig_ca = s_ca[s_ca > RANK_TOL * max(1.0, s_ca[0] if s_ca.size else 1.0)]**2

    constrained_chi = float(np.sum(s**2))
    return RDAResult(
        sites=Y.index, loci=Y.columns,
        predictors=[str(c) for c in X.columns], conditions=conditions,
        X=Xs, Z=Zs, Ys=Ys, Yr=Yr, Xr=Xr, Qz=Qz, Qx=Qx,
        eig=s**2, eig_unconstrained=eig_ca,
        u=u, v=v, wa=wa, biplot=biplot,
        tot_chi=tot_chi, partial_chi=partial_chi,
        constrained_chi=constrained_chi,
        residual_chi=float(np.sum(Yr**2)) - constrained_chi,
    )


def inertia_table(result):
    rows = [("Total", result.tot_chi, np.nan)]
    if result.is_partial:
        rows.append(("Conditional", result.partial_chi, result.partial_rank))
    rows.append(("Constrained", result.constrained_chi, result.rank))
    rows.append(("Unconstrained", result.residual_chi, len(result.eig_unconstrained)))
    df = pd.DataFrame(rows, columns=["component", "Inertia", "Rank"]).set_index("component")
    df.insert(1, "Proportion", df["Inertia"] / result.tot_chi)
    return df

def eigenvalue_summary(result):
    """Constrained eigenvalues with proportion and cumulative proportion of constrained inertia."""
    eig = result.eig
    prop = eig / eig.sum()
    return pd.DataFrame({
        "Eigenvalue": eig,
        "Proportion Explained": prop,
        "Cumulative Proportion": np.cumsum(prop),
    }, index=result.axis_names)


# =============================================================================
# Variance inflation
# =============================================================================

def vif_table(result):
    """VIF of every conditioning and constraining column (partial models include both)."""
    names = result.conditions + result.predictors
    M = np.column_stack([result.Z, result.X])
    if M.shape[1] == 1:
        return pd.Series([1.0], index=names, name="VIF")
    exog = sm.add_constant(M, has_constant="add")
    with np.errstate(divide="ignore"):
        vifs = [variance_inflation_factor(exog, i + 1) for i in range(M.shape[1])]
    return pd.Series(vifs, index=names, name="VIF", dtype=float)

def check_vif(vif, threshold=10.0):
    high = vif[vif >= threshold]
    if len(high) > 0:
        listing = ", ".join(f"{k}={v:.2f}" for k, v in high.items())
        warnings.warn(f"VIF >= {threshold:g} for: {listing}", HighVIFWarning, stacklevel=2)
    return high


# =============================================================================
# Permutation tests
# =============================================================================

def _permutation_f(Yr, Qc, Qx, df_residual, n_perm, rng, first=False):
    """
    Pseudo-F test of the constraints spanned by Qx after the conditions Qc.

    Rows of Yr (response with conditions regressed out) are permuted, the
    conditions are regressed out again and the statistic recomputed.
    With first=True the statistic is the first constrained eigenvalue.
    """
    if n_perm < 1:
        raise ValueError("n_perm must be >= 1")
    if df_residual < 1:
        raise ValueError("No residual degrees of freedom left for a permutation test.")
    df_model = 1 if first else Qx.shape[1]

    def statistic(M):
        M = _residualize(Qc, M)
        B = Qx.T @ M
        fitted = float(np.sum(B**2))
        chi = float(np.linalg.svd(B, compute_uv=False)[0]**2) if first else fitted
        resid = float(np.sum(M**2)) - fitted
        return chi, (chi / df_model) / (resid / df_residual)

    chi_obs, f_obs = statistic(Yr)
    n = Yr.shape[0]
    f_perm = np.empty(n_perm)
    for i in range(n_perm):
        f_perm[i] = statistic(Yr[rng.permutation(n), :])[1]
    p = (np.sum(f_perm >= f_obs - PERM_EPS) + 1) / (n_perm + 1)
    return {"chi": chi_obs, "F": f_obs, "p": float(p), "df": df_model}

def _anova_frame(rows, result):
    rows = rows + [("Residual", result.df_residual, result.residual_chi, np.nan, np.nan)]
    return pd.DataFrame(rows, columns=["term", "Df", "Variance", "F", "Pr(>F)"]).set_index("term")

def anova_global(result, n_perm, rng):
    """Permutation test of the whole model."""
    out = _permutation_f(result.Yr, result.Qz, result.Qx, result.df_residual, n_perm, rng)
    return _anova_frame([("Model", result.rank, out["chi"], out["F"], out["p"])], result)

def anova_by_margin(result, n_perm, rng):
    """Marginal test of each constraint given all other constraints and conditions."""
    rows = []
    for j, name in enumerate(result.predictors):
        C = np.column_stack([result.Z, np.delete(result.X, j, axis=1)])
        Qc = _basis(C)
        Qj = _basis(_residualize(Qc, result.X[:, [j]]))
        if Qj.shape[1] == 0:
            rows.append((name, 0, 0.0, np.nan, np.nan))
            continue
        out = _permutation_f(_residualize(Qc, result.Ys), Qc, Qj, result.df_residual, n_perm, rng)
        rows.append((name, 1, out["chi"], out["F"], out["p"]))
    return _anova_frame(rows, result)

def anova_by_axis(result, n_perm, rng):
    """Sequential test of each constrained axis, conditioning on the preceding axes."""
    rows = []
    for k, name in enumerate(result.axis_names):
        Uk = result.u[:, :k]
        Qc = np.column_stack([result.Qz, Uk])
        Qk = _basis(_residualize(Uk, result.Xr))
        out = _permutation_f(_residualize(Qc, result.Ys), Qc, Qk, result.df_residual, n_perm, rng, first=True)
        rows.append((name, 1, out["chi"], out["F"], out["p"]))
    return _anova_frame(rows, result)


# =============================================================================
# Forward selection
# =============================================================================

def forward_selection(Y, X, alpha=0.05, n_perm=999, rng=None, r2_thresh=0.99, adj_r2_thresh=None):
    """
    Forward selection of the columns of X explaining Y (adespatial::forward.sel).

    At each step the candidate giving the largest cumulative R2 is tested by
    permuting the residuals of the previous model. Selection stops before a
    variable whose p-value is >= alpha, or whose inclusion pushes R2 above
    r2_thresh or adjusted R2 above adj_r2_thresh. When adj_r2_thresh is None
    the adjusted R2 of the model with all candidates is used.
    """
    rng = np.random.default_rng(rng)
    Y = pd.DataFrame(Y)
    X = pd.DataFrame(X)
    if not Y.index.equals(X.index):
        raise SiteMismatchError("Response and candidate tables are not aligned by site.")
    Ym = prepare_response(Y.to_numpy(float), scale=False)
    Xs = standardize(X)
    n, m = Xs.shape
    sst = float(np.sum(Ym**2))
    columns = ["variables", "order", "R2", "R2Cum", "AdjR2Cum", "F", "pvalue"]
    if m == 0 or sst <= 0:
        return pd.DataFrame(columns=columns)

    def r2_of(cols):
        Q = _basis(Xs[:, cols])
        return float(np.sum((Q.T @ Ym)**2)) / sst

    if adj_r2_thresh is None:
        full = adj_r2(r2_of(list(range(m))), n, _basis(Xs).shape[1])
        adj_r2_thresh = full if np.isfinite(full) else np.inf

    selected = []
    remaining = list(range(m))
    rows = []
    r2_prev = 0.0
    Qsel = np.zeros((n, 0))
    while remaining:
        k = len(selected)
        df_residual = n - k - 2
        if df_residual < 1:
            break

        r2_cands = [r2_of(selected + [j]) for j in remaining]
        best = int(np.argmax(r2_cands))
        j = remaining[best]
        r2_cum = r2_cands[best]
        adj_cum = adj_r2(r2_cum, n, k + 1)
        if r2_cum > r2_thresh or adj_cum > adj_r2_thresh + RANK_TOL:
            break

        Qj = _basis(_residualize(Qsel, Xs[:, [j]]))
        if Qj.shape[1] == 0:
            break
        test = _permutation_f(_residualize(Qsel, Ym), Qsel, Qj, df_residual, n_perm, rng)
        if test["p"] >= alpha:
            break

        rows.append({
            "variables": str(X.columns[j]),
            "order": j + 1,
            "R2": r2_cum - r2_prev,
            "R2Cum": r2_cum,
            "AdjR2Cum": adj_cum,
            "F": test["F"],
            "pvalue": test["p"],
        })
        selected.append(j)
        remaining.remove(j)
        Qsel = _basis(Xs[:, selected])
        r2_prev = r2_cum

    return pd.DataFrame(rows, columns=columns)

def require_predictors(selection, label):
    if selection is None or len(selection) == 0:
        raise NoSignificantPredictorsError(f"Forward selection retained no {label} variables; cannot fit RDA.")
    return list(selection["variables"])


# =============================================================================
# Collinearity screening
# =============================================================================

def correlation_screen(env, threshold=0.7):
    """Pearson correlation matrix and the variable pairs with |r| > threshold."""
    corr = env.corr(method="pearson")
    cols = list(corr.columns)
    pairs = []
    for i, a in enumerate(cols):
        for b in cols[i+1:]:
            r = corr.loc[a, b]
            if np.isfinite(r) and abs(r) > threshold:
                pairs.append({"var1": a, "var2": b, "r": float(r)})
    pairs = pd.DataFrame(pairs, columns=["var1", "var2", "r"])
    if len(pairs):
        pairs = pairs.reindex(pairs["r"].abs().sort_values(ascending=False).index).reset_index(drop=True)
    return corr, pairs

def drop_collinear(env, exclude):
    missing = [c for c in exclude if c not in env.columns]
    if missing:
        raise ValueError(f"Excluded variables not found in environmental table: {missing}")
    return env.drop(columns=list(exclude))


# =============================================================================
# Candidate loci
# =============================================================================

def outlier_loci(loadings, z=2.5):
    """Loci whose loading lies outside mean +/- z * sd (sd with ddof=1)."""
    if z < 0:
        raise ValueError("z must be >= 0")
    if isinstance(loadings, pd.DataFrame):
        if loadings.shape[1] != 1:
            raise ValueError(f"Expected loadings for a single axis, got {loadings.shape[1]} columns")
        loadings = loadings.iloc[:, 0]
    x = pd.Series(loadings, dtype=float)
    if z == 0:
        return x.copy()
    mu = x.mean()
    sd = x.std(ddof=1)
    if not np.isfinite(sd) or sd <= np.finfo(float).eps * max(1.0, abs(mu)):
        return x.iloc[0:0]
    lo, hi = mu - z * sd, mu + z * sd
    return x[(x < lo) | (x > hi)]


# =============================================================================
# Spatial eigenvectors
# =============================================================================

def dbmem(coords, lat_col="lat", lon_col="lon", threshold=None):
    """
    Distance-based Moran's eigenvector maps from site coordinates.

    Great-circle distances are truncated at the longest edge of the minimum
    spanning tree (larger distances set to 4x threshold); eigenvectors of the
    PCoA with positive eigenvalues are returned, each scaled to norm sqrt(n).
    """
    lat = pd.to_numeric(coords[lat_col], errors="coerce").to_numpy(float)
    lon = pd.to_numeric(coords[lon_col], errors="coerce").to_numpy(float)
    if not (np.all(np.isfinite(lat)) and np.all(np.isfinite(lon))):
        raise ValueError("Site coordinates contain missing or non-numeric values.")

    D = haversine_km(lat[:, None], lon[:, None], lat[None, :], lon[None, :])
    if threshold is None:
        threshold = float(minimum_spanning_tree(D).toarray().max())
    Dt = np.where(D > threshold, 4.0 * threshold, D)

    vecs, _ = pcoa(Dt)
    n = len(lat)
    mem = vecs / np.linalg.norm(vecs, axis=0) * np.sqrt(n)
    return pd.DataFrame(mem, index=coords.index, columns=[f"MEM{i+1}" for i in range(mem.shape[1])])
