# -*- coding: utf-8 -*-
# Copyright Ahmed Eladawy

"""
Seascape redundancy analysis of European lobster SNP allele frequencies (37 sites).

This script relates genetic variation across sampling sites to environmental
covariates and spatial structure (dbMEMs), then flags candidate loci.
Pipeline:
- Loads allele frequencies, dbMEMs and environmental variables; each CSV needs a leading
  site-code column (dbmems.csv too) and all three must share the same site labels.
- Screens environmental collinearity and drops the configured exclusion list.
- Forward selection (permutation tests, alpha=FORWARD_SEL_ALPHA) on environment and on dbMEMs.
- RDA on the retained predictors; partial RDA of environment conditioned on dbMEMs.
- Adjusted R2, VIF, permutation ANOVA (global, by margin, by axis) for both models.
- Candidate SNPs: loadings on significant partial-RDA axes beyond mean +/- OUTLIER_Z sd.

Main outputs:
- {OUT_DIR}/figures/rda.png, partial_rda.png (site biplots coloured by region)
- {OUT_DIR}/figures/env_correlations_*.png, rda_screeplot.png, snp_loadings_RDA*.png
- {OUT_DIR}/tables/forward_selection_*.csv, *_anova_*.csv, *_vif.csv, model_summary.csv
- {OUT_DIR}/tables/partial_rda_snp_loadings.csv, candidate_snps.csv
"""

import os
import warnings

import numpy as np
import pandas as pd

import matplotlib.pyplot as plt
from matplotlib.lines import Line2D

from seascape_rda import (
    SiteMismatchError, HighVIFWarning,
    fit_rda, inertia_table, eigenvalue_summary,
    vif_table, check_vif,
    anova_global, anova_by_margin, anova_by_axis,
    forward_selection, require_predictors,
    correlation_screen, drop_collinear,
    outlier_loci, dbmem,
)


# =============================================================================
# Configuration
# =============================================================================
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(BASE_DIR, "data")

# Every input table carries the site code in its first column (dbmems.csv included)
ALLELE_FREQ_CSV = os.path.join(DATA_DIR, "allele_freqs.csv")
DBMEM_CSV       = os.path.join(DATA_DIR, "dbmems.csv")
ENV_CSV         = os.path.join(DATA_DIR, "environmental_data.csv")

# Only read when DBMEM_CSV is missing: columns site, lat, lon
SITE_COORDS_CSV = os.path.join(DATA_DIR, "site_coordinates.csv")

OUT_DIR = os.path.join(BASE_DIR, "outputs", "seascape_rda")

RANDOM_SEED = 123

# Collinearity: pairs above the threshold are reported; removal follows the fixed list
COLLINEARITY_THRESHOLD = 0.7
EXCLUDE_ENV_VARS = ["sst_mean", "sbs_mean"]

# Forward selection
FORWARD_SEL_ALPHA = 0.01
N_PERM_FORWARD = 999
# None: stop once adjusted R2 would exceed that of the model with all candidates
FORWARD_SEL_ADJ_R2_THRESH = None

# Model tests
N_PERM_ANOVA = 1000
MODEL_ALPHA = 0.05
VIF_THRESHOLD = 10.0

# Candidate loci
OUTLIER_Z = 2.5
LOADING_SCALING = 2
PLOT_SCALING = 3

FIG_DPI = 600


# =============================================================================
# Regions
# =============================================================================
REGION_ORDER = ["Scandinavia", "Atlantic", "Central Mediterranean", "Aegean Sea"]

# blue=#377EB8, green=#7FC97F, orange=#FDB462, red=#E31A1C
REGION_COLORS = ["#7FC97F", "#377EB8", "#FDB462", "#E31A1C"]

SITE_REGIONS = {
    # Aegean Sea
    "Ale": "Aegean Sea", "The": "Aegean Sea", "Tor": "Aegean Sea", "Sky": "Aegean Sea",
    # Central Mediterranean
    "Sar": "Central Mediterranean", "Laz": "Central Mediterranean",
    # Atlantic
    "Vig": "Atlantic", "Brd": "Atlantic", "Cro": "Atlantic", "Eye": "Atlantic",
    "Heb": "Atlantic", "Iom": "Atlantic", "Ios": "Atlantic", "Loo": "Atlantic",
    "Lyn": "Atlantic", "Ork": "Atlantic", "Pad": "Atlantic", "Pem": "Atlantic",
    "She": "Atlantic", "Sbs": "Atlantic", "Sul": "Atlantic", "Jer": "Atlantic",
    "Idr": "Atlantic", "Cor": "Atlantic", "Hoo": "Atlantic", "Kil": "Atlantic",
    "Mul": "Atlantic", "Ven": "Atlantic",
    # Scandinavia
    "Hel": "Scandinavia", "Oos": "Scandinavia", "Tro": "Scandinavia",
    "Ber": "Scandinavia", "Flo": "Scandinavia", "Sin": "Scandinavia",
    "Gul": "Scandinavia", "Kav": "Scandinavia", "Lys": "Scandinavia",
}


class UnknownSiteError(ValueError):
    """Site code missing from the region table."""


def region_for_site(code):
    key = str(code).strip()[:3]
    try:
        return SITE_REGIONS[key]
    except KeyError:
        raise UnknownSiteError(f"No region defined for site code {code!r}") from None

def assign_regions(sites):
    labels = [region_for_site(s) for s in sites]
    return pd.Series(pd.Categorical(labels, categories=REGION_ORDER, ordered=True),
                     index=pd.Index(sites, name="site"), name="region")


# =============================================================================
# Plot style
# =============================================================================

def set_style():
    plt.rcParams.update({
        "font.size": 11.5,
        "axes.titlesize": 13,
        "axes.labelsize": 11.5,
        "xtick.labelsize": 10.5,
        "ytick.labelsize": 10.5,
        "legend.fontsize": 12,
        "figure.titlesize": 15,
        "axes.linewidth": 1.0,
        "pdf.fonttype": 42,
        "ps.fonttype": 42,
    })


# =============================================================================
# Load and prepare data
# =============================================================================

def ensure_dirs(out_dir):
    fig_dir = os.path.join(out_dir, "figures")
    tab_dir = os.path.join(out_dir, "tables")
    os.makedirs(fig_dir, exist_ok=True)
    os.makedirs(tab_dir, exist_ok=True)
    return fig_dir, tab_dir

def read_site_table(path):
    """CSV with a header row and site labels in the first column; all cells numeric."""
    df = pd.read_csv(path, index_col=0)
    df.index = df.index.astype(str).str.strip()
    df.index.name = "site"
    name = os.path.basename(path)

    dup = df.index[df.index.duplicated()].unique().tolist()
    if dup:
        raise ValueError(f"{name}: duplicated site labels {dup}")

    num = df.apply(pd.to_numeric, errors="coerce")
    bad_cols = num.columns[(num.isna() & df.notna()).any()].tolist()
    if bad_cols:
        raise ValueError(f"{name}: non-numeric values in columns {bad_cols[:10]}")
    if num.isna().any().any():
        raise ValueError(f"{name}: missing values in columns {num.columns[num.isna().any()].tolist()[:10]}")
    return num

def check_site_alignment(tables):
    """
    Verify that every table holds the same set of site labels as the first one.
    Tables are returned reindexed to the order of the first table.
    """
    names = list(tables)
    ref = tables[names[0]].index
    problems = []
    for name in names[1:]:
        idx = tables[name].index
        missing = sorted(set(ref) - set(idx))
        extra = sorted(set(idx) - set(ref))
        if missing or extra:
            problems.append(f"{name}: missing {missing}, unexpected {extra}")
    if problems:
        raise SiteMismatchError(f"Site labels differ from {names[0]}: " + "; ".join(problems))
    return {name: df.loc[ref] for name, df in tables.items()}

def drop_invariant_loci(Y):
    sd = Y.std(axis=0, ddof=1)
    invariant = sd.index[~(sd > 1e-12)].tolist()
    if invariant:
        print(f"Dropping {len(invariant)} invariant loci (cannot be standardised): {invariant[:10]}")
    return Y.drop(columns=invariant)

def load_inputs(allele_csv, dbmem_csv, env_csv, coords_csv=None):
    allele_freqs = read_site_table(allele_csv)
    env = read_site_table(env_csv)

    if os.path.exists(dbmem_csv):
        mems = read_site_table(dbmem_csv)
    elif coords_csv is not None and os.path.exists(coords_csv):
        print(f"dbMEM file not found; computing dbMEMs from {coords_csv}")
        mems = dbmem(read_site_table(coords_csv))
    else:
        raise FileNotFoundError(f"Neither {dbmem_csv} nor a site coordinate file is available.")

    aligned = check_site_alignment({
        "allele_freqs": allele_freqs,
        "dbmems": mems,
        "environment": env,
    })
    Y = drop_invariant_loci(aligned["allele_freqs"])
    return Y, aligned["dbmems"], aligned["environment"]


# =============================================================================
# Figures
# =============================================================================

def heatmap_with_text(ax, mat, vmin=-1.0, vmax=1.0, fmt="{:+.2f}", light_above=0.6):
    im = ax.imshow(mat, aspect="auto", vmin=vmin, vmax=vmax, cmap="RdBu_r")
    for i in range(mat.shape[0]):
        for j in range(mat.shape[1]):
            if np.isfinite(mat[i, j]):
                ax.text(j, i, fmt.format(mat[i, j]), ha="center", va="center",
                        fontsize=9.5, color="white" if abs(mat[i, j]) > light_above else "black")
    return im

def plot_correlation_matrix(corr, path, title):
    fig, ax = plt.subplots(figsize=(1.1 * len(corr) + 3, 1.0 * len(corr) + 2))
    try:
        im = heatmap_with_text(ax, corr.to_numpy(float))
        ax.set_xticks(np.arange(len(corr.columns)))
        ax.set_xticklabels(corr.columns, rotation=45, ha="right")
        ax.set_yticks(np.arange(len(corr.index)))
        ax.set_yticklabels(corr.index)
        ax.set_title(title)
        fig.colorbar(im, ax=ax, fraction=0.046, pad=0.03, label="Pearson r")
        fig.tight_layout()
        fig.savefig(path, dpi=200)
    finally:
        plt.close(fig)
    return path

def _unconstrained_site_scores(result, scaling):
    """First unconstrained (PC1) site scores, used when a model has a single constrained axis."""
    resid = result.Yr - result.Qx @ (result.Qx.T @ result.Yr)
    U, s, _ = np.linalg.svd(resid, full_matrices=False)
    slam = s[0] / np.sqrt(result.tot_chi)
    scal = {1: slam, 2: 1.0, 3: np.sqrt(slam)}[scaling]
    const = np.sqrt(np.sqrt((result.n - 1) * result.tot_chi))
    return U[:, 0] * scal * const

def _arrow_multiplier(xy, arrows, fill=0.75):
    """Stretch biplot arrows to fill a fraction of the site-score extent."""
    lims = np.array([min(xy[:, 0].min(), 0), max(xy[:, 0].max(), 0),
                     min(xy[:, 1].min(), 0), max(xy[:, 1].max(), 0)])
    reach = np.array([arrows[:, 0].min(), arrows[:, 0].max(),
                      arrows[:, 1].min(), arrows[:, 1].max()])
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = lims / reach
    ratio = ratio[np.isfinite(ratio) & (ratio > 0)]
    return fill * ratio.min() if ratio.size else 1.0

def plot_rda_biplot(result, regions, path, title, figsize=(8, 7), legend_loc="lower left",
                    label_sites=False, scaling=PLOT_SCALING, dpi=FIG_DPI):
    sites = result.scores("sites", scaling=scaling)
    bp = result.scores("bp", scaling=scaling)
    if sites.shape[1] >= 2:
        xy = sites.iloc[:, :2].to_numpy(float)
        arrows = bp.iloc[:, :2].to_numpy(float)
        xlab, ylab = sites.columns[0], sites.columns[1]
    else:
        xy = np.column_stack([sites.iloc[:, 0].to_numpy(float), _unconstrained_site_scores(result, scaling)])
        arrows = np.column_stack([bp.iloc[:, 0].to_numpy(float), np.zeros(len(bp))])
        xlab, ylab = sites.columns[0], "PC1"

    region_codes = regions.reindex(sites.index).cat.codes.to_numpy()
    face = [REGION_COLORS[c] for c in region_codes]
    mul = _arrow_multiplier(xy, arrows)

    fig, ax = plt.subplots(figsize=figsize)
    try:
        ax.axhline(0, color="grey", lw=0.8, ls="--", zorder=0)
        ax.axvline(0, color="grey", lw=0.8, ls="--", zorder=0)

        ax.scatter(xy[:, 0], xy[:, 1], s=110, c=face, edgecolor="black", linewidth=0.8, zorder=3)
        if label_sites:
            for (x, y), name in zip(xy, sites.index):
                ax.annotate(name, (x, y), xytext=(6, 0), textcoords="offset points",
                            ha="left", va="center", fontsize=9, fontweight="bold")

        for (bx, by), name in zip(arrows * mul, bp.index):
            ax.annotate("", xy=(bx, by), xytext=(0, 0),
                        arrowprops=dict(arrowstyle="-|>", lw=1.6, color="red"), zorder=4)
            ax.text(bx * 1.08, by * 1.08, name, color="red", ha="center", va="center", fontsize=11, zorder=5)

        handles = [Line2D([0], [0], marker="o", linestyle="none", markersize=10,
                          markerfacecolor=REGION_COLORS[i], markeredgecolor="black", label=r)
                   for i, r in enumerate(REGION_ORDER)]
        ax.legend(handles=handles, loc=legend_loc, frameon=False)

        ax.set_xlabel(xlab)
        ax.set_ylabel(ylab)
        ax.set_title(title, pad=22)
        ax.text(0.5, 1.01, f"$R^2$ = {result.adj_r_squared:.3f}", transform=ax.transAxes,
                ha="center", va="bottom", fontsize=12, fontstyle="italic")

        fig.tight_layout()
        fig.savefig(path, dpi=dpi)
    finally:
        plt.close(fig)
    return path

def plot_screeplot(result, path, title):
    eig = result.eig
    fig, ax = plt.subplots(figsize=(7, 5))
    try:
        ax.bar(np.arange(len(eig)), eig, color="0.6", edgecolor="black")
        ax.plot(np.arange(len(eig)), eig, marker="o", color="black")
        ax.set_xticks(np.arange(len(eig)))
        ax.set_xticklabels(result.axis_names)
        ax.set_ylabel("Eigenvalue (constrained inertia)")
        ax.set_title(title)
        ax.grid(True, axis="y", alpha=0.20)
        fig.tight_layout()
        fig.savefig(path, dpi=200)
    finally:
        plt.close(fig)
    return path

def plot_loading_histogram(loadings, path, axis_name, z=OUTLIER_Z):
    x = loadings.to_numpy(float)
    mu, sd = x.mean(), x.std(ddof=1)
    fig, ax = plt.subplots(figsize=(7, 5))
    try:
        ax.hist(x, bins=40, color="0.7", edgecolor="black")
        for lim in (mu - z * sd, mu + z * sd):
            ax.axvline(lim, color="red", ls="--", lw=1.2)
        ax.set_xlabel(f"Loading on {axis_name}")
        ax.set_ylabel("Number of SNPs")
        ax.set_title(f"SNP loadings on {axis_name}")
        fig.tight_layout()
        fig.savefig(path, dpi=200)
    finally:
        plt.close(fig)
    return path


# =============================================================================
# Model summaries
# =============================================================================

def summarize_model(result, label, n_perm, rng, tab_dir, vif_threshold=VIF_THRESHOLD, model_alpha=MODEL_ALPHA):
    print(f"\n--- {label}: {len(result.predictors)} constraints, {len(result.conditions)} conditions ---")
    inertia = inertia_table(result)
    print(inertia.round(4).to_string())
    print(f"R2={result.r_squared:.4f}  AdjR2={result.adj_r_squared:.4f}")

    vif = vif_table(result)
    check_vif(vif, threshold=vif_threshold)
    print("VIF:", ", ".join(f"{k}={v:.2f}" for k, v in vif.items()))

    tab_global = anova_global(result, n_perm, rng)
    tab_margin = anova_by_margin(result, n_perm, rng)
    tab_axis = anova_by_axis(result, n_perm, rng)
    eigs = eigenvalue_summary(result)

    p_model = float(tab_global.loc["Model", "Pr(>F)"])
    significant = p_model < model_alpha
    print(f"Global test ({n_perm} permutations): F={tab_global.loc['Model', 'F']:.3f}, p={p_model:.4f}"
          f" -> {'significant' if significant else 'not significant'} at {model_alpha}")
    print("By margin:\n" + tab_margin.round(4).to_string())
    print("By axis:\n" + tab_axis.round(4).to_string())

    inertia.to_csv(os.path.join(tab_dir, f"{label}_inertia.csv"))
    vif.to_csv(os.path.join(tab_dir, f"{label}_vif.csv"))
    tab_global.to_csv(os.path.join(tab_dir, f"{label}_anova_global.csv"))
    tab_margin.to_csv(os.path.join(tab_dir, f"{label}_anova_margin.csv"))
    tab_axis.to_csv(os.path.join(tab_dir, f"{label}_anova_axis.csv"))
    eigs.to_csv(os.path.join(tab_dir, f"{label}_eigenvalues.csv"))

    return {
        "inertia": inertia, "vif": vif, "eigenvalues": eigs,
        "anova_global": tab_global, "anova_margin": tab_margin, "anova_axis": tab_axis,
        "summary": {
            "model": label, "n_sites": result.n, "n_loci": len(result.loci),
            "constraints": ";".join(result.predictors), "conditions": ";".join(result.conditions),
            "R2": result.r_squared, "AdjR2": result.adj_r_squared,
            "F": float(tab_global.loc["Model", "F"]), "p_value": p_model, "significant": significant,
        },
    }


# =============================================================================
# Pipeline stages
# =============================================================================

def screen_environment(env_raw, exclude, threshold, fig_dir, tab_dir):
    """Report collinear pairs, drop the configured variables, plot both correlation matrices."""
    corr_raw, pairs_raw = correlation_screen(env_raw, threshold=threshold)
    pairs_raw.to_csv(os.path.join(tab_dir, "env_collinear_pairs.csv"), index=False)
    plot_correlation_matrix(corr_raw, os.path.join(fig_dir, "env_correlations_all.png"),
                            "Environmental variables (all)")
    if len(pairs_raw):
        print(f"Pairs with |r| > {threshold}:\n" + pairs_raw.round(3).to_string(index=False))

    env = drop_collinear(env_raw, exclude)
    corr_kept, pairs_kept = correlation_screen(env, threshold=threshold)
    plot_correlation_matrix(corr_kept, os.path.join(fig_dir, "env_correlations_kept.png"),
                            "Environmental variables (after exclusion)")
    print(f"Excluded: {list(exclude)}  kept: {list(env.columns)}")
    if len(pairs_kept):
        print(f"Note: {len(pairs_kept)} kept pair(s) still exceed |r| > {threshold}")
    return env, pairs_raw

def select_predictors(Y, env, mems, alpha, n_perm, rng, adj_r2_thresh, tab_dir):
    env_sel = forward_selection(Y, env, alpha=alpha, n_perm=n_perm, rng=rng, adj_r2_thresh=adj_r2_thresh)
    mem_sel = forward_selection(Y, mems, alpha=alpha, n_perm=n_perm, rng=rng, adj_r2_thresh=adj_r2_thresh)
    env_sel.to_csv(os.path.join(tab_dir, "forward_selection_env.csv"), index=False)
    mem_sel.to_csv(os.path.join(tab_dir, "forward_selection_dbmem.csv"), index=False)
    print("Forward selection (environment):\n" + (env_sel.round(4).to_string(index=False) if len(env_sel) else "  none"))
    print("Forward selection (dbMEM):\n" + (mem_sel.round(4).to_string(index=False) if len(mem_sel) else "  none"))
    return env_sel, mem_sel

def candidate_snps(result, axis_table, fig_dir, tab_dir, model_alpha=MODEL_ALPHA, outlier_z=OUTLIER_Z):
    """
    Loadings (species scores, scaling LOADING_SCALING) of every axis with
    p < model_alpha, and the loci beyond mean +/- outlier_z sd on each of them.
    """
    axis_p = axis_table["Pr(>F)"]
    sig_axes = [a for a in result.axis_names if axis_p[a] < model_alpha]
    loadings = result.scores("species", scaling=LOADING_SCALING)
    loadings.index.name = "SNP_ID"
    loadings.to_csv(os.path.join(tab_dir, "partial_rda_snp_loadings.csv"))

    rows = []
    for axis_name in sig_axes:
        plot_loading_histogram(loadings[axis_name], os.path.join(fig_dir, f"snp_loadings_{axis_name}.png"),
                               axis_name, z=outlier_z)
        for snp, val in outlier_loci(loadings[axis_name], z=outlier_z).items():
            rows.append({"SNP_ID": snp, "axis": axis_name, "loading": float(val)})
    candidates = pd.DataFrame(rows, columns=["SNP_ID", "axis", "loading"])
    candidates.to_csv(os.path.join(tab_dir, "candidate_snps.csv"), index=False)

    if sig_axes:
        print(f"\nSignificant axes (p < {model_alpha}): {sig_axes}")
        print(f"Candidate SNPs (|loading - mean| > {outlier_z} sd): n={len(candidates)}")
        if len(candidates):
            print(candidates.round(4).to_string(index=False))
    else:
        print(f"\nNo partial-RDA axis significant at {model_alpha}; no candidate SNPs reported.")
    return sig_axes, loadings, candidates


# =============================================================================
# Pipeline
# =============================================================================

def run_pipeline(allele_csv=ALLELE_FREQ_CSV, dbmem_csv=DBMEM_CSV, env_csv=ENV_CSV,
                 coords_csv=SITE_COORDS_CSV, out_dir=OUT_DIR, seed=RANDOM_SEED,
                 exclude_env_vars=EXCLUDE_ENV_VARS, collinearity_threshold=COLLINEARITY_THRESHOLD,
                 alpha=FORWARD_SEL_ALPHA, n_perm_forward=N_PERM_FORWARD, adj_r2_thresh=FORWARD_SEL_ADJ_R2_THRESH,
                 n_perm_anova=N_PERM_ANOVA,
                 model_alpha=MODEL_ALPHA, vif_threshold=VIF_THRESHOLD, outlier_z=OUTLIER_Z):
    fig_dir, tab_dir = ensure_dirs(out_dir)
    set_style()
    rng = np.random.default_rng(seed)

    # Load and align inputs; region labels are checked before any fit
    Y, mems, env_raw = load_inputs(allele_csv, dbmem_csv, env_csv, coords_csv)
    regions = assign_regions(Y.index)
    print(f"Sites: n={Y.shape[0]}  loci: n={Y.shape[1]}  dbMEMs: {mems.shape[1]}  env variables: {env_raw.shape[1]}")

    env, pairs_raw = screen_environment(env_raw, exclude_env_vars, collinearity_threshold, fig_dir, tab_dir)
    env_sel, mem_sel = select_predictors(Y, env, mems, alpha, n_perm_forward, rng, adj_r2_thresh, tab_dir)

    env_vars = require_predictors(env_sel, "environmental")
    mem_vars = list(mem_sel["variables"])
    if not mem_vars:
        print("No dbMEM retained; the partial model has no conditioning variables.")

    # RDA with all retained predictors
    rda_full = fit_rda(Y, pd.concat([env[env_vars], mems[mem_vars]], axis=1), scale=True)
    full_stats = summarize_model(rda_full, "rda", n_perm_anova, rng, tab_dir,
                                 vif_threshold=vif_threshold, model_alpha=model_alpha)
    fig_rda = plot_rda_biplot(rda_full, regions, os.path.join(fig_dir, "rda.png"),
                              "Seascape redundancy analysis", figsize=(8, 7), legend_loc="lower left")
    plot_screeplot(rda_full, os.path.join(fig_dir, "rda_screeplot.png"), "Constrained eigenvalues (RDA)")

    # Partial RDA: environment conditioned on space
    rda_part = fit_rda(Y, env[env_vars], mems[mem_vars] if mem_vars else None, scale=True)
    part_stats = summarize_model(rda_part, "partial_rda", n_perm_anova, rng, tab_dir,
                                 vif_threshold=vif_threshold, model_alpha=model_alpha)
    fig_prda = plot_rda_biplot(rda_part, regions, os.path.join(fig_dir, "partial_rda.png"),
                               "Seascape partial redundancy analysis", figsize=(9, 7),
                               legend_loc="upper left", label_sites=True)

    pd.DataFrame([full_stats["summary"], part_stats["summary"]]).to_csv(
        os.path.join(tab_dir, "model_summary.csv"), index=False)

    sig_axes, loadings, candidates = candidate_snps(rda_part, part_stats["anova_axis"], fig_dir, tab_dir,
                                                    model_alpha=model_alpha, outlier_z=outlier_z)

    print("Saved RDA figure:", fig_rda)
    print("Saved partial RDA figure:", fig_prda)
    print("Saved tables to:", tab_dir)

    return {
        "Y": Y, "dbmems": mems, "environment": env, "regions": regions,
        "collinear_pairs": pairs_raw,
        "env_selection": env_sel, "dbmem_selection": mem_sel,
        "rda": rda_full, "rda_stats": full_stats,
        "partial_rda": rda_part, "partial_rda_stats": part_stats,
        "significant_axes": sig_axes, "loadings": loadings, "candidates": candidates,
    }


# =============================================================================
# Main execution
# =============================================================================

def main():
    run_pipeline()


if __name__ == "__main__":
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=FutureWarning)
        warnings.simplefilter("always", category=HighVIFWarning)
        main()
