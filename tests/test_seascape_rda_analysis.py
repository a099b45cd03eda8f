import os
import sys

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import seascape_rda_analysis as analysis
from seascape_rda import NoSignificantPredictorsError, SiteMismatchError, fit_rda


SITES = list(analysis.SITE_REGIONS)


def _write_inputs(tmp_path, seed=7, informative=True, n_loci=40):
    rng = np.random.default_rng(seed)
    n = len(SITES)
    temp = rng.normal(size=n)
    sal = rng.normal(size=n)
    env = pd.DataFrame({
        "sst_mean": temp + 0.05 * rng.normal(size=n),
        "sbt_mean": temp,
        "sss_mean": sal,
    }, index=pd.Index(SITES, name="site"))
    mems = pd.DataFrame(rng.normal(size=(n, 2)), index=env.index, columns=["MEM1", "MEM2"])

    if informative:
        up = np.linspace(0.5, 1.5, n_loci)
        down = np.linspace(1.5, 0.5, n_loci)
        signal = (np.outer(temp, up) + np.outer(sal, down)
                  + np.outer(mems["MEM1"], down) + np.outer(mems["MEM2"], up))
        freqs = 0.5 + 0.04 * signal + 0.02 * rng.normal(size=(n, n_loci))
    else:
        freqs = 0.5 + 0.05 * rng.normal(size=(n, n_loci))
    Y = pd.DataFrame(freqs, index=env.index, columns=[f"snp{j:03d}" for j in range(n_loci)])
    Y["snp_fixed"] = 0.5

    paths = {
        "allele_csv": str(tmp_path / "allele_freqs.csv"),
        "dbmem_csv": str(tmp_path / "dbmems.csv"),
        "env_csv": str(tmp_path / "environmental_data.csv"),
    }
    Y.to_csv(paths["allele_csv"])
    mems.to_csv(paths["dbmem_csv"])
    env.to_csv(paths["env_csv"])
    return paths


def _run(tmp_path, paths, **kwargs):
    opts = dict(
        coords_csv=None, out_dir=str(tmp_path / "out"), seed=123,
        exclude_env_vars=["sst_mean"], alpha=0.05, n_perm_forward=99, n_perm_anova=49,
    )
    opts.update(kwargs)
    return analysis.run_pipeline(**paths, **opts)


def test_every_site_code_has_a_region():
    counts = pd.Series([analysis.region_for_site(code) for code in SITES]).value_counts()

    assert len(SITES) == 37
    assert set(counts.index) == set(analysis.REGION_ORDER)
    assert counts["Atlantic"] == 22
    assert counts["Scandinavia"] == 9
    assert counts["Aegean Sea"] == 4
    assert counts["Central Mediterranean"] == 2


def test_unknown_site_code_raises():
    with pytest.raises(analysis.UnknownSiteError):
        analysis.region_for_site("Xyz")
    with pytest.raises(analysis.UnknownSiteError):
        analysis.assign_regions(["Ale", "Xyz"])


def test_assign_regions_is_ordered_categorical():
    regions = analysis.assign_regions(["Hel", "Sar", "Vig", "Ale"])

    assert list(regions.cat.categories) == analysis.REGION_ORDER
    assert regions.cat.ordered
    assert list(regions) == ["Scandinavia", "Central Mediterranean", "Atlantic", "Aegean Sea"]
    assert regions.sort_values().index[0] == "Hel"


def test_site_alignment_reorders_by_label():
    a = pd.DataFrame({"x": [1.0, 2.0, 3.0]}, index=["Ale", "Hel", "Vig"])
    b = pd.DataFrame({"y": [30.0, 10.0, 20.0]}, index=["Vig", "Ale", "Hel"])

    aligned = analysis.check_site_alignment({"a": a, "b": b})

    assert list(aligned["b"].index) == ["Ale", "Hel", "Vig"]
    assert list(aligned["b"]["y"]) == [10.0, 20.0, 30.0]


def test_site_alignment_mismatch_raises():
    a = pd.DataFrame({"x": [1.0, 2.0]}, index=["Ale", "Hel"])
    b = pd.DataFrame({"y": [1.0, 2.0]}, index=["Ale", "Vig"])

    with pytest.raises(SiteMismatchError, match="Vig"):
        analysis.check_site_alignment({"a": a, "b": b})


def test_read_site_table_rejects_duplicates_and_text(tmp_path):
    dup = tmp_path / "dup.csv"
    dup.write_text("site,x\nAle,1\nAle,2\n")
    text = tmp_path / "text.csv"
    text.write_text("site,x\nAle,1\nHel,abc\n")

    with pytest.raises(ValueError, match="duplicated"):
        analysis.read_site_table(str(dup))
    with pytest.raises(ValueError, match="non-numeric"):
        analysis.read_site_table(str(text))


def test_invariant_loci_are_dropped():
    Y = pd.DataFrame({"a": [0.1, 0.2, 0.3], "b": [0.5, 0.5, 0.5]})

    assert list(analysis.drop_invariant_loci(Y).columns) == ["a"]


def test_load_inputs_computes_dbmems_from_coordinates(tmp_path):
    paths = _write_inputs(tmp_path)
    rng = np.random.default_rng(0)
    coords = pd.DataFrame({"lat": rng.uniform(35, 65, len(SITES)), "lon": rng.uniform(-10, 30, len(SITES))},
                          index=pd.Index(SITES, name="site"))
    coords_csv = str(tmp_path / "site_coordinates.csv")
    coords.to_csv(coords_csv)

    Y, mems, env = analysis.load_inputs(paths["allele_csv"], str(tmp_path / "missing.csv"),
                                        paths["env_csv"], coords_csv)

    assert list(mems.index) == list(Y.index) == list(env.index)
    assert mems.columns[0] == "MEM1"
    assert "snp_fixed" not in Y.columns


def test_load_inputs_without_any_spatial_input_raises(tmp_path):
    paths = _write_inputs(tmp_path)

    with pytest.raises(FileNotFoundError):
        analysis.load_inputs(paths["allele_csv"], str(tmp_path / "missing.csv"), paths["env_csv"], None)


def test_pipeline_end_to_end(tmp_path):
    paths = _write_inputs(tmp_path)

    res = _run(tmp_path, paths)

    fig_dir = tmp_path / "out" / "figures"
    tab_dir = tmp_path / "out" / "tables"
    assert (fig_dir / "rda.png").exists()
    assert (fig_dir / "partial_rda.png").exists()
    assert (fig_dir / "rda_screeplot.png").exists()
    assert (fig_dir / "env_correlations_all.png").exists()

    env_vars = set(res["env_selection"]["variables"])
    assert env_vars and env_vars <= {"sbt_mean", "sss_mean"}
    assert "sst_mean" not in res["environment"].columns
    pair = res["collinear_pairs"].iloc[0]
    assert {pair["var1"], pair["var2"]} == {"sst_mean", "sbt_mean"}

    assert "snp_fixed" not in res["Y"].columns
    assert res["partial_rda"].adj_r_squared <= res["rda"].adj_r_squared
    assert res["rda_stats"]["summary"]["significant"]

    candidates = pd.read_csv(tab_dir / "candidate_snps.csv")
    assert list(candidates.columns) == ["SNP_ID", "axis", "loading"]
    assert set(candidates["axis"]) <= set(res["significant_axes"])
    assert len(pd.read_csv(tab_dir / "model_summary.csv")) == 2
    assert list(pd.read_csv(tab_dir / "rda_anova_global.csv")["term"]) == ["Model", "Residual"]

    img = plt.imread(str(fig_dir / "rda.png"))
    assert img.shape[:2] == (7 * 600, 8 * 600)


def test_pipeline_is_reproducible(tmp_path):
    paths = _write_inputs(tmp_path)

    first = _run(tmp_path, paths, out_dir=str(tmp_path / "out1"))
    second = _run(tmp_path, paths, out_dir=str(tmp_path / "out2"))

    pd.testing.assert_frame_equal(first["env_selection"], second["env_selection"])
    pd.testing.assert_frame_equal(first["partial_rda_stats"]["anova_axis"],
                                  second["partial_rda_stats"]["anova_axis"])


def test_pipeline_without_significant_predictors_raises(tmp_path):
    paths = _write_inputs(tmp_path, informative=False)

    with pytest.raises(NoSignificantPredictorsError):
        _run(tmp_path, paths, alpha=0.01, n_perm_forward=49)

    assert not (tmp_path / "out" / "figures" / "rda.png").exists()


def test_pipeline_with_misaligned_sites_raises(tmp_path):
    paths = _write_inputs(tmp_path)
    env = pd.read_csv(paths["env_csv"], index_col=0)
    env.iloc[1:].to_csv(paths["env_csv"])

    with pytest.raises(SiteMismatchError):
        _run(tmp_path, paths)

    assert not (tmp_path / "out" / "figures" / "rda.png").exists()


def _one_axis_partial_model(seed=5, n_loci=30):
    rng = np.random.default_rng(seed)
    n = len(SITES)
    env = pd.DataFrame({"sbt_mean": rng.normal(size=n)}, index=pd.Index(SITES, name="site"))
    mems = pd.DataFrame({"MEM1": rng.normal(size=n)}, index=env.index)
    Y = pd.DataFrame(
        0.5 + 0.04 * np.outer(env["sbt_mean"], np.linspace(0.5, 1.5, n_loci))
        + 0.04 * np.outer(mems["MEM1"], np.linspace(1.5, 0.5, n_loci))
        + 0.02 * rng.normal(size=(n, n_loci)),
        index=env.index, columns=[f"snp{j:03d}" for j in range(n_loci)],
    )
    return fit_rda(Y, env, mems)


def test_single_axis_partial_biplot_is_drawn(tmp_path):
    result = _one_axis_partial_model()
    before = plt.get_fignums()

    path = analysis.plot_rda_biplot(result, analysis.assign_regions(SITES), str(tmp_path / "partial_rda.png"),
                                    "one axis", figsize=(9, 7), legend_loc="upper left", label_sites=True, dpi=50)

    assert result.axis_names == ["RDA1"]
    assert os.path.exists(path)
    assert plt.get_fignums() == before


def test_biplot_closes_figure_when_saving_fails(tmp_path):
    result = _one_axis_partial_model()
    before = plt.get_fignums()

    with pytest.raises(OSError):
        analysis.plot_rda_biplot(result, analysis.assign_regions(SITES),
                                 str(tmp_path / "no_such_dir" / "rda.png"), "unsaved", dpi=50)

    assert plt.get_fignums() == before


def test_screen_environment_drops_configured_variables(tmp_path):
    rng = np.random.default_rng(1)
    temp = rng.normal(size=20)
    env_raw = pd.DataFrame({"sst_mean": temp, "sbt_mean": temp + 0.01 * rng.normal(size=20),
                            "sss_mean": rng.normal(size=20)})

    env, pairs = analysis.screen_environment(env_raw, ["sst_mean"], 0.7, str(tmp_path), str(tmp_path))

    assert list(env.columns) == ["sbt_mean", "sss_mean"]
    assert {pairs.iloc[0]["var1"], pairs.iloc[0]["var2"]} == {"sst_mean", "sbt_mean"}
    assert (tmp_path / "env_collinear_pairs.csv").exists()
    assert (tmp_path / "env_correlations_kept.png").exists()


def test_candidate_snps_only_use_significant_axes(tmp_path):
    paths = _write_inputs(tmp_path)
    Y, mems, env = analysis.load_inputs(paths["allele_csv"], paths["dbmem_csv"], paths["env_csv"])
    result = fit_rda(Y, env[["sbt_mean", "sss_mean"]], mems)
    axis_table = pd.DataFrame({"Pr(>F)": [0.01, 0.5]}, index=result.axis_names)

    sig_axes, loadings, candidates = analysis.candidate_snps(result, axis_table, str(tmp_path), str(tmp_path),
                                                             model_alpha=0.05, outlier_z=1.0)

    assert sig_axes == ["RDA1"]
    assert list(loadings.columns) == ["RDA1", "RDA2"]
    assert len(candidates) > 0
    assert set(candidates["axis"]) == {"RDA1"}
    assert (tmp_path / "snp_loadings_RDA1.png").exists()
    assert not (tmp_path / "snp_loadings_RDA2.png").exists()
    assert list(pd.read_csv(tmp_path / "candidate_snps.csv")["SNP_ID"]) == list(candidates["SNP_ID"])


def test_dbmem_table_without_site_column_is_rejected(tmp_path):
    paths = _write_inputs(tmp_path)
    mems = pd.read_csv(paths["dbmem_csv"], index_col=0)
    mems.to_csv(paths["dbmem_csv"], index=False)

    with pytest.raises(SiteMismatchError):
        analysis.load_inputs(paths["allele_csv"], paths["dbmem_csv"], paths["env_csv"])
