"""
Tests for the entity-clusters command line.

Run: pytest tests/test_cli.py -v
"""

import pandas as pd
import pytest

from entity_clustering.cli import build_parser, main


class TestParser:

    def test_cluster_defaults(self):
        args = build_parser().parse_args(["cluster"])
        assert args.clusters == 18
        assert args.shrinkage == "oas"
        assert args.sigma_multiplier == 0.5
        assert args.seed == 42

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:

    def _cluster(self, feature_csvs, out, *extra):
        return main([
            "cluster",
            "--stats", str(feature_csvs["stats"]),
            "--text", str(feature_csvs["text"]),
            "--image", str(feature_csvs["image"]),
            "--clusters", "2",
            "--restarts", "5",
            "--output", str(out),
            *extra,
        ])

    def test_cluster_then_diagnostics(self, feature_csvs, tmp_path, capsys):
        out = tmp_path / "results"
        figures = tmp_path / "figures"
        assert self._cluster(feature_csvs, out, "--plots", "--figures", str(figures)) == 0
        assert (out / "spectral_clustering_results.csv").exists()
        assert (figures / "eigen_spectrum.png").exists()
        assert "Clustered 4 entities into 2 groups" in capsys.readouterr().out

        assert main(["sigma", "--distances", str(out / "mahalanobis_distance_matrix.pkl"),
                     "--multipliers", "0.5", "1", "--output", str(out)]) == 0
        sweep = pd.read_csv(out / "sigma_sweep.csv")
        assert list(sweep["multiplier"]) == [0.5, 1.0]

        assert main(["find-k", "--embedding", str(out / "spectral_embedding.csv"),
                     "--k-max", "3", "--restarts", "3", "--output", str(out)]) == 0
        metrics = pd.read_csv(out / "clustering_metrics_all.csv")
        assert list(metrics["k"]) == [1, 2, 3]

    def test_stage_error_exit_code(self, tmp_path, capsys):
        paths = []
        for label in ("stats", "text", "image"):
            path = tmp_path / f"{label}.csv"
            pd.DataFrame({"name": ["a", "b", "c"], label: [2.0, 2.0, 2.0]}).to_csv(
                path, index=False)
            paths.append(path)

        code = main(["cluster", "--stats", str(paths[0]), "--text", str(paths[1]),
                     "--image", str(paths[2]), "--clusters", "2",
                     "--shrinkage", "schafer_strimmer", "--output", str(tmp_path / "out")])
        assert code == 1
        assert "affinity:" in capsys.readouterr().err

    def test_missing_input_file(self, tmp_path, capsys):
        code = main(["sigma", "--distances", str(tmp_path / "none.pkl"),
                     "--output", str(tmp_path)])
        assert code == 1
        assert "not found" in capsys.readouterr().err
