"""
Command-line front end.

    entity-clusters cluster --output outputs/clustering_results --clusters 18
    entity-clusters find-k --embedding outputs/clustering_results/spectral_embedding.pkl
    entity-clusters sigma --distances outputs/clustering_results/mahalanobis_distance_matrix.pkl
"""

import argparse
import logging
import sys
from pathlib import Path

from . import config
from .affinity import sigma_sweep
from .artifacts import load_artifact, save_artifact
from .clustering import ClusterAnalyzer
from .covariance import SHRINKAGE_METHODS
from .validation import PipelineStageError

logger = logging.getLogger(__name__)


def _configure_logging(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def cmd_cluster(args):
    from .pipeline import run_from_files
    from .visualization import plot_distance_distribution, plot_eigen_spectrum

    result = run_from_files(
        args.output,
        stats_path=args.stats,
        text_path=args.text,
        image_path=args.image,
        n_clusters=args.clusters,
        seed=args.seed,
        n_restarts=args.restarts,
        max_iter=args.max_iter,
        shrinkage_method=args.shrinkage,
        sigma_multiplier=args.sigma_multiplier,
        gap_search_limit=args.gap_search_limit,
        n_jobs=args.jobs,
    )
    if args.plots:
        figures_dir = args.figures or config.FIGURES_DIR
        plot_distance_distribution(result.distances, figures_dir)
        plot_eigen_spectrum(result.embedding.eigenvalues, result.embedding.selection,
                            figures_dir=figures_dir)

    c = result.clusters
    print(f"\nClustered {len(c.labels)} entities into {c.n_clusters} groups "
          f"using {result.embedding.k} spectral dimensions")
    print(f"Between/total variance ratio: {100 * c.between_ratio:.2f}%")
    for msg in result.warnings:
        print(f"  WARNING: {msg}")
    print(f"Results saved to {args.output}")
    return 0


def cmd_find_k(args):
    embedding = load_artifact(args.embedding)
    analyzer = ClusterAnalyzer(embedding, name=Path(args.embedding).stem, seed=args.seed,
                               n_restarts=args.restarts, max_iter=args.max_iter,
                               n_jobs=args.jobs)
    metrics = analyzer.find_optimal_k(args.k_max)
    gap_table = None
    if args.gap_refs:
        gap_table, _ = analyzer.gap_statistic(args.k_max, n_refs=args.gap_refs)
        metrics = metrics.merge(gap_table[["k", "gap", "gap_se"]], on="k")

    save_artifact(metrics.set_index("k"), args.output, "clustering_metrics_all")
    if args.plots:
        from .visualization import plot_k_selection
        plot_k_selection(metrics, gap_table, figures_dir=args.figures or config.FIGURES_DIR)

    if args.stability_runs:
        k = analyzer.results.get("optimal_k_gap", analyzer.results.get("optimal_k_silhouette"))
        if k is not None:
            analyzer.validate_stability(n_clusters=k, n_runs=args.stability_runs)

    print(metrics.to_string(index=False))
    for key in ("optimal_k_gap", "optimal_k_silhouette", "optimal_k_calinski",
                "stability_ari_mean"):
        if key in analyzer.results:
            print(f"  {key}: {analyzer.results[key]}")
    return 0


def cmd_sigma(args):
    distances = load_artifact(args.distances)
    sweep = sigma_sweep(distances, args.multipliers)
    save_artifact(sweep.set_index("multiplier"), args.output, "sigma_sweep")
    if args.plots:
        from .visualization import plot_sigma_effect
        plot_sigma_effect(distances, sweep, figures_dir=args.figures or config.FIGURES_DIR)
    print(sweep.to_string(index=False))
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="entity-clusters",
        description="Spectral clustering of entities over Mahalanobis affinities.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    def common(p):
        p.add_argument("--output", type=Path, default=config.RESULTS_DIR,
                       help="Directory for artifacts.")
        p.add_argument("--plots", action="store_true", help="Write diagnostic figures.")
        p.add_argument("--figures", type=Path, default=None,
                       help="Directory for figures (default: outputs/figures).")

    def kmeans_options(p):
        p.add_argument("--seed", type=int, default=config.RANDOM_SEED)
        p.add_argument("--restarts", type=int, default=config.N_RESTARTS)
        p.add_argument("--max-iter", type=int, default=config.MAX_ITER)
        p.add_argument("--jobs", type=int, default=config.N_JOBS,
                       help="Parallel k-means restarts.")

    p = sub.add_parser("cluster", help="Run the full pipeline on the feature tables.")
    common(p)
    kmeans_options(p)
    p.add_argument("--stats", type=Path, default=config.STATS_FEATURES_FILE)
    p.add_argument("--text", type=Path, default=config.TEXT_FEATURES_FILE)
    p.add_argument("--image", type=Path, default=config.IMAGE_FEATURES_FILE)
    p.add_argument("--clusters", type=int, default=config.N_CLUSTERS)
    p.add_argument("--shrinkage", choices=SHRINKAGE_METHODS, default=config.SHRINKAGE_METHOD)
    p.add_argument("--sigma-multiplier", type=float, default=config.SIGMA_MULTIPLIER)
    p.add_argument("--gap-search-limit", type=int, default=config.GAP_SEARCH_LIMIT)
    p.set_defaults(func=cmd_cluster)

    p = sub.add_parser("find-k", help="Cluster-count diagnostics on a spectral embedding.")
    common(p)
    kmeans_options(p)
    p.add_argument("--embedding", type=Path,
                   default=config.RESULTS_DIR / "spectral_embedding.pkl")
    p.add_argument("--k-max", type=int, default=config.K_MAX)
    p.add_argument("--gap-refs", type=int, default=0,
                   help="Reference datasets for the gap statistic (0 = skip).")
    p.add_argument("--stability-runs", type=int, default=0,
                   help="Single-start runs for the ARI stability check at the suggested k "
                        "(0 = skip).")
    p.set_defaults(func=cmd_find_k)

    p = sub.add_parser("sigma", help="Affinity spread for a range of RBF bandwidths.")
    common(p)
    p.add_argument("--distances", type=Path,
                   default=config.RESULTS_DIR / "mahalanobis_distance_matrix.pkl")
    p.add_argument("--multipliers", type=float, nargs="+",
                   default=list(config.SIGMA_SWEEP_MULTIPLIERS))
    p.set_defaults(func=cmd_sigma)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except PipelineStageError as exc:
        logger.error(f"Pipeline aborted at stage '{exc.stage}': {exc.message}")
        print(f"{exc.stage}: {exc.message}", file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
