# visualization.py
"""
Diagnostic figures for the spectral clustering pipeline.
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .affinity import rbf_kernel
from .config import FIGURES_DIR, FIGURE_DPI, FIGURE_FORMAT, FIGSIZE_STANDARD, FIGSIZE_WIDE
from .distance import upper_triangle


def _save(fig, stem, figures_dir=None):
    """Save figure in all configured formats; returns the written paths."""
    figures_dir = Path(figures_dir or FIGURES_DIR)
    figures_dir.mkdir(parents=True, exist_ok=True)
    paths = []
    for fmt in FIGURE_FORMAT:
        path = figures_dir / f"{stem}.{fmt}"
        fig.savefig(path, dpi=FIGURE_DPI, bbox_inches="tight")
        paths.append(path)
    plt.close(fig)
    return paths


# ── Distances and bandwidth ───────────────────────────────────────────────────

def plot_distance_distribution(D, figures_dir=None):
    """Histogram of pairwise Mahalanobis distances with the median marked."""
    distances = upper_triangle(D)
    median = np.median(distances)

    fig, ax = plt.subplots(figsize=FIGSIZE_STANDARD)
    ax.hist(distances, bins=50, color="steelblue", alpha=0.7)
    ax.axvline(median, color="red", ls="--", lw=1, label=f"Median = {median:.2f}")
    ax.set_xlabel("Distance")
    ax.set_ylabel("Count")
    ax.set_title("Distribution of Mahalanobis distances")
    ax.legend()
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return _save(fig, "distance_distribution", figures_dir)


def plot_sigma_effect(D, sweep: pd.DataFrame, figures_dir=None):
    """Affinity densities for each bandwidth in a sigma sweep."""
    distances = upper_triangle(D)

    fig, ax = plt.subplots(figsize=FIGSIZE_WIDE)
    palette = sns.color_palette("viridis", len(sweep))
    for color, (_, row) in zip(palette, sweep.iterrows()):
        aff = rbf_kernel(distances, row["sigma"])
        label = (f"σ = {row['sigma']:.2f} ({row['multiplier']:.1f}x) "
                 f"[{row['min_affinity']:.3f}-{row['max_affinity']:.3f}]")
        if np.ptp(aff) > 0:
            sns.kdeplot(x=aff, ax=ax, color=color, fill=True, alpha=0.3, label=label)
        else:
            ax.axvline(aff[0], color=color, label=label)
    ax.set_xlabel("Affinity")
    ax.set_ylabel("Density")
    ax.set_title("Affinity distribution by RBF bandwidth")
    ax.legend(fontsize=8)
    fig.tight_layout()
    return _save(fig, "affinity_distributions", figures_dir)


# ── Spectrum ──────────────────────────────────────────────────────────────────

def plot_eigen_spectrum(eigenvalues, selection, n_show=None, figures_dir=None):
    """Leading Laplacian eigenvalues and their gaps, with the chosen k."""
    values = np.sort(np.asarray(eigenvalues))[1:]
    n_show = min(n_show or max(2 * selection.k, 30), values.size)
    positions = np.arange(1, n_show + 1)
    gaps = np.diff(values[:n_show + 1])[:n_show]

    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=FIGSIZE_WIDE)
    ax1.plot(positions, values[:n_show], "o-", color="#2c7bb6", ms=4)
    ax1.axvline(selection.k, color="red", ls="--", lw=0.8, label=f"k = {selection.k}")
    ax1.set_xlabel("Position (trivial eigenvalue removed)")
    ax1.set_ylabel("Eigenvalue")
    ax1.set_title("Normalized Laplacian spectrum")
    ax1.legend()
    ax1.grid(True, alpha=0.3)

    ax2.bar(positions[:gaps.size], gaps, color="#d7191c", alpha=0.7)
    if selection.gap_position is not None and selection.gap_position <= n_show:
        ax2.axvline(selection.gap_position, color="k", ls=":", lw=0.8,
                    label=f"largest gap = {selection.gap_position}")
        ax2.legend()
    ax2.set_xlabel("Position")
    ax2.set_ylabel("Gap to next eigenvalue")
    ax2.set_title("Spectral gaps")
    ax2.grid(True, alpha=0.3)

    fig.tight_layout()
    return _save(fig, "eigen_spectrum", figures_dir)


# ── Cluster-count diagnostics ─────────────────────────────────────────────────

def plot_k_selection(metrics: pd.DataFrame, gap_table: pd.DataFrame = None,
                     selected_k=None, figures_dir=None):
    """Elbow, silhouette, Calinski-Harabasz (and gap statistic) vs k."""
    panels = [("wcss", "Within-cluster sum of squares", "Elbow method", "steelblue"),
              ("silhouette", "Average silhouette width", "Silhouette analysis", "darkgreen"),
              ("calinski_harabasz", "Calinski-Harabasz index", "Calinski-Harabasz", "darkorange")]
    n_panels = len(panels) + (gap_table is not None)

    fig, axes = plt.subplots(1, n_panels, figsize=(5 * n_panels, 5))
    for ax, (col, ylabel, title, color) in zip(axes, panels):
        data = metrics.dropna(subset=[col])
        ax.plot(data["k"], data[col], "o-", color=color)
        ax.set_xlabel("Number of clusters (k)")
        ax.set_ylabel(ylabel)
        ax.set_title(title)
        ax.grid(True, alpha=0.3)

    if gap_table is not None:
        ax = axes[-1]
        ax.errorbar(gap_table["k"], gap_table["gap"], yerr=gap_table["gap_se"],
                    fmt="o-", color="purple", capsize=3)
        ax.set_xlabel("Number of clusters (k)")
        ax.set_ylabel("Gap statistic")
        ax.set_title("Gap statistic")
        ax.grid(True, alpha=0.3)

    if selected_k is not None:
        for ax in axes:
            ax.axvline(selected_k, color="red", ls="--", lw=0.8)

    fig.tight_layout()
    return _save(fig, "k_selection", figures_dir)
