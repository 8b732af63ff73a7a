#!/usr/bin/env python3
import argparse
import os

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from generate_statistics import analyze_results_dir

# -------------------------------------------------------------------
# Plotting functions
# -------------------------------------------------------------------

def plot_bar(all_stats, metric, title, ylabel, filename, plot_dir):
    """Mean with the 95th percentile drawn as an error bar, one bar per scenario."""
    scenarios = [s['scenario'] for s in all_stats]
    means = [s[f"{metric}_mean"] for s in all_stats]
    upper = [max(0.0, s[f"{metric}_p95"] - s[f"{metric}_mean"]) for s in all_stats]

    plt.figure(figsize=(8, 5))
    plt.bar(scenarios, means, yerr=[[0] * len(upper), upper], capsize=6, color="steelblue")
    plt.title(title)
    plt.xlabel("Scenario")
    plt.ylabel(ylabel)
    plt.grid(axis="y")
    plt.tight_layout()
    path = os.path.join(plot_dir, filename)
    plt.savefig(path)
    plt.close()
    print(f"Saved: {filename}")
    return path


def generate_all_plots(results_dir="results"):
    print("\n=== Relay Plot Generation ===")
    all_stats = analyze_results_dir(results_dir)
    if not all_stats:
        print("No metrics found, nothing to plot.")
        return []

    plot_dir = os.path.join(results_dir, "plots")
    os.makedirs(plot_dir, exist_ok=True)
    paths = [
        plot_bar(all_stats, "interarrival", "Snapshot Interarrival per Scenario",
                 "Interarrival (ms)", "interarrival_per_scenario.png", plot_dir),
        plot_bar(all_stats, "jitter", "Jitter per Scenario",
                 "Jitter (ms)", "jitter_per_scenario.png", plot_dir),
        plot_bar(all_stats, "error", "Perceived Position Error per Scenario",
                 "Position error (units)", "position_error_per_scenario.png", plot_dir),
    ]
    print(f"\nAll plots saved to: {plot_dir}/\n")
    return paths


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Plot relay client metrics")
    parser.add_argument("--results-dir", default="results")
    generate_all_plots(parser.parse_args().results_dir)
