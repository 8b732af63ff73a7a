#!/usr/bin/env python3
"""
Generate a statistics report for every scenario found in the results directory.
Reports mean, median, 95th percentile and max for snapshot interarrival,
jitter and perceived position error.
"""
import argparse
import glob
import os

import numpy as np
import pandas as pd

METRICS = {
    'interarrival': 'interarrival_ms',
    'jitter': 'jitter_ms',
    'error': 'perceived_position_error',
}
SUMMARY_FIELDS = ['scenario', 'num_clients', 'total_samples'] + [
    f"{name}_{stat}" for name in METRICS for stat in ('mean', 'median', 'p95', 'max')
]


def calculate_statistics(values):
    """Calculate mean, median, 95th percentile and max"""
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        return {'mean': 0.0, 'median': 0.0, 'p95': 0.0, 'max': 0.0}
    return {
        'mean': float(np.mean(values)),
        'median': float(np.median(values)),
        'p95': float(np.percentile(values, 95)),
        'max': float(np.max(values)),
    }


def load_client_metrics(paths):
    frames = []
    for path in paths:
        try:
            df = pd.read_csv(path)
        except (OSError, pd.errors.EmptyDataError) as e:
            print(f"[WARN] Skipping {path}: {e}")
            continue
        if not df.empty:
            frames.append(df)
    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def analyze_scenario(df, scenario_name):
    """Summarize one scenario's rows. The first sample per client has no interarrival and is skipped for it."""
    if df.empty:
        return None
    stats = {
        'scenario': scenario_name,
        'num_clients': int(df['client_id'].nunique()),
        'total_samples': int(len(df)),
    }
    later = df[df['snapshot_seq'] > 1]
    for name, column in METRICS.items():
        source = later if name in ('interarrival', 'jitter') else df
        for stat, value in calculate_statistics(source[column]).items():
            stats[f"{name}_{stat}"] = value
    return stats


def analyze_results_dir(results_dir):
    """Group client_metrics_<scenario>_*.csv files by scenario and summarize each."""
    by_scenario = {}
    for path in sorted(glob.glob(os.path.join(results_dir, 'client_metrics_*.csv'))):
        stem = os.path.basename(path)[len('client_metrics_'):-len('.csv')]
        scenario = stem.rsplit('_', 1)[0] if '_' in stem else stem
        by_scenario.setdefault(scenario, []).append(path)

    all_stats = []
    for scenario, paths in by_scenario.items():
        stats = analyze_scenario(load_client_metrics(paths), scenario)
        if stats:
            all_stats.append(stats)
    return all_stats


def print_statistics(stats):
    print(f"\n{'='*80}")
    print(f"SCENARIO: {stats['scenario'].upper()}")
    print(f"{'='*80}")
    print(f"Clients: {stats['num_clients']}")
    print(f"Total Samples: {stats['total_samples']}")
    print(f"{'-'*80}")
    print(f"{'Metric':<30} {'Mean':>10} {'Median':>10} {'95th %ile':>10} {'Max':>10}")
    print(f"{'-'*80}")
    for label, name in (('Interarrival (ms)', 'interarrival'), ('Jitter (ms)', 'jitter'),
                        ('Position Error (units)', 'error')):
        print(f"{label:<30} {stats[f'{name}_mean']:>10.3f} {stats[f'{name}_median']:>10.3f} "
              f"{stats[f'{name}_p95']:>10.3f} {stats[f'{name}_max']:>10.3f}")
    print(f"{'-'*80}\n")


def save_statistics_csv(all_stats, output_file):
    if not all_stats:
        return
    pd.DataFrame(all_stats, columns=SUMMARY_FIELDS).to_csv(output_file, index=False)
    print(f"Statistics saved to: {output_file}\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Summarize relay client metrics")
    parser.add_argument("--results-dir", default="results")
    args = parser.parse_args(argv)

    all_stats = analyze_results_dir(args.results_dir)
    if not all_stats:
        print("No statistics generated. Check that result files exist.")
        return 1
    for stats in all_stats:
        print_statistics(stats)
    save_statistics_csv(all_stats, os.path.join(args.results_dir, 'statistics_summary.csv'))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
