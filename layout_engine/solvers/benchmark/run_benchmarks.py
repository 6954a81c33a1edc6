"""
Script to run benchmarks and generate comparison reports.
"""
import argparse
import logging
from pathlib import Path
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from typing import List
from .runner import BenchmarkRunner, BenchmarkResult, DEFAULT_STRATEGY_CONFIGS

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def results_frame(results: List[BenchmarkResult]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            'case': r.case_name,
            'strategy': r.strategy_name,
            'runtime': r.runtime_seconds,
            'iterations': r.iterations,
            'stress': r.stress,
            'edge_crossings': r.edge_crossings,
            'node_overlaps': r.node_overlaps
        }
        for r in results
    ])

def plot_results(results: List[BenchmarkResult], output_dir: Path):
    """Generate visualization plots of benchmark results."""
    if not results:
        logger.warning("No results to plot!")
        return

    df = results_frame(results)

    plots_dir = output_dir / 'plots'
    plots_dir.mkdir(exist_ok=True)

    # Runtime comparison
    plt.figure(figsize=(10, 6))
    sns.boxplot(data=df, x='case', y='runtime', hue='strategy')
    plt.title('Layout Runtime Comparison')
    plt.xticks(rotation=45)
    plt.tight_layout()
    plt.savefig(plots_dir / 'runtime_comparison.png')
    plt.close()

    # Quality metrics
    fig, axes = plt.subplots(1, 3, figsize=(18, 6))
    fig.suptitle('Quality Metrics Comparison')

    sns.boxplot(data=df, x='case', y='stress', hue='strategy', ax=axes[0])
    axes[0].set_title('Edge Length Stress')
    axes[0].tick_params(labelrotation=45)

    sns.boxplot(data=df, x='case', y='edge_crossings', hue='strategy', ax=axes[1])
    axes[1].set_title('Edge Crossings (XY)')
    axes[1].tick_params(labelrotation=45)

    sns.boxplot(data=df, x='case', y='node_overlaps', hue='strategy', ax=axes[2])
    axes[2].set_title('Node Overlaps')
    axes[2].tick_params(labelrotation=45)

    plt.tight_layout()
    plt.savefig(plots_dir / 'quality_metrics.png')
    plt.close()

    # Save raw data
    df.to_csv(output_dir / 'benchmark_results.csv', index=False)

    summary = df.groupby(['case', 'strategy']).agg({
        'runtime': ['mean', 'std'],
        'stress': 'mean',
        'edge_crossings': 'mean',
        'node_overlaps': 'mean'
    }).round(3)

    summary.to_csv(output_dir / 'summary_stats.csv')

def main():
    parser = argparse.ArgumentParser(description='Run layout strategy benchmarks')
    parser.add_argument('--output', type=str, default='benchmark_results',
                        help='Output directory for results')
    parser.add_argument('--runs', type=int, default=3,
                        help='Number of runs per case')
    parser.add_argument('--strategies', type=str, nargs='*', default=None,
                        help='Subset of strategy config names to run')
    args = parser.parse_args()

    output_dir = Path(args.output)
    output_dir.mkdir(exist_ok=True)

    configs = DEFAULT_STRATEGY_CONFIGS
    if args.strategies:
        configs = [c for c in configs if c['name'] in args.strategies]

    runner = BenchmarkRunner()
    results = runner.run_benchmark(strategy_configs=configs, runs_per_case=args.runs)

    plot_results(results, output_dir)

    logger.info(f"Benchmark results saved to {output_dir}")

if __name__ == '__main__':
    main()
