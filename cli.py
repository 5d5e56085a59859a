#!/usr/bin/env python3
"""
Command-line interface for error-model selection.

Provides commands for:
- Validating exported projects
- Ranking residual error models per output
- Computing weighted residuals
- Rebuilding random-effect covariance matrices

Usage:
    errsel validate <project>
    errsel select <project> --criterion BIC --top 5
    errsel residuals <project> --output y1 -o residuals.csv
    errsel covariance <project> --format json
"""

import argparse
import json
import os
import sys

import numpy as np


def parse_criterion(value):
    """'BIC', 'AIC' or a numeric penalty weight."""
    try:
        return float(value)
    except ValueError:
        return value.upper()


def cmd_validate(args):
    """Validate an exported project."""
    import errsel

    project_path = args.project

    print(f"Validating project: {project_path}")
    print("=" * 60)

    try:
        project = errsel.load(project_path, validate=True)
        print(f"Name: {project.name}")
        print(f"Version: {project.version}")
        print(f"Outputs: {[o.name for o in project.outputs]}")
        print(f"Continuous outputs: {project.continuous_outputs()}")
        print(f"Observation rows: {project.observations.nrows}")
        print(f"Individual predictions: {'yes' if project.predictions is not None else 'no'}")
        print(f"Simulated replicates: {project.n_replicates}")
        print()
        print("VALIDATION: PASSED")

    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        return 1
    except ValueError as e:
        print("VALIDATION: FAILED")
        print(f"Errors:\n{e}")
        return 1

    return 0


def cmd_select(args):
    """Rank residual error models for each continuous output."""
    from errsel.report import run_selection

    project_path = args.project

    print(f"Selecting error models for project: {project_path}")
    print("=" * 60)

    simulated = None
    if args.source is not None:
        simulated = args.source == "simulated"

    try:
        results = run_selection(
            project_path,
            out_dir=args.out,
            criterion=args.criterion,
            top_k=args.top,
            outputs=args.output,
            simulated=simulated,
            verbose=args.verbose
        )
    except Exception as e:
        print(f"ERROR: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    print(f"Predictions: {results['run']['source']}")

    for name, ranking in results["outputs"].items():
        print(f"\nOutput {name} ({ranking['criterion']}, "
              f"{ranking['n_pairs']} pairs, {ranking['n_replicates']} replicate(s)):")
        print("-" * 40)
        for rank, cand in enumerate(ranking["candidates"], start=1):
            print(f"  {rank}. {cand['error_model']:<13} ll={cand['ll']:.4f}  "
                  f"df={cand['df']}  criterion={cand['criterion']:.4f}")
        for model, reason in ranking["failures"].items():
            print(f"  excluded {model}: {reason}")

    print("\nSelected error models:")
    for name, model in results["best"].items():
        print(f"  {name}: {model}")

    if args.out:
        print(f"\nArtifacts written to: {args.out}")

    return 0


def cmd_residuals(args):
    """Compute weighted residuals under the configured error models."""
    import errsel
    from scoring import compute_residuals, error_parameters

    try:
        project = errsel.load(args.project)
        names = args.output or project.continuous_outputs()
        estimates = project.population_parameters
        use_simulated = args.source == "simulated"

        rows = []
        for name in names:
            spec = project.output(name)
            if not spec.error_model:
                print(f"ERROR: Output '{name}' has no error_model in project.yaml")
                return 1
            observed = project.fetch_observations(name)
            if use_simulated:
                predicted = project.fetch_simulated_predictions(name)
            else:
                predicted = project.fetch_predictions(name)

            params = error_parameters(estimates, spec.error_parameters)
            residuals = compute_residuals(
                observed,
                predicted,
                spec.error_model,
                distribution=spec.distribution,
                limits=spec.limits,
                **params
            )

            n_obs = len(observed)
            for k, value in enumerate(residuals):
                rows.append((name, k // n_obs + 1, k % n_obs, value))

            print(f"{name}: {spec.error_model} ({spec.distribution}), "
                  f"a={params['a']:.4g} b={params['b']:.4g} c={params['c']:.4g}")
            print(f"  mean={np.nanmean(residuals):.4f}  sd={np.nanstd(residuals):.4f}  "
                  f"n={residuals.size}")

        if args.out:
            with open(args.out, 'w') as f:
                f.write("output,rep,index,residual\n")
                for name, rep, index, value in rows:
                    f.write(f"{name},{rep},{index},{value}\n")
            print(f"\nResiduals written to: {args.out}")

    except Exception as e:
        print(f"ERROR: {e}")
        return 1

    return 0


def cmd_covariance(args):
    """Print random-effect correlation and covariance matrices."""
    import errsel
    from scoring import estimated_covariance

    try:
        project = errsel.load(args.project)
        estimate = estimated_covariance(project.population_parameters)

        if args.format == "json":
            print(json.dumps(estimate.to_dict(), indent=2))
        else:
            width = max(len(n) for n in estimate.names) + 2
            for title, matrix in (("Correlation", estimate.correlation),
                                  ("Covariance", estimate.covariance)):
                print(f"{title} matrix:")
                print(" " * width + "".join(f"{n:>12}" for n in estimate.names))
                for name, row in zip(estimate.names, matrix):
                    print(f"{name:<{width}}" + "".join(f"{v:>12.6f}" for v in row))
                print()

    except Exception as e:
        print(f"ERROR: {e}")
        return 1

    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="errsel",
        description="Error-model selection for exported mixed-effects projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  errsel validate projects/warfarin_pk
  errsel select projects/warfarin_pk --criterion BIC --top 5 -o out/selection
  errsel select projects/warfarin_pk --criterion 3.5 --source estimated
  errsel residuals projects/warfarin_pk --output y1 -o residuals.csv
  errsel covariance projects/warfarin_pk --format json
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate an exported project')
    validate_parser.add_argument('project', help='Path to project directory')

    # Select command
    select_parser = subparsers.add_parser('select', help='Rank error models per output')
    select_parser.add_argument('project', help='Path to project directory')
    select_parser.add_argument('--criterion', type=parse_criterion, default='BIC',
                               help="'BIC', 'AIC' or a numeric penalty weight")
    select_parser.add_argument('--top', type=int, default=5, help='Candidates shown per output')
    select_parser.add_argument('--source', choices=['simulated', 'estimated'],
                               help='Prediction source (default: simulated when available)')
    select_parser.add_argument('--output', action='append', help='Output name (repeatable)')
    select_parser.add_argument('-o', '--out', help='Directory for results.json, ranking.csv, REPORT.md')
    select_parser.add_argument('-v', '--verbose', action='store_true')

    # Residuals command
    residuals_parser = subparsers.add_parser('residuals', help='Compute weighted residuals')
    residuals_parser.add_argument('project', help='Path to project directory')
    residuals_parser.add_argument('--output', action='append', help='Output name (repeatable)')
    residuals_parser.add_argument('--source', default='simulated',
                                  choices=['simulated', 'estimated'],
                                  help='Prediction source')
    residuals_parser.add_argument('-o', '--out', help='CSV output path')

    # Covariance command
    covariance_parser = subparsers.add_parser('covariance', help='Random-effect covariance matrices')
    covariance_parser.add_argument('project', help='Path to project directory')
    covariance_parser.add_argument('--format', default='text', choices=['text', 'json'],
                                   help='Output format')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    # Add package to path
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

    # Dispatch to command handler
    if args.command == 'validate':
        return cmd_validate(args)
    elif args.command == 'select':
        return cmd_select(args)
    elif args.command == 'residuals':
        return cmd_residuals(args)
    elif args.command == 'covariance':
        return cmd_covariance(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
