"""
Error-model selection runner for exported projects.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from scoring.selection import Criterion, RankedResult, best_error_models, select_error_models

from . import loaders


def run_selection(
    project_path: str,
    out_dir: str | None = None,
    criterion: Criterion = "BIC",
    top_k: int = 5,
    outputs: Sequence[str] | None = None,
    simulated: bool | None = None,
    verbose: bool = False
) -> dict[str, Any]:
    """
    Rank the error models of every continuous output and write artifacts.

    Args:
        project_path: Exported project directory
        out_dir: Where to write results.json, ranking.csv and REPORT.md
            (nothing is written when None)
        criterion: "BIC", "AIC" or a numeric penalty weight
        top_k: Candidates kept per output
        outputs: Restrict to these outputs
        simulated: Use simulated predictions; defaults to True when the
            project has them
        verbose: Print progress

    Returns:
        Results dictionary (the content of results.json)
    """
    project = loaders.load(project_path, validate=True)
    if simulated is None:
        simulated = project.simulated_predictions is not None

    selection = select_error_models(
        project,
        criterion=criterion,
        top_k=top_k,
        outputs=outputs,
        simulated=simulated,
        verbose=verbose
    )

    results = {
        "project": {
            "name": project.name,
            "version": project.version,
            "path": str(Path(project_path).as_posix())
        },
        "run": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "source": "simulated" if simulated else "estimated",
            "criterion": criterion if isinstance(criterion, str) else float(criterion),
            "top_k": top_k
        },
        "best": best_error_models(selection),
        "outputs": {name: result.to_dict() for name, result in selection.items()}
    }

    if out_dir is not None:
        out_path = Path(out_dir)
        out_path.mkdir(parents=True, exist_ok=True)
        _write_ranking_csv(out_path / "ranking.csv", selection)
        _write_results(out_path / "results.json", results)
        _write_report(out_path / "REPORT.md", project, selection, results)

    return results


def _write_ranking_csv(path: Path, selection: dict[str, RankedResult]) -> None:
    with open(path, "w") as f:
        f.write("output,rank,error_model,ll,df,criterion\n")
        for name, result in selection.items():
            for rank, cand in enumerate(result, start=1):
                f.write(f"{name},{rank},{cand.error_model.value},"
                        f"{cand.log_likelihood},{cand.df},{cand.criterion_value}\n")


def _write_results(path: Path, results: dict[str, Any]) -> None:
    with open(path, "w") as f:
        json.dump(results, f, indent=2)


def _write_report(
    path: Path,
    project: loaders.Project,
    selection: dict[str, RankedResult],
    results: dict[str, Any]
) -> None:
    with open(path, "w") as f:
        f.write("# Error Model Selection Report\n\n")
        f.write("## Project\n")
        f.write(f"- Name: {project.name}\n")
        f.write(f"- Version: {project.version}\n")
        f.write(f"- Path: {project.path.as_posix()}\n")
        f.write(f"- Predictions: {results['run']['source']}\n\n")

        for name, result in selection.items():
            spec = project.output(name)
            f.write(f"## Output {name} (prediction {spec.prediction})\n")
            f.write(f"- Pairs used: {result.n_pairs} over {result.n_replicates} replicate(s)\n")
            f.write(f"- Criterion: {result.criterion} (penalty {result.penalty:.4f} per parameter)\n")
            if spec.error_model:
                f.write(f"- Current error model: {spec.error_model}\n")
            f.write(f"- Selected: {result.best.error_model.value}\n\n")

            f.write("| Rank | Error model | LL | df | Criterion |\n")
            f.write("| --- | --- | --- | --- | --- |\n")
            for rank, cand in enumerate(result, start=1):
                f.write(f"| {rank} | {cand.error_model.value} | {cand.log_likelihood:.4f} "
                        f"| {cand.df} | {cand.criterion_value:.4f} |\n")
            if result.failures:
                f.write("\nExcluded:\n")
                for model, reason in result.failures.items():
                    f.write(f"- {model}: {reason}\n")
            f.write("\n")

        f.write("## Notes\n")
        f.write("- Lower criterion values are better.\n")
        f.write("- Pairs with a non-positive observation or prediction are excluded.\n")
