"""Typer CLI entrypoint and command definitions for nliscore."""

import logging
from pathlib import Path
from typing import Optional

import typer

from nliscore.core.defaults import (
    DEFAULT_PLATT_PARAMS_FILE,
    DEFAULT_RAW_SCORES_FILE,
    DEFAULT_RESULTS_FILE,
    DEFAULT_SCORES_FILE,
    MAX_MISCLASSIFIED_SHOWN,
)

logger = logging.getLogger(__name__)

app = typer.Typer()


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="Root log level (DEBUG, INFO, WARNING, ...)"),
) -> None:
    """Calibrated zero-shot NLI scoring, evaluation and Platt calibration."""
    from nliscore.core.logging import configure_logging

    configure_logging(log_level)


# -- shared helpers -----------------------------------------------------------


def resolve_output_path(
    dataset_path: Path,
    output: Optional[Path],
    default_name: str,
) -> Path:
    """Pick the output file for a command.

    A path with a suffix is used as the file itself; any other path is a
    directory receiving *default_name*.  Without an output path the
    dataset's own directory is used.
    """
    if output is None:
        return dataset_path.parent / default_name
    if output.suffix:
        return output
    return output / default_name


def _fail(message: str) -> None:
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _load_config(config: str):
    from nliscore.core.config import load_config
    from nliscore.core.exceptions import ConfigError

    typer.echo(f"Loading config from {config}...")
    try:
        return load_config(Path(config))
    except ConfigError as exc:
        _fail(f"Error loading config: {exc.message}")


def _load_dataset(path: Path):
    from nliscore.core.store import load
    from nliscore.core.types import SampleDataset

    if not path.exists():
        _fail(f"Dataset not found: {path}")
    try:
        dataset = load(path, SampleDataset)
    except (OSError, ValueError) as exc:
        _fail(f"Error loading dataset: {exc}")
    typer.echo(f"Loaded {len(dataset.samples)} samples")
    return dataset


def _prepare_dataset(dataset, score_config, strict: bool):
    """Validate against the config and apply the strict/filter policy."""
    from nliscore.core.exceptions import DatasetValidationError
    from nliscore.core.validation import apply_validation_policy, validate_dataset

    categories = set(score_config.category_names())
    labels = set(score_config.label_names())
    issues = validate_dataset(dataset, categories, labels)
    try:
        prepared, skipped = apply_validation_policy(
            dataset, issues, strict=strict, valid_categories=categories, valid_labels=labels,
        )
    except DatasetValidationError as exc:
        typer.echo(f"Validation failed with {len(exc.issues)} error(s):", err=True)
        for issue in exc.issues:
            typer.echo(f"  - {issue}", err=True)
        _fail(f"Error: {exc.message}")
    if skipped:
        typer.echo(f"Warning: Skipping {skipped} samples with unknown categories/labels", err=True)
    return prepared


def _build_scorer(score_config):
    from nliscore.core.exceptions import NliScoreError
    from nliscore.infer.scorer import Scorer

    typer.echo("Building scorer (this may download model files on first run)...")
    try:
        return Scorer.build(score_config)
    except NliScoreError as exc:
        _fail(f"Error building scorer: {exc.message}")


def _print_summary(result, metrics, verbose: bool) -> None:
    from nliscore.core.metrics import label_metrics_frame

    score_out_of_100 = round(metrics.accuracy * 100)
    typer.echo("========================================")
    typer.echo(f"  SCORE: {score_out_of_100}/100 ({metrics.accuracy * 100:.1f}%)")
    typer.echo("========================================\n")
    typer.echo(f"Total samples: {result.total}")
    typer.echo(f"Correct:       {result.correct} ({metrics.accuracy * 100:.1f}%)\n")
    typer.echo(f"Precision: {metrics.precision:.3f}")
    typer.echo(f"Recall:    {metrics.recall:.3f}")
    typer.echo(f"F1 Score:  {metrics.f1:.3f}")
    typer.echo(f"Elapsed:   {result.elapsed_ms:.0f} ms ({result.throughput:.1f} samples/s)")

    if not verbose:
        return

    typer.echo("\n=== Per-Category Results ===\n")
    for name, cat in metrics.per_category.items():
        typer.echo(f"{name:20} {cat.correct:3}/{cat.total:3} ({cat.accuracy * 100:.1f}%)")

    typer.echo("\n=== Per-Label Results ===\n")
    frame = label_metrics_frame(result.per_label)
    frame = frame[(frame["expected"] > 0) | (frame["detected"] > 0)]
    table = frame[["label", "expected", "detected", "tp", "precision", "recall", "f1"]].rename(
        columns={
            "label": "Label", "expected": "Expect", "detected": "Detect", "tp": "TP",
            "precision": "Prec", "recall": "Recall", "f1": "F1",
        },
    )
    typer.echo(table.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    wrong = result.misclassified()
    if wrong:
        typer.echo(f"\n=== Misclassified Samples ({len(wrong)}) ===\n")
        for sample in wrong[:MAX_MISCLASSIFIED_SHOWN]:
            typer.echo(f"ID: {sample.id}")
            typer.echo(f"  Expected: {sample.expected_decision}, Actual: {sample.actual_decision}")
            typer.echo(f"  Score: {sample.score:.3f}")
            typer.echo(f"  Expected labels: {sample.expected_labels}")
            typer.echo(f"  Detected labels: {sample.detected_labels}\n")
        if len(wrong) > MAX_MISCLASSIFIED_SHOWN:
            typer.echo(f"... and {len(wrong) - MAX_MISCLASSIFIED_SHOWN} more")


# -- classify -----------------------------------------------------------------


@app.command("classify")
def classify_cmd(
    text: str = typer.Argument(..., help="Text to classify"),
    config: str = typer.Option(..., "--config", "-c", help="Path to config file (YAML/JSON/TOML)"),
) -> None:
    """Score a single text and print the gate decision."""
    from nliscore.core.exceptions import NliScoreError, ScoreRejectedError

    cfg = _load_config(config)
    scorer = _build_scorer(cfg.score)

    try:
        output = scorer.score(text)
    except ScoreRejectedError as exc:
        typer.echo("Decision: Reject")
        typer.echo(f"Reason: {exc.message}")
        return
    except NliScoreError as exc:
        _fail(f"Error scoring text: {exc.message}")

    typer.echo("Decision: Accept")
    typer.echo(f"Score: {output.score:.3f}")
    typer.echo("\nDetected labels:")
    raw = output.raw_scores()
    for label in output.detected_labels():
        typer.echo(f"  {label}: {raw[label]:.3f}")


# -- run ----------------------------------------------------------------------


@app.command("run")
def run_cmd(
    dataset: str = typer.Argument(..., help="Path to the dataset JSON file"),
    config: str = typer.Option(..., "--config", "-c", help="Path to config file (YAML/JSON/TOML)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory or file (default: dataset's directory)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Batch size for inference (overrides config)"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Fail on unknown categories/labels (overrides config)"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, help="Reserved; a single model serves every batch"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-category, per-label and misclassified results"),
) -> None:
    """Evaluate a labeled dataset and print accuracy and macro metrics."""
    from nliscore.report.export import build_eval_report, export_eval_report_json
    from nliscore.train.evaluate import run_evaluation

    cfg = _load_config(config)
    dataset_path = Path(dataset)
    out_path = resolve_output_path(
        dataset_path, Path(output) if output else cfg.output, DEFAULT_RESULTS_FILE,
    )
    batch = batch_size or cfg.batch_size
    logger.debug("concurrency=%d is reserved; one shared model serves every batch", concurrency or cfg.concurrency)
    data = _prepare_dataset(_load_dataset(dataset_path), cfg.score, cfg.strict if strict is None else strict)
    scorer = _build_scorer(cfg.score)

    typer.echo(f"\nRunning evaluation with batch size {batch}...\n")
    result = run_evaluation(scorer, data, batch)
    typer.echo(f"Completed {result.total} samples\n")

    _print_summary(result, result.metrics(), verbose)

    try:
        export_eval_report_json(build_eval_report(result), out_path)
    except (OSError, ValueError) as exc:
        _fail(f"Error writing output file: {exc}")
    typer.echo(f"\nResults written to {out_path}")


# -- score --------------------------------------------------------------------


@app.command("score")
def score_cmd(
    dataset: str = typer.Argument(..., help="Path to the dataset JSON file"),
    config: str = typer.Option(..., "--config", "-c", help="Path to config file (YAML/JSON/TOML)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory or file (default: dataset's directory)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Batch size for inference (overrides config)"),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Fail on unknown categories/labels (overrides config)"),
    csv: bool = typer.Option(False, "--csv", help="Also write a per-category label summary CSV next to the export"),
) -> None:
    """Evaluate a dataset and write the hierarchical score export."""
    from nliscore.report.export import (
        build_score_export,
        export_label_summary_csv,
        export_score_json,
    )
    from nliscore.train.evaluate import run_evaluation_with_scores

    cfg = _load_config(config)
    dataset_path = Path(dataset)
    out_path = resolve_output_path(
        dataset_path, Path(output) if output else cfg.output, DEFAULT_SCORES_FILE,
    )
    batch = batch_size or cfg.batch_size
    data = _prepare_dataset(_load_dataset(dataset_path), cfg.score, cfg.strict if strict is None else strict)
    scorer = _build_scorer(cfg.score)

    typer.echo(f"\nScoring {len(data.samples)} samples with batch size {batch}...")
    result, raw_scores = run_evaluation_with_scores(scorer, data, batch)
    export = build_score_export(data, result, raw_scores)
    typer.echo(
        f"Accuracy: {export.accuracy * 100:.1f}% ({export.correct}/{export.total}), "
        f"P={export.precision:.3f} R={export.recall:.3f} F1={export.f1:.3f}"
    )

    try:
        export_score_json(export, out_path)
        if csv:
            csv_path = export_label_summary_csv(export, out_path.with_suffix(".csv"))
            typer.echo(f"Label summary written to {csv_path}")
    except (OSError, ValueError) as exc:
        _fail(f"Error writing output file: {exc}")
    typer.echo(f"Scores written to {out_path}")


# -- export -------------------------------------------------------------------


@app.command("export")
def export_cmd(
    dataset: str = typer.Argument(..., help="Path to the dataset JSON file"),
    config: str = typer.Option(..., "--config", "-c", help="Path to config file (YAML/JSON/TOML)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory or file (default: dataset's directory)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Batch size for inference (overrides config)"),
) -> None:
    """Export raw per-label scores as input for ``train``."""
    from nliscore.core.store import save
    from nliscore.train.evaluate import run_export

    cfg = _load_config(config)
    dataset_path = Path(dataset)
    out_path = resolve_output_path(
        dataset_path, Path(output) if output else cfg.output, DEFAULT_RAW_SCORES_FILE,
    )
    batch = batch_size or cfg.batch_size
    data = _load_dataset(dataset_path)
    scorer = _build_scorer(cfg.score)

    export = run_export(scorer, data, batch)
    try:
        save(out_path, export)
    except (OSError, ValueError) as exc:
        _fail(f"Error writing output file: {exc}")
    typer.echo(f"Raw scores for {len(export.samples)} samples written to {out_path}")


# -- train --------------------------------------------------------------------


@app.command("train")
def train_cmd(
    raw_scores: str = typer.Argument(..., help="Path to the raw-scores JSON file"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output directory or file for trained params"),
    code: bool = typer.Option(False, "--code", help="Print a YAML config snippet with the trained params"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config to apply trained params to (with --write-config)"),
    write_config: Optional[str] = typer.Option(None, "--write-config", help="Write the updated config here (requires --config)"),
) -> None:
    """Train per-label Platt calibration parameters from raw scores."""
    from nliscore.core.store import save
    from nliscore.infer.calibration import apply_platt_params
    from nliscore.train.calibrate import (
        generate_config_snippet,
        load_raw_scores,
        save_training_result,
        train_platt_params,
    )

    if write_config and not config:
        _fail("Error: --write-config requires --config to be specified")

    raw_path = Path(raw_scores)
    if not raw_path.exists():
        _fail(f"Raw scores file not found: {raw_path}")
    try:
        export = load_raw_scores(raw_path)
    except (OSError, ValueError) as exc:
        _fail(f"Error loading raw scores: {exc}")
    typer.echo(f"Loaded raw scores for {len(export.samples)} samples")

    result = train_platt_params(export)
    for label, params in result.params.items():
        stats = result.metadata.samples_per_label[label]
        status = "skipped" if stats.skipped else f"a={params.a:.4f}, b={params.b:.4f}"
        typer.echo(f"  {label:20} {status} ({stats.positive} positive, {stats.negative} negative)")

    out_path = resolve_output_path(raw_path, Path(output) if output else None, DEFAULT_PLATT_PARAMS_FILE)
    try:
        save_training_result(result, out_path)
    except (OSError, ValueError) as exc:
        _fail(f"Error writing output file: {exc}")
    typer.echo(f"Trained params written to {out_path}")

    if code:
        typer.echo("")
        typer.echo(generate_config_snippet(result), nl=False)

    if write_config:
        cfg = _load_config(config)
        updated = cfg.model_copy(
            update={"layers": cfg.layers.model_copy(
                update={"score": apply_platt_params(cfg.score, result.params)},
            )},
        )
        try:
            save(Path(write_config), updated)
        except (OSError, ValueError) as exc:
            _fail(f"Error writing config: {exc}")
        typer.echo(f"Updated config written to {write_config}")


# -- validate -----------------------------------------------------------------


@app.command("validate")
def validate_cmd(
    dataset: str = typer.Argument(..., help="Path to the dataset JSON file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config to check categories and labels against"),
    strict: bool = typer.Option(False, "--strict", help="Exit with an error if validation finds issues"),
    test_samples: Optional[int] = typer.Option(None, "--test-samples", min=1, help="Score the first N samples (requires --config)"),
) -> None:
    """Validate a dataset, optionally against a config, and spot-check scoring."""
    from nliscore.core.exceptions import NliScoreError, ScoreRejectedError
    from nliscore.core.validation import validate_dataset

    if test_samples is not None and config is None:
        _fail("Error: --test-samples requires --config to be specified")

    data = _load_dataset(Path(dataset))
    cfg = _load_config(config) if config else None
    categories = set(cfg.score.category_names()) if cfg else None
    labels = set(cfg.score.label_names()) if cfg else None

    issues = validate_dataset(data, categories, labels)
    if not issues:
        typer.echo(f"Dataset is valid ({len(data.samples)} samples)")
    else:
        typer.echo(f"Found {len(issues)} validation error(s):\n")
        for issue in issues:
            typer.echo(f"  - {issue}")
        if strict:
            raise typer.Exit(code=1)

    if test_samples is None:
        return

    scorer = _build_scorer(cfg.score)
    subset = data.samples[:test_samples]
    typer.echo(f"\nTesting {len(subset)} sample(s)...\n")
    for sample in subset:
        try:
            output = scorer.score(sample.text)
        except ScoreRejectedError as exc:
            typer.echo(f"  {sample.id} -> reject (score: {exc.score:.3f}, expected: {sample.expected_decision})")
        except NliScoreError as exc:
            _fail(f"Error scoring {sample.id}: {exc.message}")
        else:
            typer.echo(f"  {sample.id} -> accept (score: {output.score:.3f}, expected: {sample.expected_decision})")


# -- coverage -----------------------------------------------------------------


@app.command("coverage")
def coverage_cmd(
    dataset: str = typer.Argument(..., help="Path to the dataset JSON file"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Config whose labels should all be covered"),
) -> None:
    """Show how samples spread over decisions, categories and labels."""
    from nliscore.report.coverage import build_coverage_report

    data = _load_dataset(Path(dataset))
    cfg = _load_config(config) if config else None
    report = build_coverage_report(data, cfg.score.label_names() if cfg else None)

    typer.echo("\n=== Dataset Coverage ===\n")
    typer.echo(f"Total samples: {report.total_samples}")
    typer.echo(f"Accept: {report.accept_count}, Reject: {report.reject_count}")

    typer.echo("\nBy category:")
    for name, count in report.samples_by_category.items():
        typer.echo(f"  {name:20} {count}")

    typer.echo("\nBy label:")
    for name, count in sorted(report.samples_by_label.items(), key=lambda kv: (-kv[1], kv[0])):
        typer.echo(f"  {name:20} {count}")

    if report.missing_labels:
        typer.echo(f"\nMissing labels ({len(report.missing_labels)}):")
        for name in report.missing_labels:
            typer.echo(f"  - {name}")


if __name__ == "__main__":
    app()
