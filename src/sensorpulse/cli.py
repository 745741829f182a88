"""CLI for the sensorpulse analytics engine."""

import json
import logging
import random

import click


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity.",
)
def main(log_level: str) -> None:
    """sensorpulse: streaming sensor analytics and predictive insights."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--output", "-o", default=None, help="Write emitted records as JSONL.")
@click.option("--seed", default=None, type=int, help="Seed for insight template choice.")
@click.option("--timezone", "tz", default="UTC", help="Time zone for hour-of-day analysis.")
def replay(file: str, output: str | None, seed: int | None, tz: str) -> None:
    """Replay a JSONL sample log and print every insight and prediction."""
    from sensorpulse.config import EngineConfig
    from sensorpulse.errors import ConfigError
    from sensorpulse.replay import replay_file

    try:
        result = replay_file(file, output, seed=seed, config=EngineConfig(timezone=tz))
    except ConfigError as e:
        raise click.BadParameter(str(e)) from e

    for insight in result.insights:
        click.echo(f"[{insight.priority.value}] {insight.kind.value}: {insight.message}")
    for prediction in result.predictions:
        click.echo(
            f"{prediction.title} ({prediction.confidence:.0%}): {prediction.description}"
        )
    click.echo(
        f"\nSummary: {result.accepted} samples accepted, {result.dropped} dropped, "
        f"{len(result.insights)} insights, {len(result.predictions)} predictions"
    )
    if output:
        click.echo(f"Records written to {output}")


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--seed", default=None, type=int, help="Seed for greeting choice.")
def summarize(file: str, seed: int | None) -> None:
    """Print a daily summary (JSON) for each day in a sample log."""
    from sensorpulse.analytics.summary import summaries_by_day
    from sensorpulse.replay import load_records, normalize_records

    samples = normalize_records(load_records(file))
    summaries = summaries_by_day(samples, rng=random.Random(seed))
    if not summaries:
        click.echo("No usable samples.")
        return
    click.echo(json.dumps([s.to_dict() for s in summaries], indent=2))


@main.command()
@click.argument("file", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Print feature sets as JSON.")
def features(file: str, as_json: bool) -> None:
    """Print per-sensor feature sets over a whole sample log."""
    from sensorpulse.analytics.features import describe_features, extract_features, sample_values
    from sensorpulse.replay import load_records, normalize_records

    samples = normalize_records(load_records(file))
    by_kind: dict = {}
    for sample in samples:
        by_kind.setdefault(sample.sensor_kind, []).append(sample)

    results = {}
    for kind in sorted(by_kind, key=lambda k: k.value):
        fs = extract_features(sample_values(by_kind[kind]))
        if fs is not None:
            results[kind] = fs

    if not results:
        click.echo("No usable samples.")
        return
    if as_json:
        click.echo(json.dumps({k.value: fs.to_dict() for k, fs in results.items()}, indent=2))
        return
    for kind, fs in results.items():
        click.echo(describe_features(kind, fs))
        click.echo()


if __name__ == "__main__":
    main()
