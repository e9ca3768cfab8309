"""Command-line entry point for running a cascade."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
import time
from pathlib import Path

from .channels import BroadcastHub
from .config import CascadeConfig
from .driver import CascadeDriver, CascadeResult
from .errors import ConfigError
from .eventlog import EventLog
from .reporting import plot_timing, summarize_verdict, timing_frame
from .stimulus import AsyncStimulusDispatcher
from .storage import JsonFileStore


def format_duration(seconds: float) -> str:
    """Format a run time: milliseconds for scaled-down runs, minutes for long ones."""
    if seconds < 1:
        return f"{seconds * 1000.0:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)}m {secs:.1f}s"


def print_section(title: str, width: int = 70) -> None:
    rule = "=" * width
    print(f"\n{rule}\n  {title}\n{rule}")


def print_summary(result: CascadeResult, elapsed: float, verbose: bool) -> None:
    print_section("Cascade Summary")
    final = result.final

    print(f"\nRuntime: {format_duration(elapsed)}")
    print(f"Attempts: {len(result.runs)}")
    print(f"  Decay constant:     {final.config.decay_constant:.7f}")
    print(f"  Layers x passes:    {final.config.layer_count} x {final.config.passes}")
    print(f"  Total energy:       {final.levels.total_energy:.2f}")
    if final.verdict.defined:
        print(f"  Aggregate deviation: {final.verdict.aggregate_deviation * 100.0:.2f}%")
    else:
        print("  Aggregate deviation: undefined")
    print(f"  Converged:          {final.verdict.converged}")
    if final.bridge is not None:
        print(f"  Bridge:             {final.bridge.id}")
    if final.retuned_decay is not None:
        print(f"  Retuned decay:      {final.retuned_decay:.7f}")

    if verbose:
        print("\n--- Per-Layer Timing ---")
        print(summarize_verdict(final.levels, final.samples, final.verdict, final.config.delay_scale_ms))


def validate_output_dir(output_dir: Path) -> None:
    """Validate that output directory can be created and is writable."""
    if output_dir.exists():
        if not output_dir.is_dir():
            print(
                f"Error: Output path exists but is not a directory: {output_dir}\n"
                f"Please specify a different path or remove the existing file.",
                file=sys.stderr,
            )
            sys.exit(1)
        return
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        print(
            f"Error: Cannot create output directory: {output_dir}\n"
            f"Permission denied. Please check your file system permissions.",
            file=sys.stderr,
        )
        sys.exit(1)


def write_artifacts(result: CascadeResult, output_dir: Path) -> None:
    final = result.final
    scale = final.config.delay_scale_ms
    timing_frame(final.levels, final.samples, final.verdict, scale).to_csv(output_dir / "timing.csv")
    plot_timing(final.levels, final.samples, output_dir / "timing.png", scale)
    (output_dir / "verdict.txt").write_text(
        summarize_verdict(final.levels, final.samples, final.verdict, scale)
    )


async def _run(args: argparse.Namespace, config: CascadeConfig, log: EventLog) -> CascadeResult:
    hub = BroadcastHub()
    stimuli = AsyncStimulusDispatcher(config, log=log, time_scale=args.time_scale)
    driver = CascadeDriver(
        config,
        stimuli=stimuli,
        hub=hub,
        store=JsonFileStore(args.output_dir / "store"),
        log=log,
        time_scale=args.time_scale,
        handshake_timeout=args.handshake_timeout,
    )
    try:
        result = await driver.run()
    finally:
        await stimuli.drain()
    for run in result.runs:
        if run.coordinator is not None:
            await run.coordinator.close()
    return result


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the exponential-decay timing cascade and its handshake.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Default 33-layer cascade in real time
  %(prog)s --time-scale 0.01            # Same cascade, 100x faster
  %(prog)s --passes 3 --max-retunes 2   # Re-trigger layers and retry on failure
  %(prog)s --quiet                      # Print only the verdict
        """,
    )
    defaults = CascadeConfig()
    parser.add_argument("--layers", type=int, default=defaults.layer_count, help="Number of cascade layers (default: 33).")
    parser.add_argument("--decay", type=float, default=defaults.decay_constant, help="Decay constant alpha (default: 0.0302011).")
    parser.add_argument("--passes", type=int, default=defaults.passes, help="Times the full cascade is triggered (default: 1).")
    parser.add_argument("--max-retunes", type=int, default=defaults.max_retunes, help="Reruns with a perturbed decay constant (default: 0).")
    parser.add_argument("--log-every", type=int, default=defaults.log_every_n, help="Progress event interval in layers (default: 5).")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the retune perturbation.")
    parser.add_argument("--time-scale", type=float, default=1.0, help="Multiplier on every wait (default: 1.0).")
    parser.add_argument("--handshake-timeout", type=float, default=1.0, help="Seconds to wait for a bridge (default: 1.0).")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("artifacts"),
        help="Directory for timing.csv, timing.png, verdict.txt and the bridge store (default: artifacts).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug events and the per-layer table.")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all output except errors and the verdict.")
    args = parser.parse_args()

    validate_output_dir(args.output_dir)

    if args.quiet:
        os.environ["CASCADE_VERBOSITY"] = "0"
    elif args.verbose:
        os.environ["CASCADE_VERBOSITY"] = "2"
    else:
        os.environ["CASCADE_VERBOSITY"] = "1"

    config = CascadeConfig(
        decay_constant=args.decay,
        layer_count=args.layers,
        passes=args.passes,
        max_retunes=args.max_retunes,
        log_every_n=args.log_every,
        retune_seed=args.seed,
    )
    log = EventLog()

    if not args.quiet:
        print_section("Cascade Timing Run")
        print(f"\nOutput directory: {args.output_dir.resolve()}")

    start_time = time.time()
    try:
        result = asyncio.run(_run(args, config, log))
    except ConfigError as e:
        print(f"\nInvalid configuration:\n{e}", file=sys.stderr)
        sys.exit(1)
    elapsed = time.time() - start_time

    write_artifacts(result, args.output_dir)

    if args.quiet:
        print("converged" if result.converged else "not converged")
    else:
        print_summary(result, elapsed, args.verbose)
        print_section("Run Complete")
        print(f"Results written to: {args.output_dir.resolve()}\n")


if __name__ == "__main__":
    main()
