from __future__ import annotations

import argparse
import math
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from nomnom import __version__
from nomnom.exceptions import NomnomError
from nomnom.filters import FilterPipeline
from nomnom.git import clone_source, is_remote_source
from nomnom.logging import configure_level, logger, setup_logging
from nomnom.output import OutputFormat, get_writer
from nomnom.processor import Processor, process_files
from nomnom.settings import Settings, validate_configuration
from nomnom.walker import walk

if TYPE_CHECKING:
    from collections.abc import Sequence

    from nomnom.config import ProcessedFile
    from nomnom.settings import ConfigValidation

STDOUT = "-"


def estimate_tokens(text: str) -> int:
    """Rough LLM token count: about 3.25 tokens per 10 characters."""
    return math.ceil(len(text) * 13 / 40)


def _threads_arg(value: str) -> str | int:
    if value.strip().lower() == "auto":
        return "auto"
    try:
        count = int(value)
    except ValueError:
        count = 0
    if count < 1:
        msg = f"invalid thread count {value!r} (expected 'auto' or a positive integer)"
        raise argparse.ArgumentTypeError(msg)
    return count


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="nomnom",
        description="Snapshot a directory or git repository into one LLM-ready document.",
    )
    p.add_argument("source", nargs="?", default=".", help="Local path or git URL (default: .).")
    p.add_argument("-o", "--out", dest="output", default=STDOUT, help="Output file, '-' for stdout.")
    p.add_argument(
        "-f",
        "--format",
        choices=[f.value for f in OutputFormat],
        default=None,
        help="Output format (default from configuration: md).",
    )
    p.add_argument(
        "-t",
        "--threads",
        type=_threads_arg,
        default=None,
        help="Worker threads: 'auto' or a positive integer.",
    )
    p.add_argument("--max-size", default=None, help="Stub files above this size (e.g. 512K, 4M).")
    p.add_argument("-q", "--quiet", action="store_true", help="Only log errors.")
    p.add_argument("--config", type=Path, default=None, help="Extra configuration file.")
    p.add_argument("--init-config", action="store_true", help="Print the default configuration.")
    p.add_argument(
        "--validate-config",
        action="store_true",
        help="Check the configuration files and exit.",
    )
    p.add_argument(
        "--unsafe-logging",
        action="store_true",
        help="Show matched text in filter logs.",
    )
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """Load layered configuration, then apply command-line overrides."""
    settings = Settings.load(args.config)
    update: dict[str, object] = {}
    if args.threads is not None:
        update["threads"] = args.threads
    if args.max_size is not None:
        update["max_size"] = args.max_size
    if args.format is not None:
        update["format"] = OutputFormat(args.format)
    if args.unsafe_logging:
        logger.warning("Unsafe logging enabled: matched sensitive text will appear in logs")
        update["safe_logging"] = False
    return settings.model_copy(update=update) if update else settings


def snapshot(root: Path, settings: Settings) -> list[ProcessedFile]:
    """Walk, classify and filter every file under `root`.

    Run-level configuration errors (bad size, thread count or pattern)
    surface here, before the walk begins.

    Args:
        root (Path): local directory or file to snapshot
        settings (Settings): the resolved configuration

    Returns:
        list[ProcessedFile]: one entry per discovered file, sorted by path
    """
    limits = settings.run_limits()
    pipeline = FilterPipeline(settings.compile_rules(), safe_logging=limits.safe_logging)
    records = walk(root, ignore_git=settings.ignore_git, max_size=limits.max_size, threads=limits.threads)
    logger.info("Found %d file(s) under %s", len(records), root)
    return process_files(records, Processor(limits, pipeline), threads=limits.threads)


def write_output(text: str, output: str) -> None:
    if output == STDOUT:
        try:
            sys.stdout.write(text)
            sys.stdout.flush()
        except BrokenPipeError:
            # Reader went away (e.g. `| head`); silence the flush at interpreter exit.
            devnull = os.open(os.devnull, os.O_WRONLY)
            os.dup2(devnull, sys.stdout.fileno())
        return
    Path(output).write_text(text, encoding="utf-8")
    logger.info("Wrote %s", output)


def run(source: str, output: str, settings: Settings) -> int:
    writer = get_writer(settings.format)
    if is_remote_source(source) and not Path(source).exists():
        with clone_source(source) as root:
            files = snapshot(root, settings)
    else:
        files = snapshot(Path(source), settings)

    text = writer.render(files)
    write_output(text, output)
    logger.info("Output: %d chars, ~%d tokens (%s)", len(text), estimate_tokens(text), writer.fmt.value)
    return 0


def print_validation(report: ConfigValidation) -> int:
    print("Configuration files:")
    for path, found in report.discovered:
        print(f"  [{'found' if found else 'missing'}] {path}")
    for err in report.errors:
        print(f"ERROR: {err}")
    for warn in report.warnings:
        print(f"WARNING: {warn}")
    if report.errors:
        return 1
    print("Configuration is valid.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.log_file:
        setup_logging(args.log_file)
    configure_level(quiet=args.quiet)

    if args.init_config:
        sys.stdout.write(Settings().to_yaml())
        return 0
    if args.validate_config:
        return print_validation(validate_configuration(args.config))

    try:
        return run(args.source, args.output, load_settings(args))
    except (NomnomError, OSError) as e:
        logger.error("nomnom failed: %s", e)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
