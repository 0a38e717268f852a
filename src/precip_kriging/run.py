from __future__ import annotations

import argparse

from .config import load_config
from .steps import STAGES, run_pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Variography and kriging of precipitation samples.")
    parser.add_argument("--config", required=True, help="Path to config YAML.")
    parser.add_argument(
        "--stage",
        default="all",
        choices=["all", *STAGES],
        help="Pipeline stage to run (variography always runs first).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Validate config and exit.")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    if args.dry_run:
        load_config(args.config)
        print("Config validation OK.")
        return
    run_pipeline(args.config, stage=args.stage)


if __name__ == "__main__":
    main()
