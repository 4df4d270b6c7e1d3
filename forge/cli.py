#!/usr/bin/env python3
"""forge CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from forge.commands import feature as cmd_feature_module
from forge.commands import reset as cmd_reset_module
from forge.commands import run as cmd_run_module
from forge.commands import status as cmd_status_module
from forge.lib.config import ConfigError, PipelineConfig, load_pipeline_config


def get_config(args) -> PipelineConfig:
    """Load forge.yaml from --config or the current directory."""
    if args.config and not Path(args.config).exists():
        print(f"ERROR: Config file not found: {args.config}")
        sys.exit(2)
    try:
        return load_pipeline_config(Path(args.config).resolve() if args.config else None)
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(2)


def cmd_run(args):
    return cmd_run_module.cmd_run(args, get_config(args))


def cmd_feature(args):
    return cmd_feature_module.cmd_feature(args, get_config(args))


def cmd_approve(args):
    return cmd_feature_module.cmd_approve(args, get_config(args))


def cmd_reset(args):
    return cmd_reset_module.cmd_reset(args, get_config(args))


def cmd_status(args):
    return cmd_status_module.cmd_status(args, get_config(args))


def cmd_report(args):
    return cmd_status_module.cmd_report(args, get_config(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='forge', description='Versioned-document phase pipeline')
    parser.add_argument('--config', '-c', help='Path to forge.yaml (default: ./forge.yaml)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # forge run
    p_run = subparsers.add_parser('run', help='Run every declared phase')
    p_run.add_argument('--requirements', '-r', required=True, help='Requirements file')
    p_run.add_argument('--document', '-d', help='Document path (default from config)')
    p_run.add_argument('--continue-on-error', action='store_true', default=None,
                       help='Record failures and keep going')
    p_run.add_argument('--clean-artifacts', action='store_true', help='Delete generated code first')
    p_run.add_argument('--reset-sections', metavar='MODE',
                       help='Reset before running: downstream, all, or a,b,c')
    p_run.add_argument('--report', action=argparse.BooleanOptionalAction, default=None,
                       help='Write the KPI report (default from config)')
    p_run.add_argument('--report-dir', help='KPI report directory')
    p_run.set_defaults(func=cmd_run)

    # forge feature
    p_feature = subparsers.add_parser('feature', help='Run or resume a feature')
    p_feature.add_argument('name', help='Feature name')
    p_feature.add_argument('--requirements', '-r', required=True, help='Requirements file')
    p_feature.add_argument('--start-phase', help='Resume from this phase')
    p_feature.add_argument('--no-validate', action='store_true', help='Skip the validation gate')
    p_feature.add_argument('--dry-run', action='store_true', help='Show the plan without running')
    p_feature.add_argument('--skip-cleanup', action='store_true',
                           help='Do not reset sections when resuming')
    p_feature.set_defaults(func=cmd_feature)

    # forge approve
    p_approve = subparsers.add_parser('approve', help='Approve a feature ready for review')
    p_approve.add_argument('name', help='Feature name')
    p_approve.add_argument('--notes', '-m', help='Review notes')
    p_approve.set_defaults(func=cmd_approve)

    # forge reset
    p_reset = subparsers.add_parser('reset', help='Reset document sections to pending')
    p_reset.add_argument('--sections', '-s', required=True, metavar='MODE',
                         help='downstream, all, or a,b,c')
    p_reset.add_argument('--document', '-d', help='Document path (default from config)')
    p_reset.set_defaults(func=cmd_reset)

    # forge status
    p_status = subparsers.add_parser('status', help='Show document status')
    p_status.add_argument('--document', '-d', help='Document path (default from config)')
    p_status.set_defaults(func=cmd_status)

    # forge report
    p_report = subparsers.add_parser('report', help='Write the KPI report')
    p_report.add_argument('--document', '-d', help='Document path (default from config)')
    p_report.add_argument('--report-dir', help='KPI report directory')
    p_report.set_defaults(func=cmd_report)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
