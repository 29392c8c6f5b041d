import argparse
import sys
import threading

from rich.console import Console

from nodehog.conductor.recorder import ConfigMapStateRecorder, FileStateRecorder, StateRecorder
from nodehog.conductor.recovery import recover
from nodehog.conductor.report import render_result, write_result
from nodehog.conductor.sequencer import ExperimentSequencer
from nodehog.config import ExperimentConfig
from nodehog.errors import NodeHogError
from nodehog.logger import init_logger
from nodehog.models import ExperimentResult, Verdict
from nodehog.service.kubectl import KubeCtl
from nodehog.utils.sigint_aware_section import SigintAwareSection


def load_config(args) -> ExperimentConfig:
    if args.config:
        return ExperimentConfig.from_yaml(args.config)
    return ExperimentConfig.from_env()


def make_recorder(args, kubectl: KubeCtl, config: ExperimentConfig) -> StateRecorder:
    if args.state_backend == "configmap":
        return ConfigMapStateRecorder(kubectl, config.chaos_namespace)
    return FileStateRecorder(args.state_dir)


def run_experiment(args) -> ExperimentResult:
    config = load_config(args)
    kubectl = KubeCtl(namespace=config.chaos_namespace)
    recorder = make_recorder(args, kubectl, config)
    cancel_event = threading.Event()
    sequencer = ExperimentSequencer(kubectl, config, recorder, cancel_event=cancel_event)
    with SigintAwareSection(cancel_event):
        return sequencer.run()


def recover_experiment(args) -> ExperimentResult:
    config = load_config(args)
    kubectl = KubeCtl(namespace=config.chaos_namespace)
    recorder = make_recorder(args, kubectl, config)
    return recover(args.run_id, kubectl, config, recorder)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inject CPU exhaustion onto cluster nodes")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML file with the experiment parameters (default: read from the environment)",
    )
    parser.add_argument(
        "--state-backend",
        choices=["file", "configmap"],
        default="file",
        help="Where to record experiment state for recovery",
    )
    parser.add_argument("--state-dir", type=str, default=".nodehog", help="Directory for the file state backend")
    parser.add_argument("--output", type=str, default=None, help="Write the final result to this YAML file")
    parser.add_argument("--log-level", type=str, default=None, help="Logging level (default: NODEHOG_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Run a node CPU hog experiment")
    recover_parser = subparsers.add_parser("recover", help="Clean up the helpers of an interrupted run")
    recover_parser.add_argument("run_id", type=str, help="Run id of the interrupted experiment")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_logger(args.log_level)
    console = Console()

    try:
        if args.command == "recover":
            result = recover_experiment(args)
        else:
            result = run_experiment(args)
    except NodeHogError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        return 2

    render_result(result, console)
    if args.output:
        write_result(result, args.output)
        console.print(f"Result written to {args.output}")
    return 0 if result.verdict == Verdict.PASS else 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
