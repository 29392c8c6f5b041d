import yaml
from rich.console import Console

from nodehog.conductor.report import render_result, write_result
from nodehog.models import ExperimentPhase, ExperimentResult, TargetDetail, Verdict


def sample_result():
    return ExperimentResult(
        run_id="run-9",
        verdict=Verdict.FAIL,
        phase=ExperimentPhase.COMPLETED,
        reason="1/2 targets did not succeed: node-b (Failed)",
        targets=[
            TargetDetail(node="node-a", phase="Succeeded", exit_reason="Completed", cleaned=True, node_ready_after=True),
            TargetDetail(
                node="node-b",
                phase="Failed",
                exit_reason="exit code 1: Error",
                error="ExecutionError",
                cleaned=True,
                node_ready_after=False,
            ),
        ],
    )


def test_render_result_shows_verdict_and_targets():
    console = Console(record=True, width=160)

    render_result(sample_result(), console)
    output = console.export_text()

    assert "Node CPU Hog" in output
    assert "Fail" in output
    assert "node-a" in output
    assert "exit code 1: Error" in output


def test_render_result_without_targets():
    console = Console(record=True, width=120)
    result = ExperimentResult(run_id="run-9", verdict=Verdict.FAIL, phase=ExperimentPhase.FAILED, reason="no nodes")

    render_result(result, console)

    assert "No targets were injected." in console.export_text()


def test_write_result(tmp_path):
    path = tmp_path / "result.yaml"

    write_result(sample_result(), str(path))
    data = yaml.safe_load(path.read_text())

    assert data["result"] == "Fail"
    assert data["succeeded"] == ["node-a"]
    assert data["failed"] == ["node-b"]
    assert data["perTargetDetail"][1] == {
        "node": "node-b",
        "phase": "Failed",
        "exitReason": "exit code 1: Error",
        "error": "ExecutionError",
        "cleaned": True,
        "nodeReadyAfter": False,
    }
