from pathlib import Path
import textwrap

import pytest

from cadre_mcp.roles import WorkerRole
from cadre_mcp.workflows import WorkflowLoadError, WorkflowLoader


def write_workflow(path: Path, *, threshold: float) -> None:
    path.write_text(
        textwrap.dedent(
            """
            name: sample
            pipeline:
              - backend
              - review
              - qa
            review_threshold: {threshold}
            description: Sample flow
            """
        ).strip().format(threshold=threshold),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_workflow(base / "sample.yaml", threshold=0.6)
    write_workflow(override / "sample.yaml", threshold=0.9)

    loader = WorkflowLoader([base, override])
    workflows = loader.load_all()

    assert workflows["sample"].review_threshold == 0.9
    assert workflows["sample"].pipeline == (WorkerRole.BACKEND, WorkerRole.REVIEW, WorkerRole.QA)


def test_loader_always_provides_default(tmp_path: Path) -> None:
    loader = WorkflowLoader([tmp_path, tmp_path / "missing"])

    workflows = loader.load_all()

    assert list(workflows) == ["default"]
    assert workflows["default"].entry_stage is WorkerRole.BACKEND
    assert loader.get("unknown").name == "default"
    assert loader.search_paths == [tmp_path]


def test_loader_reads_workflows_mapping(tmp_path: Path) -> None:
    (tmp_path / "flows.yml").write_text(
        textwrap.dedent(
            """
            workflows:
              hotfix:
                pipeline: [backend, qa]
              docs:
                pipeline: [frontend]
                max_retries: 0
            """
        ),
        encoding="utf-8",
    )

    workflows = WorkflowLoader([tmp_path]).load_all()

    assert workflows["hotfix"].pipeline == (WorkerRole.BACKEND, WorkerRole.QA)
    assert workflows["docs"].max_retries == 0


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("name: broken\npipeline: [backend, designer]", encoding="utf-8")

    loader = WorkflowLoader([invalid])

    with pytest.raises(WorkflowLoadError):
        loader.load_all()


def test_loader_rejects_repeated_stage(tmp_path: Path) -> None:
    (tmp_path / "loop.yaml").write_text("name: loop\npipeline: [backend, backend]", encoding="utf-8")

    with pytest.raises(WorkflowLoadError):
        WorkflowLoader([tmp_path]).load_all()


def test_reload_picks_up_new_files(tmp_path: Path) -> None:
    loader = WorkflowLoader([tmp_path])
    assert loader.get("sample").name == "default"

    write_workflow(tmp_path / "sample.yaml", threshold=0.5)

    assert loader.get("sample").name == "default"
    assert "sample" in loader.reload()
    assert loader.get("sample").review_threshold == 0.5
