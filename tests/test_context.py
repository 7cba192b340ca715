from pathlib import Path

import pytest

from wiz.config import WizConfig
from wiz.context import (
    WorkspaceContext,
    load_context_documents,
    read_current_prd,
    resolve_slug,
    set_current_prd,
)
from wiz.errors import NotFoundError


def _prd(wiz_dir: Path, slug: str) -> None:
    (wiz_dir / slug / "phases").mkdir(parents=True)


def test_single_prd_is_selected_without_pointer(tmp_path: Path) -> None:
    wiz_dir = tmp_path / ".wiz"
    _prd(wiz_dir, "billing")
    (wiz_dir / "context").mkdir()

    assert resolve_slug(wiz_dir) == "billing"


def test_pointer_wins_over_candidates_and_explicit_wins_over_pointer(tmp_path: Path) -> None:
    wiz_dir = tmp_path / ".wiz"
    _prd(wiz_dir, "billing")
    _prd(wiz_dir, "search")

    with pytest.raises(NotFoundError, match="Several PRDs"):
        resolve_slug(wiz_dir)

    set_current_prd(wiz_dir, "search")

    assert read_current_prd(wiz_dir) == "search"
    assert (wiz_dir / "workspace.json").is_file()
    assert resolve_slug(wiz_dir) == "search"
    assert resolve_slug(wiz_dir, "billing") == "billing"


def test_unknown_slugs_are_rejected(tmp_path: Path) -> None:
    wiz_dir = tmp_path / ".wiz"

    with pytest.raises(NotFoundError, match="No PRD"):
        resolve_slug(wiz_dir)
    with pytest.raises(NotFoundError):
        set_current_prd(wiz_dir, "missing")
    _prd(wiz_dir, "billing")
    with pytest.raises(NotFoundError):
        resolve_slug(wiz_dir, "missing")


def test_context_documents_need_frontmatter_with_description(tmp_path: Path) -> None:
    context_dir = tmp_path / "context"
    (context_dir / "go").mkdir(parents=True)
    (context_dir / "go" / "errors.md").write_text(
        "---\ndescription: Go error handling\nlanguages: [go]\ntags: errors\n---\nWrap errors.\n",
        encoding="utf-8",
    )
    (context_dir / "general.md").write_text(
        "---\ndescription: House style\n---\nBe concise.\n", encoding="utf-8"
    )
    (context_dir / "no-description.md").write_text("---\ntags: [x]\n---\nbody\n", encoding="utf-8")
    (context_dir / "plain.md").write_text("# Just notes\n", encoding="utf-8")
    (context_dir / "broken.md").write_text("---\ndescription: [unclosed\n---\n", encoding="utf-8")

    documents = load_context_documents(context_dir)

    assert [doc.description for doc in documents] == ["House style", "Go error handling"]
    go_doc = documents[1]
    assert go_doc.languages == ("go",)
    assert go_doc.tags == ("errors",)
    assert go_doc.body == "Wrap errors."


def test_workspace_selects_documents_by_domain(tmp_path: Path) -> None:
    wiz_dir = tmp_path / ".wiz"
    _prd(wiz_dir, "billing")
    (wiz_dir / "context").mkdir()
    (wiz_dir / "context" / "go.md").write_text(
        "---\ndescription: Go rules\nlanguages: [Go]\n---\n", encoding="utf-8"
    )
    (wiz_dir / "context" / "all.md").write_text("---\ndescription: Everyone\n---\n", encoding="utf-8")

    workspace = WorkspaceContext.load(tmp_path, WizConfig.default())

    assert workspace.slug == "billing"
    assert workspace.phases_dir == (tmp_path / ".wiz" / "billing" / "phases").resolve()
    assert workspace.prompt_dir == workspace.wiz_dir / "prompts"
    assert [doc.description for doc in workspace.documents_for(["go"])] == ["Everyone", "Go rules"]
    assert [doc.description for doc in workspace.documents_for(["python"])] == ["Everyone"]
    assert workspace.relative(workspace.phases_dir / "phase1.md") == ".wiz/billing/phases/phase1.md"
