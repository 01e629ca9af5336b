from __future__ import annotations

import pytest

from librarian.discovery import FALLBACK_RULES, Workspace, collect_project_info, script_companions
from librarian.errors import PathOutsideWorkspaceError


def test_listing_skips_excluded_and_hidden_dirs(write_files) -> None:
    root = write_files(
        {
            "src/app.py": "",
            "node_modules/lib/index.js": "",
            ".git/config": "",
            ".github/workflows/ci.yml": "",
            ".secret/notes.txt": "",
        }
    )

    assert Workspace(root).list_files() == [".github/workflows/ci.yml", "src/app.py"]


def test_listing_is_capped(write_files) -> None:
    root = write_files({f"f{index}.txt": "" for index in range(5)})

    assert len(Workspace(root, max_files=3).list_files()) == 3


def test_resolve_refuses_escape(tmp_path) -> None:
    workspace = Workspace(tmp_path)

    assert workspace.relative("./src/../src/app.py") == "src/app.py"
    with pytest.raises(PathOutsideWorkspaceError):
        workspace.resolve("../outside.txt")
    assert not workspace.exists("../outside.txt")


def test_testing_sweep_ranks_keyword_matches_first(write_files) -> None:
    root = write_files(
        {
            "tests/test_cart.py": "",
            "tests/test_checkout.py": "",
            "web/checkout.test.js": "",
            "src/checkout.py": "",
        }
    )

    found = FALLBACK_RULES["testing"].sweep(Workspace(root), ["checkout"], 2)

    assert found == ["tests/test_checkout.py", "web/checkout.test.js"]


def test_sweep_respects_exclusions(write_files) -> None:
    root = write_files({"Dockerfile": "", "deploy/compose.yaml": ""})

    found = FALLBACK_RULES["infra"].sweep(Workspace(root), [], 5, exclude=["Dockerfile"])

    assert found == ["deploy/compose.yaml"]
    assert FALLBACK_RULES["infra"].warning == "librarian_infra_candidates"


def test_script_companions_share_the_markup_directory() -> None:
    known = ["web/app.js", "web/app.test.js", "web/index.html", "lib/util.js", "web/styles.css"]

    assert script_companions(["web/index.html", "web/styles.css"], known) == ["web/app.js"]


def test_project_info_reads_readme_and_manifests(write_files) -> None:
    root = write_files(
        {
            "README.md": "# Shop\n\n![badge](x.svg)\n\nA small   storefront\nfor demos.\n",
            "pyproject.toml": "[project]\n",
            "docs/guide.md": "",
            "src/a.py": "",
            "src/b.py": "",
            "src/c.py": "",
        }
    )

    info = collect_project_info(Workspace(root))

    assert info.readme_path == "README.md"
    assert info.readme_summary == "A small storefront for demos."
    assert info.manifests == ("pyproject.toml",)
    assert info.docs == ("README.md", "docs/guide.md")
    assert info.file_types[0] == (".py", 3)
