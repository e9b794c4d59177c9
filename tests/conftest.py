from __future__ import annotations

from pathlib import Path

import pytest

from cadence.catalog import Catalog

CATALOG_PATH = Path(__file__).resolve().parents[1] / "catalog" / "cadence.yaml"

WORKFLOW_YAML = """
on:
  schedule:
    - cron: "0 */12 * * *"
  workflow_dispatch:

jobs:
  update_top_ranking_issues:
    runs-on: ubuntu-latest
    if: github.repository_owner == 'zed-industries'
    steps:
      - uses: actions/checkout@v4
      - name: Set up uv
        uses: astral-sh/setup-uv@v3
        with:
          version: "latest"
          enable-cache: true
      - name: Install dependencies
        run: uv sync --project script/update_top_ranking_issues -p 3.12
      - name: Run script
        run: uv run --project script/update_top_ranking_issues script/update_top_ranking_issues/main.py --github-token ${{ secrets.GITHUB_TOKEN }} --issue-reference-number 5393
"""


@pytest.fixture
def catalog() -> Catalog:
    return Catalog.from_file(CATALOG_PATH)


@pytest.fixture
def workflow_path(tmp_path: Path) -> Path:
    path = tmp_path / "update_all_top_ranking_issues.yml"
    path.write_text(WORKFLOW_YAML)
    return path
