"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- Shortcuts for building a model and running the full analysis over
  snapshots written with `tests.crate_builders`.
"""

import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add src to path so we can import 'unsafe_ledger' without installing it
root_path = Path(__file__).parent.parent
sys.path.insert(0, str(root_path / "src"))
sys.path.insert(0, str(root_path))

from tests.crate_builders import snapshot  # noqa: E402
from unsafe_ledger.config import AnalysisConfig  # noqa: E402
from unsafe_ledger.core.analysis_result import AnalysisResult  # noqa: E402
from unsafe_ledger.core.engine import LedgerEngine  # noqa: E402
from unsafe_ledger.model.builder import ItemModelBuilder  # noqa: E402
from unsafe_ledger.model.items import ItemModel  # noqa: E402


@pytest.fixture
def build() -> Callable[..., ItemModel]:
  """
  Builds an ItemModel from snapshot items.
  """

  def _build(*items: Dict[str, Any], modules: Optional[List[Any]] = None, **config: Any) -> ItemModel:
    return ItemModelBuilder(AnalysisConfig(**config)).build(snapshot(*items, modules=modules))

  return _build


@pytest.fixture
def analyze() -> Callable[..., AnalysisResult]:
  """
  Runs the full engine over snapshot items.
  """

  def _analyze(
    *items: Dict[str, Any],
    modules: Optional[List[Any]] = None,
    criterion: str = "module",
    **config: Any,
  ) -> AnalysisResult:
    engine = LedgerEngine(AnalysisConfig(criterion=criterion, **config))
    return engine.run(snapshot(*items, modules=modules))

  return _analyze
