"""Evaluation configuration."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass
class EvalConfig:
    """Configuration for regression runs."""

    # Paths
    cases_path: Path = Path(__file__).parent / "data" / "cases.json"
    registry_path: Path = Path(__file__).parent / "data" / "registry.json"
    results_dir: Path = Path(__file__).parent / "results"

    # Execution settings
    delay_between_cases: float = 0.0
    timeout_per_case: float = 120.0

    # Context applied to every case
    tenant_id: str = "eval-tenant"
    current_date: str = field(default_factory=lambda: datetime.now().date().isoformat())

    # Run identification
    run_id: str = field(default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S"))

    @property
    def output_path(self) -> Path:
        """Path for results JSON."""
        return self.results_dir / f"{self.run_id}_results.json"
