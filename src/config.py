"""
Configuration management for the cascade counterfactual engine.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Application configuration settings."""

    # Base paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    SCENARIOS_DIR: Path = Path(os.getenv("SCENARIOS_DIR", str(PROJECT_ROOT / "scenarios")))
    RUNS_DIR: Path = Path(os.getenv("RUNS_DIR", str(PROJECT_ROOT / "runs")))

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Model settings
    DEFAULT_RANDOM_SEED: int = int(os.getenv("RANDOM_SEED", "42"))

    # Fraction of a tier total that counts as "at the boundary" for the SCM
    BOUNDARY_MARGIN: float = float(os.getenv("BOUNDARY_MARGIN", "0.01"))

    # Largest negative excursion (fraction of a tier total) the integrator clamps
    NEGATIVE_TOLERANCE: float = float(os.getenv("NEGATIVE_TOLERANCE", "0.01"))

    # Langevin diffusion scale (1/sqrt(system size))
    NOISE_SCALE: float = float(os.getenv("NOISE_SCALE", "0.1"))

    # Trial parallelism for the sensitivity harness
    MAX_WORKERS: int = int(os.getenv("MAX_WORKERS", "1"))

    @classmethod
    def ensure_directories(cls) -> None:
        """Ensure all required directories exist."""
        cls.RUNS_DIR.mkdir(parents=True, exist_ok=True)


# Initialize directories on import
Config.ensure_directories()
