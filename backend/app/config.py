from __future__ import annotations

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Simplex
    simplex_max_iterations: int = 1000
    simplex_tolerance: float = 1e-10  # pivot selection noise floor
    binding_tolerance: float = 1e-6  # slack below this = binding row

    # Monte Carlo
    random_seed: Optional[int] = None

    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "GFA_"}


settings = Settings()
