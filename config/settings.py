"""
Configuration management for the timetable engine.
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Timetable Scheduling & Conflict Resolution Engine"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = False

    # Allocation
    allocation_strategy: str = "greedy"     # "greedy" or "cp_sat"
    division_order: str = "year_division"   # "year_division" or "config"
    session_order: str = "largest_first"    # "largest_first" or "config"
    default_teacher_max_load: int = 24
    default_lab_block_size: int = 2
    one_lecture_per_day: bool = True       # spread a subject over distinct days first

    # Solver (cp_sat strategy only)
    solver_timeout_seconds: int = 30
    solver_random_seed: int = 42
    solver_num_workers: int = 1

    # Logging
    log_level: str = "INFO"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_prefix = "TIMETABLE_"
        case_sensitive = False


settings = Settings()
