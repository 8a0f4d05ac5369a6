from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DATA_DIR = Path(__file__).resolve().parent / "data"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ICS_", env_file=".env")

    environment: str = "development"
    data_dir: Path = PACKAGE_DATA_DIR
    output_dir: Path = Path("results")
    random_seed: int = 42
    save_formats: List[str] = ["png", "pdf"]
    dpi: int = 300
    delimiter: str = "_"


settings = Settings()
