"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Item Cropper API"
    debug: bool = False

    # CORS - Allow all origins for prototype (restrict in production)
    cors_origins: list[str] = ["*"]

    # Upload limits
    max_upload_size_mb: int = 25
    min_image_dimension: int = 100  # Must fit at least one minimum-size box
    max_sessions: int = 5  # Images active in one workspace

    # View / interaction
    max_render_width: int = 900
    max_render_height: int = 640
    zoom_min: float = 0.5
    zoom_max: float = 3.0
    zoom_step: float = 0.25
    corner_handle_size: int = 15  # Also the hit margin around each box
    edge_handle_size: int = 8
    nudge_step: int = 1
    nudge_step_large: int = 10  # With shift held
    rotation_step: float = 0.15

    # Box geometry
    min_box_width: int = 50
    min_box_height: int = 20
    box_palette: list[str] = [
        "#00ff00", "#ff0000", "#0000ff", "#ffff00",
        "#ff00ff", "#00ffff", "#ffa500", "#800080",
    ]
    screenshot_palette: list[str] = ["#00bcd4", "#ff9800"]

    # Seeding layout (catalog mode stacks boxes vertically)
    catalog_box_width: int = 420
    catalog_box_height: int = 120
    catalog_box_margin: int = 10
    catalog_origin: int = 50
    placeholder_box_width: int = 400

    # OCR engine (EasyOCR)
    ocr_lang: str = "en"
    ocr_model_dir: str | None = None
    ocr_pool_size: int = 2  # Reader instances are expensive (model load)
    ocr_gpu: bool = False

    # Detection preprocessing
    detect_max_width: int = 2200
    secondary_roi_max_width: int = 1600
    strong_contrast_gain: float = 1.4
    strong_contrast_bias: float = -10.0
    strong_threshold: int = 170

    # PRIMARY strategy (catalog edges)
    primary_min_conf: float = 60.0
    primary_edge_pct: float = 0.12
    primary_min_height_pct: float = 0.010
    primary_max_height_pct: float = 0.06
    primary_min_aspect: float = 0.9
    primary_max_aspect: float = 6.0
    primary_row_merge_pct: float = 0.015
    primary_row_merge_min: int = 15

    # SECONDARY strategy (bottom-left region)
    secondary_min_conf: float = 55.0
    secondary_roi_width_pct: float = 0.35
    secondary_roi_height_pct: float = 0.30
    secondary_min_height: int = 20
    secondary_min_height_pct: float = 0.018
    secondary_max_height_pct: float = 0.12
    secondary_min_aspect: float = 0.6
    secondary_max_aspect: float = 10.0
    secondary_max_results: int = 3

    # Strategy selector aliases (vendor workflow names)
    strategy_aliases: dict[str, str] = {"presto": "primary", "nurre": "secondary"}

    # Vendor prefixes applied to item labels
    vendor_prefixes: dict[str, str] = {
        "Presto Moulding": "PR",
        "Studio Moulding": "ST",
        "Décor Moulding": "DM",
        "Bella Moulding": "BM",
        "Metro Moulding": "MM",
        "Nurre Caxton": "NC",
    }

    # Extraction output
    crops_dir: str = "public/crops"
    crops_url_prefix: str = "/crops"
    extraction_workers: int = 1  # Per-image box parallelism

    # Save-all loop: stop at first failed image (see DESIGN.md)
    save_abort_on_failure: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
