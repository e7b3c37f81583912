"""Global settings for producers and the screenshot collaborator."""

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class FinderSettings(BaseSettings):
    # Facebook Graph API
    facebook_access_token: str = ""
    facebook_api_version: str = "v21.0"
    default_country: str = "CO"

    # Graph pagination
    graph_max_pages: int = 10
    graph_page_limit: int = 100
    graph_page_delay_ms: int = 500
    graph_timeout_sec: float = 30.0

    # Multi-query scraping
    variation_limit: int = 500
    variation_delay_ms: int = 1_000
    web_scraping_max_ads: int = 300

    # Apify
    apify_api_token: str = ""
    apify_actor_id: str = "XtaWFhbtfxyzqrFmd"
    apify_default_count: int = 100

    # Screenshots
    screenshots_enabled: bool = True
    screenshot_dir: str = "screenshots"
    screenshot_batch_size: int = 10
    screenshot_timeout_ms: int = 30_000
    headless: bool = True

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def graph_base_url(self) -> str:
        return f"https://graph.facebook.com/{self.facebook_api_version}/ads_archive"


finder_settings = FinderSettings()
