# config.py
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

RSS_SOURCES = [
    # Geopolitics
    {"name": "BBC World", "url": "http://feeds.bbci.co.uk/news/world/rss.xml", "domain": "geopolitics"},
    {"name": "Al Jazeera", "url": "https://www.aljazeera.com/xml/rss/all.xml", "domain": "geopolitics"},
    {"name": "r/worldnews", "url": "https://www.reddit.com/r/worldnews/hot.rss", "domain": "socmint"},
    {"name": "r/geopolitics", "url": "https://www.reddit.com/r/geopolitics/hot.rss", "domain": "socmint"},
]

# Public channels the bot is a member of (username, no "@")
TELEGRAM_CHANNELS = [
    "war_monitors",
    "sentdefender",
    "noelreports",
    "IntelRepublic",
]

# Credentials / paths
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
OPENCAGE_API_KEY = os.getenv("OPENCAGE_API_KEY", "")
DB_PATH = Path(os.getenv("INCIDENTWATCH_DB", str(Path(__file__).resolve().parent / "events.duckdb")))
GEO_INDEX_PATH = Path(os.getenv("GEO_INDEX_PATH", "data/geo_index.csv"))

# Ingestion
MIN_TEXT_LENGTH = 20
STABLE_KEY_EXCERPT = 100
TITLE_MAX_LENGTH = 120
SUMMARY_MAX_LENGTH = 500
AUTO_CONFIDENCE = 40  # unverified automated sourcing
DUPLICATE_TITLE_WINDOW_DAYS = 7
RSS_LIMIT_PER_FEED = 35
HTTP_TIMEOUT_SEC = 10

# Geocoding (OpenCage free tier: 1 req/sec)
GEOCODE_DEFAULT_LIMIT = 50
GEOCODE_MAX_LIMIT = 100
GEOCODE_MIN_INTERVAL_SEC = 1.1

# Roles allowed to trigger batch jobs
ADMIN_ROLES = {"admin", "analyst", "service"}
