"""Central configuration: paths, network and race constants."""
from pathlib import Path
import os

# ── Filesystem paths ──────────────────────────────────────────────────────────
ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("MXCOUNTER_DATA_DIR", ROOT / "data"))
STATE_FILE = Path(os.environ.get("MXCOUNTER_STATE_FILE", DATA_DIR / "race_data.json"))
RESULTS_FILE = Path(os.environ.get("MXCOUNTER_RESULTS_FILE", DATA_DIR / "results.html"))
STATIC_DIR = Path(os.environ.get("MXCOUNTER_STATIC_DIR", ROOT / "dist"))

# Optional mirror of the results document, e.g. a web server's docroot.
_public = os.environ.get("MXCOUNTER_PUBLIC_RESULTS_FILE")
PUBLIC_RESULTS_FILE = Path(_public) if _public else None

# Optional git checkout the public results file lives in; committed and pushed
# after every finished race.
_git_dir = os.environ.get("MXCOUNTER_PUBLISH_GIT_DIR")
PUBLISH_GIT_DIR = Path(_git_dir) if _git_dir else None
PUBLISH_GIT_REMOTE = os.environ.get("MXCOUNTER_PUBLISH_GIT_REMOTE", "origin")

# ── Network ───────────────────────────────────────────────────────────────────
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8765"))
CORS_ORIGINS = [
    o.strip() for o in os.environ.get("MXCOUNTER_CORS_ORIGINS", "*").split(",") if o.strip()
]

# ── Sessions ──────────────────────────────────────────────────────────────────
WS_KEEPALIVE_SECONDS = 60.0
SESSION_QUEUE_SIZE = 16      # snapshots buffered per client before the oldest is dropped

# ── Race ──────────────────────────────────────────────────────────────────────
DEFAULT_RACE_ID = "default"
DEFAULT_RACE_NAME = "Default Race"
DEFAULT_MAX_LAPS = 20
DEFAULT_RIDER_CLASS = os.environ.get("MXCOUNTER_DEFAULT_CLASS", "")
PENALTY_MS = 5_000           # added per addPenalty command
