import os
import tempfile
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv

# Load .env from project root
_project_root = Path(__file__).parent.parent.parent
load_dotenv(_project_root / ".env")

APP_VERSION = os.getenv("NETPULSE_VERSION", "0.3.0")

# Temporary directory (cross-platform)
TMPDIR = os.getenv("NETPULSE_TMPDIR", os.path.join(tempfile.gettempdir(), "netpulse"))
LOG_FILE = os.path.join(TMPDIR, "netpulse.log")
LOG_LEVEL = os.getenv("NETPULSE_LOG_LEVEL", "DEBUG")

# Scheduler cadence (seconds)
INTERFACE_POLL_INTERVAL = float(os.getenv("NETPULSE_INTERFACE_POLL_INTERVAL", "1"))
QUICK_CHECK_INTERVAL = float(os.getenv("NETPULSE_QUICK_CHECK_INTERVAL", "15"))
COMPREHENSIVE_CHECK_INTERVAL = float(os.getenv("NETPULSE_COMPREHENSIVE_CHECK_INTERVAL", "60"))
QUICK_CHECK_SKIP_WINDOW = float(os.getenv("NETPULSE_QUICK_CHECK_SKIP_WINDOW", "2"))
NETWORK_CHANGE_DEBOUNCE = float(os.getenv("NETPULSE_NETWORK_CHANGE_DEBOUNCE", "0.5"))

# Stable mode: slow down after a long quiet period
STABILITY_THRESHOLD = float(os.getenv("NETPULSE_STABILITY_THRESHOLD", "300"))
STABLE_MULTIPLIER = float(os.getenv("NETPULSE_STABLE_MULTIPLIER", "2"))

# State reconciler
INIT_GRACE_PERIOD = float(os.getenv("NETPULSE_INIT_GRACE_PERIOD", "10"))
HYSTERESIS_DELAY = float(os.getenv("NETPULSE_HYSTERESIS_DELAY", "2"))
REQUIRED_CONSECUTIVE_CHECKS = int(os.getenv("NETPULSE_REQUIRED_CONSECUTIVE_CHECKS", "1"))
DEBOUNCE_DELAY = float(os.getenv("NETPULSE_DEBOUNCE_DELAY", "1"))
FLIP_FLOP_WINDOW = float(os.getenv("NETPULSE_FLIP_FLOP_WINDOW", "60"))
MAX_HISTORY_SIZE = 10
FLIP_FLOP_SAMPLE_SIZE = 5
APPLY_MAX_RETRIES = 10
APPLY_RETRY_BASE_DELAY = 0.05
APPLY_RETRY_MAX_DELAY = 1.0

# VPN detection
VPN_STARTUP_GRACE = float(os.getenv("NETPULSE_VPN_STARTUP_GRACE", "5"))

# Probes (seconds)
ENDPOINT_TIMEOUT = float(os.getenv("NETPULSE_ENDPOINT_TIMEOUT", "3"))
PROBE_GRACE = float(os.getenv("NETPULSE_PROBE_GRACE", "1"))
DNS_TIMEOUT = float(os.getenv("NETPULSE_DNS_TIMEOUT", "3"))
SUBPROCESS_TIMEOUT = float(os.getenv("NETPULSE_SUBPROCESS_TIMEOUT", "5"))
MAX_SUBPROCESS_OUTPUT = 64 * 1024
INTERFACE_SNAPSHOT_TIMEOUT = 2.0
FORCE_CHECK_TIMEOUT = float(os.getenv("NETPULSE_FORCE_CHECK_TIMEOUT", "15"))
PROBE_WORKERS = int(os.getenv("NETPULSE_PROBE_WORKERS", "12"))

# DNS
DNS_TEST_HOSTS = [
    h.strip() for h in os.getenv("NETPULSE_DNS_TEST_HOSTS", "google.com,cloudflare.com").split(",") if h.strip()
]
NSLOOKUP_SERVER = os.getenv("NETPULSE_NSLOOKUP_SERVER", "8.8.8.8")

# Platform event watcher (ip monitor / route monitor)
PLATFORM_EVENTS = os.getenv("NETPULSE_PLATFORM_EVENTS", "1") not in ("0", "false", "False", "")

# Weighted endpoints for comprehensive checks
DEFAULT_ENDPOINTS = [
    {"name": "google-204", "url": "https://www.google.com/generate_204", "weight": 1.0},
    {"name": "ubuntu-connectivity", "url": "https://connectivity-check.ubuntu.com", "weight": 0.8},
    {"name": "apple-captive", "url": "http://captive.apple.com/hotspot-detect.html", "weight": 0.8},
    {"name": "msft-connecttest", "url": "http://www.msftconnecttest.com/connecttest.txt", "weight": 0.8},
    {"name": "cloudflare-dns", "host": "1.1.1.1", "port": 443, "timeout": 2.0, "weight": 0.6},
    {"name": "google-dns", "host": "8.8.8.8", "port": 443, "timeout": 2.0, "weight": 0.6},
]

# Quick checks: primary first, the rest are fallbacks for ambiguous failures
QUICK_ENDPOINTS = [
    {"name": "Google DNS", "host": "8.8.8.8", "port": 443},
    {"name": "Google DNS Secondary", "host": "8.8.4.4", "port": 443},
]
