"""Configuration module for detox-dns."""
import os
import logging

# --- Configuration ---
LISTEN_PORT = int(os.getenv('LISTEN_PORT', 1053))
LISTEN_HOST = os.getenv('LISTEN_HOST', '0.0.0.0')
TCP_ENABLED = os.getenv('TCP_ENABLED', 'true').lower() == 'true'

# TLS_DNS can be a single upstream or a comma-separated list.
# Each entry is either host:port (DNS over TLS) or an https:// URL (DNS over HTTPS)
_tls_dns_env = os.getenv('TLS_DNS', 'dns.quad9.net:853')
TLS_DNS = [addr.strip() for addr in _tls_dns_env.split(',') if addr.strip()]

LOCAL_DNS = os.getenv('LOCAL_DNS', '119.29.29.29:53')
HONEYPOT_DNS = os.getenv('HONEYPOT_DNS', '198.11.138.248:53')
BOOTSTRAP_DNS = os.getenv('BOOTSTRAP_DNS', LOCAL_DNS.rsplit(':', 1)[0])
FALLBACK_TLS_DNS = os.getenv('FALLBACK_TLS_DNS', '9.9.9.9:853')

TLS_VERIFY = os.getenv('TLS_VERIFY', 'false').lower() == 'true'
TLS_SESSION_CACHE_SIZE = int(os.getenv('TLS_SESSION_CACHE_SIZE', 64))
DIAL_TIMEOUT = float(os.getenv('DIAL_TIMEOUT', 5.0))
QUERY_TIMEOUT = float(os.getenv('QUERY_TIMEOUT', 3.0))

DETECT_RETRIES = int(os.getenv('DETECT_RETRIES', 3))
MAX_CNAME_DEPTH = int(os.getenv('MAX_CNAME_DEPTH', 10))

CACHE_CAPACITY = int(os.getenv('CACHE_CAPACITY', 1024))
CACHE_TTL = int(os.getenv('CACHE_TTL', 300))
CACHE_FILE = os.getenv('CACHE_FILE', 'detect_cache.json')
CACHE_SWEEP_INTERVAL = int(os.getenv('CACHE_SWEEP_INTERVAL', CACHE_TTL))

FALLBACK_TO_SECURE = os.getenv('FALLBACK_TO_SECURE', 'false').lower() == 'true'

WORKER_COUNT = int(os.getenv('WORKER_COUNT', 10))
QUEUE_SIZE = int(os.getenv('QUEUE_SIZE', 1000))

HEALTH_ENABLED = os.getenv('HEALTH_ENABLED', 'true').lower() == 'true'
HEALTH_HOST = os.getenv('HEALTH_HOST', '0.0.0.0')
HEALTH_PORT = int(os.getenv('HEALTH_PORT', 8080))

STATS_INTERVAL = int(os.getenv('STATS_INTERVAL', 300))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# --- Logging Setup ---
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger("detox")
