"""Constants and defaults for netbench."""

import re

# Conditional spacing rule, e.g. ">100=50" sleeps 50ms when the prior metric exceeds 100
CONDITIONAL_SPACING_REGEX = re.compile(r"^([><])([0-9]+)=([0-9]+)$")

# Max size in bytes for small file tests (128KB)
SMALL_FILE_LIMIT = 131072

# Payload used when throughput_size is 0 (ping mode)
PING_PAYLOAD_BYTES = 8

BYTES_PER_MB = 1024 * 1024

# Default run settings
DEFAULT_DNS_RETRY = 2
DEFAULT_DNS_SAMPLES = 10
DEFAULT_DNS_TIMEOUT = 5
DEFAULT_LATENCY_INTERVAL = 0.2
DEFAULT_LATENCY_SAMPLES = 100
DEFAULT_LATENCY_TIMEOUT = 3
DEFAULT_SPACING_MS = 200
DEFAULT_TEST = "latency"
DEFAULT_THROUGHPUT_SIZE = 5
DEFAULT_THROUGHPUT_THREADS = "2"
DEFAULT_THROUGHPUT_URI = "/web-probe"
DEFAULT_THROUGHPUT_TOLERANCE = 0.6
DEFAULT_GEO_REGIONS = (
    "us_west", "us_central", "us_east", "canada", "eu_west", "eu_central",
    "eu_east", "oceania", "asia", "america_south", "africa",
)

# Throughput samples/timeout differ for small-file and time based tests
THROUGHPUT_SAMPLES_SHORT = 10
THROUGHPUT_SAMPLES_LONG = 5
THROUGHPUT_TIMEOUT_SHORT = 5
THROUGHPUT_TIMEOUT_LONG = 180

# Applied when --throughput_size is not set (MB)
DEFAULT_SAME_SIZES = {
    "continent": 10,
    "country": 20,
    "geo_region": 30,
    "provider": 10,
    "region": 100,
    "state": 50,
}

# Order in which throughput_same_* overrides are evaluated
SAME_SIZE_DIMENSIONS = ("continent", "country", "geo_region", "provider", "region", "service", "state")

CONTINENTS = ("eu", "oceania", "asia", "america_north", "america_south", "africa")

SERVICE_TYPES = ("compute", "paas", "storage", "cdn", "dns")

PROBE_NAMES = ("latency", "downlink", "uplink", "throughput", "dns")

# Service id suffixes ("provider:type") that imply a service type
SERVICE_ID_TYPES = {
    "servers": "compute",
    "vps": "compute",
    "compute": "compute",
    "storage": "storage",
    "cdn": "cdn",
    "dns": "dns",
}

# CDN endpoints only serve these downlink test file types
CDN_FILE_EXTENSIONS = ("png", "jpg", "gif", "js")

# Vantage point attributes that do not describe the remote side of an inverse record
INVERSE_CLEARED_META = ("meta_cpu", "meta_memory", "meta_memory_gb", "meta_memory_mb", "meta_os_info", "meta_resource_id")

# meta_* attribute -> test_* attribute swapped in inverse records
INVERSE_FIELD_PAIRS = {
    "meta_compute_service": "test_service",
    "meta_compute_service_id": "test_service_id",
    "meta_geo_region": "test_geo_region",
    "meta_instance_id": "test_instance_id",
    "meta_hostname": "test_endpoint",
    "meta_location": "test_location",
    "meta_location_country": "test_location_country",
    "meta_location_state": "test_location_state",
    "meta_provider": "test_provider",
    "meta_provider_id": "test_provider_id",
    "meta_region": "test_region",
}

# Public IP lookup fallback chain
IP_APIS = [
    "https://ipinfo.io/json",
    "https://ipapi.co/json/",
    "http://ip-api.com/json/?fields=status,message,query",
]

USER_AGENT = "netbench/0.1.0"

TRACEROUTE_LOG = "traceroute.log"

# Traceroute settings
TRACE_PROBES_PER_HOP = 3
TRACE_HOP_TIMEOUT = 2.0
TRACE_MAX_HOPS = 30

RESOLV_CONF = "/etc/resolv.conf"
