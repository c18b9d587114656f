"""
Configuration module for the Order Intake engine
Environment-agnostic: Works locally, in Docker, and on Google Cloud
Loads environment variables and validates configuration
"""
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Get project root directory (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables from .env file (if exists - local dev only)
env_file = PROJECT_ROOT / '.env'
if env_file.exists():
    load_dotenv(env_file)

# ═══════════════════════════════════════════════════════════════════
# ENVIRONMENT DETECTION
# ═══════════════════════════════════════════════════════════════════

def detect_environment() -> str:
    """
    Detect which environment we're running in

    Returns:
        'cloud_run', 'kubernetes', 'docker', or 'local'
    """
    if os.getenv('K_SERVICE'):
        return 'cloud_run'

    if os.getenv('KUBERNETES_SERVICE_HOST'):
        return 'kubernetes'

    if Path('/.dockerenv').exists():
        return 'docker'

    if os.getenv('GOOGLE_CLOUD_PROJECT') or os.getenv('GCP_PROJECT'):
        return 'cloud_run'

    return 'local'

RUNTIME_ENVIRONMENT = detect_environment()

# ═══════════════════════════════════════════════════════════════════
# CREDENTIAL RESOLUTION - Google Sheets backends only
# ═══════════════════════════════════════════════════════════════════

_credentials_path = None  # Lazy loaded

def resolve_credentials() -> str:
    """
    Resolve Google Sheets credentials from multiple sources.
    Priority order:
    1. Local file (GOOGLE_SHEETS_CREDENTIALS_FILE env var or default path)
    2. JSON string in environment variable (GOOGLE_SHEETS_CREDENTIALS_JSON)
    3. Application Default Credentials (for Workload Identity)

    Returns:
        Path to credentials JSON file (may be temp file for JSON string sources)
        None if using Application Default Credentials
    """
    creds_file = os.getenv('GOOGLE_SHEETS_CREDENTIALS_FILE')
    if creds_file:
        if not os.path.isabs(creds_file):
            creds_file = str(PROJECT_ROOT / creds_file)
        if os.path.exists(creds_file):
            print(f"[CONFIG] Using credentials file: {creds_file}")
            return creds_file

    default_path = PROJECT_ROOT / 'config' / 'credentials.json'
    if default_path.exists():
        print(f"[CONFIG] Using default credentials file: {default_path}")
        return str(default_path)

    creds_json = os.getenv('GOOGLE_SHEETS_CREDENTIALS_JSON')
    if creds_json:
        temp_path = Path(tempfile.gettempdir()) / 'order_intake_credentials.json'
        temp_path.write_text(creds_json)
        print("[CONFIG] Using credentials from environment variable (GOOGLE_SHEETS_CREDENTIALS_JSON)")
        return str(temp_path)

    if RUNTIME_ENVIRONMENT in ('cloud_run', 'kubernetes'):
        print("[CONFIG] Using Application Default Credentials (Workload Identity)")
        return None  # Signal to use ADC

    raise ValueError(
        "No valid credentials source found. Set one of:\n"
        "  - GOOGLE_SHEETS_CREDENTIALS_FILE (path to JSON file)\n"
        "  - GOOGLE_SHEETS_CREDENTIALS_JSON (JSON string)\n"
        "  - Place credentials.json in config/ folder"
    )

def get_credentials_path():
    """Get credentials path (lazy loaded)"""
    global _credentials_path
    if _credentials_path is None:
        _credentials_path = resolve_credentials()
    return _credentials_path

# ═══════════════════════════════════════════════════════════════════
# WRITABLE PATHS - Handle containerized environments
# ═══════════════════════════════════════════════════════════════════

def get_writable_path(folder_name: str) -> str:
    """Get a writable path that works in all environments"""
    env_path = os.getenv(folder_name.upper() + '_FOLDER')
    if env_path:
        if os.path.isabs(env_path):
            path = Path(env_path)
        else:
            path = PROJECT_ROOT / env_path
    else:
        path = PROJECT_ROOT / folder_name

    # In containers, /app might be read-only; use /tmp as fallback
    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except (PermissionError, OSError):
            path = Path(tempfile.gettempdir()) / 'order_intake' / folder_name
            path.mkdir(parents=True, exist_ok=True)

    return str(path)

# ═══════════════════════════════════════════════════════════════════
# COLLABORATOR BACKENDS
# ═══════════════════════════════════════════════════════════════════

# Base URL of the point-of-sale backend (interpret / search / orders / me)
INTAKE_API_BASE_URL = os.getenv('INTAKE_API_BASE_URL', 'http://localhost:3000/endpoints').rstrip('/')
INTAKE_API_TOKEN = os.getenv('INTAKE_API_TOKEN')  # Sent as Bearer token when set
HTTP_TIMEOUT_SECONDS = float(os.getenv('HTTP_TIMEOUT_SECONDS', '15'))

INTERPRET_ENDPOINT = os.getenv('INTERPRET_ENDPOINT', '/products/interpret')
CATALOG_SEARCH_ENDPOINT = os.getenv('CATALOG_SEARCH_ENDPOINT', '/products/search')
ORDERS_ENDPOINT = os.getenv('ORDERS_ENDPOINT', '/orders')
IDENTITY_ENDPOINT = os.getenv('IDENTITY_ENDPOINT', '/me')

# Backend selection
INTERPRETER_SOURCE = os.getenv('INTERPRETER_SOURCE', 'http')  # 'http' or 'gemini'
CATALOG_SOURCE = os.getenv('CATALOG_SOURCE', 'http')  # 'http' or 'google_sheet'
ORDER_BACKEND = os.getenv('ORDER_BACKEND', 'http')  # 'http' or 'google_sheet'
GEOCODER_PROVIDER = os.getenv('GEOCODER_PROVIDER', 'opencage')  # 'opencage' or 'nominatim'

# Google Gemini Configuration
GOOGLE_API_KEY = os.getenv('GOOGLE_API_KEY')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')

# Geocoding Configuration
OPENCAGE_API_KEY = os.getenv('OPENCAGE_API_KEY')
OPENCAGE_URL = os.getenv('OPENCAGE_URL', 'https://api.opencagedata.com/geocode/v1/json')
NOMINATIM_URL = os.getenv('NOMINATIM_URL', 'https://nominatim.openstreetmap.org/search')
NOMINATIM_USER_AGENT = os.getenv('NOMINATIM_USER_AGENT', 'order-intake/1.0')
GEOCODE_COUNTRY_CODE = os.getenv('GEOCODE_COUNTRY_CODE', 'bo')
GEOCODE_LANGUAGE = os.getenv('GEOCODE_LANGUAGE', 'es')

# Google Sheets Configuration (catalog / order backends)
GOOGLE_SHEET_ID = os.getenv('GOOGLE_SHEET_ID')
CATALOG_SHEET_ID = os.getenv('CATALOG_SHEET_ID') or GOOGLE_SHEET_ID
CATALOG_SHEET_NAME = os.getenv('CATALOG_SHEET_NAME', 'Products')
ORDER_SUMMARY_SHEET = os.getenv('ORDER_SUMMARY_SHEET', 'Orders')
ORDER_LINE_ITEMS_SHEET = os.getenv('ORDER_LINE_ITEMS_SHEET', 'Order_Line_Items')

# Image storage
IMAGE_FOLDER = get_writable_path('images')
IMAGE_MAX_WIDTH = int(os.getenv('IMAGE_MAX_WIDTH', '720'))
IMAGE_JPEG_QUALITY = int(os.getenv('IMAGE_JPEG_QUALITY', '72'))

# ═══════════════════════════════════════════════════════════════════
# WORKFLOW RULES
# ═══════════════════════════════════════════════════════════════════

# Phone normalization (Bolivia)
PHONE_COUNTRY_CODE = os.getenv('PHONE_COUNTRY_CODE', '591')
PHONE_LOCAL_DIGITS = int(os.getenv('PHONE_LOCAL_DIGITS', '8'))
PHONE_MOBILE_PREFIXES = tuple(
    p.strip() for p in os.getenv('PHONE_MOBILE_PREFIXES', '6,7').split(',') if p.strip()
)

# Catalog matching
CATALOG_MIN_QUERY_LENGTH = int(os.getenv('CATALOG_MIN_QUERY_LENGTH', '3'))
CATALOG_DEBOUNCE_MS = int(os.getenv('CATALOG_DEBOUNCE_MS', '350'))
CATALOG_SEARCH_LIMIT = int(os.getenv('CATALOG_SEARCH_LIMIT', '10'))
CATALOG_SEARCH_MAX_LIMIT = int(os.getenv('CATALOG_SEARCH_MAX_LIMIT', '50'))

# Address resolution
ADDRESS_MIN_LENGTH = int(os.getenv('ADDRESS_MIN_LENGTH', '5'))
GEOCODE_CITY_HINT = os.getenv('GEOCODE_CITY_HINT', 'Santa Cruz, Bolivia')

# Payment reconciliation
PAYMENT_EPSILON = float(os.getenv('PAYMENT_EPSILON', '0.01'))
MAX_PAYMENT_ENTRIES = int(os.getenv('MAX_PAYMENT_ENTRIES', '1'))

# Draft defaults
DEFAULT_SELLER_NAME = os.getenv('DEFAULT_SELLER_NAME', 'Vendedor')
DEFAULT_WINDOW_HOURS = int(os.getenv('DEFAULT_WINDOW_HOURS', '1'))

# ═══════════════════════════════════════════════════════════════════
# MONITORING
# ═══════════════════════════════════════════════════════════════════

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FOLDER = get_writable_path('logs')
LOG_FILE_MAX_MB = int(os.getenv('LOG_FILE_MAX_MB', '10'))
LOG_FILE_BACKUP_COUNT = int(os.getenv('LOG_FILE_BACKUP_COUNT', '5'))


def validate_config():
    """Validate that the configured backends have what they need"""
    errors = []

    print(f"[CONFIG] Runtime environment: {RUNTIME_ENVIRONMENT}")

    if INTERPRETER_SOURCE not in ('http', 'gemini'):
        errors.append(f"INTERPRETER_SOURCE must be 'http' or 'gemini' (got '{INTERPRETER_SOURCE}')")
    elif INTERPRETER_SOURCE == 'gemini' and not GOOGLE_API_KEY:
        errors.append("GOOGLE_API_KEY is not set (required by INTERPRETER_SOURCE=gemini)")

    if CATALOG_SOURCE not in ('http', 'google_sheet'):
        errors.append(f"CATALOG_SOURCE must be 'http' or 'google_sheet' (got '{CATALOG_SOURCE}')")

    if ORDER_BACKEND not in ('http', 'google_sheet'):
        errors.append(f"ORDER_BACKEND must be 'http' or 'google_sheet' (got '{ORDER_BACKEND}')")

    if GEOCODER_PROVIDER not in ('opencage', 'nominatim'):
        errors.append(f"GEOCODER_PROVIDER must be 'opencage' or 'nominatim' (got '{GEOCODER_PROVIDER}')")
    elif GEOCODER_PROVIDER == 'opencage' and not OPENCAGE_API_KEY:
        errors.append("OPENCAGE_API_KEY is not set (required by GEOCODER_PROVIDER=opencage)")

    if 'google_sheet' in (CATALOG_SOURCE, ORDER_BACKEND):
        if not GOOGLE_SHEET_ID and not CATALOG_SHEET_ID:
            errors.append("GOOGLE_SHEET_ID is not set (required by Google Sheets backends)")
        try:
            creds_path = get_credentials_path()
            if creds_path and not os.path.exists(creds_path):
                errors.append(f"Google Sheets credentials file not found: {creds_path}")
        except ValueError as e:
            errors.append(str(e))

    if CATALOG_SEARCH_LIMIT > CATALOG_SEARCH_MAX_LIMIT:
        errors.append(
            f"CATALOG_SEARCH_LIMIT ({CATALOG_SEARCH_LIMIT}) exceeds CATALOG_SEARCH_MAX_LIMIT ({CATALOG_SEARCH_MAX_LIMIT})"
        )

    if errors:
        raise ValueError("Configuration errors:\n" + "\n".join(errors))

    return True


if __name__ == "__main__":
    try:
        validate_config()
        print("[OK] Configuration validated successfully")
    except ValueError as e:
        print(f"[FAIL] Configuration validation failed:\n{e}")
