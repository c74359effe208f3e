from dotenv import load_dotenv
from .telemetry.log import get_logger
from .util.config import load_core_config

load_dotenv()

DEFAULT_CORE_CONFIG = load_core_config()

LOG = get_logger(DEFAULT_CORE_CONFIG.logging_format, DEFAULT_CORE_CONFIG.logging_level)

_SECRET_FIELDS = {"e2b_api_key", "novita_api_key"}
LOG.debug(f"Core config loaded: {DEFAULT_CORE_CONFIG.model_dump(exclude=_SECRET_FIELDS)}")
