"""Payment facilitator service."""

from .client import FacilitatorClient
from .config import FacilitatorConfig, NetworkConfig, load_config
from .process import create_app
from .service import Facilitator

__all__ = ["Facilitator", "FacilitatorClient", "FacilitatorConfig", "NetworkConfig", "create_app", "load_config"]
