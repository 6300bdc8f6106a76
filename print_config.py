"""
Print service configuration.

Settings for the report client, read from the environment (a .env file in
the working directory is loaded first) or from a JSON defaults file.

Usage:
    from print_config import PrintServiceConfig

    config = PrintServiceConfig.from_env()
    # or
    config = PrintServiceConfig.from_json("print_service.json")
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_PRINT_URL = "http://localhost:8080/print/default"
DEFAULT_POLL_INTERVAL_S = 1.0
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_REQUEST_TIMEOUT_S = 30.0
DEFAULT_USER_AGENT = "map-print-encoder"


@dataclass
class PrintServiceConfig:
    """Where the print service lives and how long to wait for it.

    Attributes:
        print_url: Base URL of the print application, e.g. http://host/print/default
        poll_interval_s: Delay between two status requests
        timeout_s: Give up waiting for a report after this many seconds
        request_timeout_s: Timeout of a single HTTP request
        user_agent: User-Agent header sent to the service
    """
    print_url: str = DEFAULT_PRINT_URL
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    timeout_s: float = DEFAULT_TIMEOUT_S
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        self.print_url = self.print_url.rstrip("/")
        if self.poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be positive, got {self.poll_interval_s}")
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")

    @classmethod
    def from_env(cls, dotenv_path: Optional[Union[str, Path]] = None) -> 'PrintServiceConfig':
        """Build the configuration from PRINT_* environment variables."""
        load_dotenv(dotenv_path)
        return cls(
            print_url=os.environ.get("PRINT_URL", DEFAULT_PRINT_URL),
            poll_interval_s=float(os.environ.get("PRINT_POLL_INTERVAL_S", DEFAULT_POLL_INTERVAL_S)),
            timeout_s=float(os.environ.get("PRINT_TIMEOUT_S", DEFAULT_TIMEOUT_S)),
            request_timeout_s=float(os.environ.get("PRINT_REQUEST_TIMEOUT_S", DEFAULT_REQUEST_TIMEOUT_S)),
            user_agent=os.environ.get("PRINT_USER_AGENT", DEFAULT_USER_AGENT),
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'PrintServiceConfig':
        """Load the configuration from a JSON object, ignoring unknown keys."""
        with open(path) as f:
            data = json.load(f)

        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown print config keys in %s: %s", path, ", ".join(unknown))
        return cls(**{key: value for key, value in data.items() if key in known})
