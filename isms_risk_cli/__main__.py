from __future__ import annotations

import logging
import os
import sys

from isms_risk_cli.cli import main as cli_main
from isms_risk_cli.config import ENV_OVERRIDES
from isms_risk_cli.exceptions import AuthenticationError, ConfigError, IsmsRiskError

logger = logging.getLogger("isms_risk_cli")

EXIT_FAILURE = 1
# Missing configuration or rejected credentials: retrying will not help.
EXIT_SETUP = 3
EXIT_INTERRUPTED = 130


def main() -> None:
    try:
        cli_main()
    except (ConfigError, AuthenticationError) as exc:
        logger.debug("Setup problem", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        variable = ENV_OVERRIDES["api_key"]
        if isinstance(exc, AuthenticationError) and os.environ.get(variable, "").strip():
            print(f"The API key was taken from {variable}.", file=sys.stderr)
        sys.exit(EXIT_SETUP)
    except IsmsRiskError as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        print()
        sys.exit(EXIT_INTERRUPTED)


if __name__ == "__main__":
    main()
