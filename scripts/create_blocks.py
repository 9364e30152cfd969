"""Create the DHIS2 credentials block the SQL view flows load.

Saves (or overwrites) one Dhis2Credentials block built from the environment.
Requires a running Prefect server (PREFECT_API_URL).

    DHIS2_BLOCK_NAME -- block name, "dhis2" unless set (the flows' default)
    DHIS2_BASE_URL   -- DHIS2 instance base URL
    DHIS2_USERNAME   -- DHIS2 username
    DHIS2_PASSWORD   -- DHIS2 password
    DHIS2_API_TOKEN  -- personal access token (optional, replaces the password)

Unset connection variables fall back to the play server.

Usage:
    PREFECT_API_URL=http://localhost:4200/api uv run python scripts/create_blocks.py
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import SecretStr

from dhis2_sqlview.dhis2 import Dhis2Credentials


def credentials_from_env(environ: Mapping[str, str] | None = None) -> tuple[str, Dhis2Credentials]:
    """Return the block name and credentials described by ``environ``."""
    env = os.environ if environ is None else environ
    api_token = env.get("DHIS2_API_TOKEN")
    block = Dhis2Credentials(
        base_url=env.get("DHIS2_BASE_URL", "https://play.im.dhis2.org/dev"),
        username=env.get("DHIS2_USERNAME", "admin"),
        password=env.get("DHIS2_PASSWORD", "district"),
        api_token=SecretStr(api_token) if api_token else None,
    )
    return env.get("DHIS2_BLOCK_NAME", "dhis2"), block


def main() -> None:
    name, block = credentials_from_env()
    block.save(name, overwrite=True)
    auth = "token" if block.api_token else f"user {block.username}"
    print(f"Saved block: {name} -> {block.base_url} ({auth})")


if __name__ == "__main__":
    load_dotenv()
    main()
