"""
Create a credit code against a running server.

Usage:
    python -m scripts.create_code 25
    python -m scripts.create_code 50 WELCOME50
    python -m scripts.create_code 50 VIP50 --email vip@example.com

Environment:
    SERVER_URL (default http://localhost:3000)
    ADMIN_API_KEY (sent as X-Admin-Key when set)
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

# Load environment
ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

logging.basicConfig(level=logging.INFO, format='%(message)s')
logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("credits must be a positive integer")
    if number <= 0:
        raise argparse.ArgumentTypeError("credits must be a positive integer")
    return number


def create_code(
    server_url: str,
    credits: int,
    code: Optional[str] = None,
    email: Optional[str] = None,
    admin_key: Optional[str] = None
) -> dict:
    """POST /api/admin/generate-code and return the JSON body."""
    body = {"credits": credits}
    if code:
        body["code"] = code.upper()
    if email:
        body["email"] = email

    headers = {"X-Admin-Key": admin_key} if admin_key else {}

    response = httpx.post(
        f"{server_url.rstrip('/')}/api/admin/generate-code",
        json=body,
        headers=headers,
        timeout=10
    )
    if response.status_code != 200:
        try:
            message = response.json().get("error") or response.json().get("detail")
        except ValueError:
            message = response.text
        raise RuntimeError(message or f"Failed to create code (HTTP {response.status_code})")
    return response.json()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a credit redemption code")
    parser.add_argument("credits", type=positive_int, help="Credits granted by the code")
    parser.add_argument("code", nargs="?", help="Explicit code (random if omitted)")
    parser.add_argument("--email", help="Restrict the code to this email address")
    parser.add_argument("--server", default=os.environ.get("SERVER_URL", "http://localhost:3000"))
    args = parser.parse_args(argv)

    logger.info(f"Creating code for {args.credits} credits...")
    try:
        result = create_code(args.server, args.credits, args.code, args.email, os.environ.get("ADMIN_API_KEY"))
    except httpx.HTTPError as e:
        logger.error(f"Could not reach server at {args.server}: {e}")
        logger.error("Make sure the server is running: uvicorn server:app --port 3000")
        return 1
    except RuntimeError as e:
        logger.error(f"Failed to create code: {e}")
        return 1

    logger.info(f"Code: {result['code']}")
    logger.info(f"Credits: {result['credits']}")
    if result.get("email"):
        logger.info(f"Restricted to: {result['email']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
