#!/usr/bin/env python3
"""Plaid API setup script.

Validates Plaid API credentials by creating a sandbox link token, generates
the credential encryption key, and offers to store everything in the OS
keychain. Institution linking happens via the browser (Plaid Link UI), not
through this CLI script.

Usage:
    python -m scripts.setup_plaid                 # interactive setup
    python -m scripts.setup_plaid --generate-key  # print a new encryption key

Steps:
    1. Sign up at https://dashboard.plaid.com/
    2. Get your client_id and secret from the Keys page
    3. Run this script and follow the prompts
    4. Store the resulting values in the keychain or your .env file
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.exceptions import ProviderError  # noqa: E402
from integrations.plaid_client import PlaidClient  # noqa: E402
from services.credential_vault import generate_key  # noqa: E402


def _offer_keychain_store(credentials: dict[str, str]) -> None:
    """Prompt the user to store credentials in the OS keychain."""
    from services.credential_manager import set_credential

    answer = input("\nStore these values in the OS keychain? [Y/n] ").strip().lower()
    if answer in ("", "y", "yes"):
        for key, value in credentials.items():
            if set_credential(key, value):
                print(f"  Stored {key} in keychain")
            else:
                print(f"  Failed to store {key}")
    else:
        print("  Skipped keychain storage.")


def validate_credentials(client_id: str, secret: str, env: str) -> None:
    """Validate Plaid credentials by creating a test link token.

    Raises:
        ProviderError: If Plaid rejects the request.
    """
    client = PlaidClient(
        client_id=client_id, secret=secret, environment=env, max_retries=1,
    )
    link_token = client.create_link_token("setup-test")
    if not link_token:
        raise ProviderError("No link_token in response", provider_name="Plaid")


def main(argv: list[str] | None = None) -> None:
    """Prompt for credentials, validate them and generate an encryption key."""
    parser = argparse.ArgumentParser(description="Set up Plaid credentials for Ledgerlink.")
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="Print a new CREDENTIAL_ENCRYPTION_KEY and exit",
    )
    args = parser.parse_args(argv)

    if args.generate_key:
        print(generate_key())
        return

    print("Plaid API Setup")
    print("=" * 50)
    print()
    print("To get Plaid API credentials:")
    print("  1. Sign up at https://dashboard.plaid.com/")
    print("  2. Go to Developers > Keys")
    print("  3. Copy your client_id and secret")
    print()

    client_id = input("Enter your Plaid client_id: ").strip()
    if not client_id:
        print("Error: No client_id provided")
        sys.exit(1)

    secret = input("Enter your Plaid secret: ").strip()
    if not secret:
        print("Error: No secret provided")
        sys.exit(1)

    print()
    print("Choose environment:")
    print("  1. sandbox (for testing with fake data)")
    print("  2. production (for live use)")
    env_choice = input("Enter choice (1 or 2) [1]: ").strip() or "1"
    env = {"1": "sandbox", "2": "production"}.get(env_choice, "sandbox")

    print()
    print(f"Validating credentials against {env} environment...")

    try:
        validate_credentials(client_id, secret, env)
    except ProviderError as e:
        print(f"Error: {e}")
        print()
        print("Common issues:")
        print("  - Incorrect client_id or secret")
        print("  - Wrong environment selected")
        print("  - Network connectivity issue")
        sys.exit(1)

    webhook_secret = input("\nWebhook signing secret (blank to skip): ").strip()
    encryption_key = generate_key()

    values = {
        "PLAID_CLIENT_ID": client_id,
        "PLAID_SECRET": secret,
        "CREDENTIAL_ENCRYPTION_KEY": encryption_key,
    }
    if webhook_secret:
        values["PLAID_WEBHOOK_SECRET"] = webhook_secret

    print()
    print("Success! Add the following to your .env file:")
    print()
    for key, value in values.items():
        print(f"{key}={value}")
    print(f"PLAID_ENVIRONMENT={env}")

    _offer_keychain_store(values)

    print()
    print("Keep the encryption key safe: stored access tokens cannot be")
    print("decrypted without it, and every institution would need re-linking.")


if __name__ == "__main__":
    main()
