#!/usr/bin/env python3
"""
PayPal Credentials Check Script

Decrypts the stored credentials of one PayPal account, exchanges them for an
access token and lists a single dispute. Use it after adding or rotating an
account's API keys.

Usage:
    python scripts/test_paypal_credentials.py [ACCOUNT_ID]

Without ACCOUNT_ID the first active account is checked.
"""

import sys
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dispute_mirror.adapters.paypal import PayPalClient, PayPalConfig, PayPalError  # noqa: E402
from dispute_mirror.db.deps import get_session  # noqa: E402
from dispute_mirror.db.models import PayPalAccount  # noqa: E402
from dispute_mirror.utils.crypto import ConfigurationError, CryptoError, get_vault  # noqa: E402
from dispute_mirror.utils.oauth import AuthError  # noqa: E402

# Load environment variables
load_dotenv()


def check_paypal_credentials(account_id: str | None = None) -> bool:
    """Check one account's credentials end to end. Returns True on success."""
    print("🔍 Testing PayPal credentials...\n")

    with get_session() as session:
        if account_id:
            account = session.get(PayPalAccount, account_id)
        else:
            account = session.execute(
                select(PayPalAccount).where(PayPalAccount.active.is_(True)).limit(1)
            ).scalar_one_or_none()

        if account is None:
            print(f"❌ Account not found: {account_id}" if account_id else "❌ No active PayPal account found")
            return False

        print(f"📋 Account: {account.account_name} ({account.id})")
        print(f"   Email: {account.email or '-'}")
        print(f"   Sandbox: {'Yes' if account.sandbox_mode else 'No'}")
        print(f"   Active: {'Yes' if account.active else 'No'}\n")

        encrypted_id, encrypted_secret = account.client_id, account.secret_key
        sandbox = account.sandbox_mode

    try:
        vault = get_vault()
        client_id = vault.decrypt(encrypted_id)
        client_secret = vault.decrypt(encrypted_secret)
    except (ConfigurationError, CryptoError) as e:
        print(f"❌ Failed to decrypt credentials: {e}")
        return False
    print("✅ Credentials decrypted")

    client = PayPalClient(client_id, client_secret, PayPalConfig.from_config(sandbox=sandbox))

    print("🔐 Requesting access token and listing one dispute...")
    try:
        check = client.check_credentials()
    except AuthError as e:
        print(f"❌ Authentication failed: {e}")
        return False
    except PayPalError as e:
        print(f"❌ Disputes API error (HTTP {e.status_code}, debug_id={e.debug_id}): {e}")
        return False

    print(f"✅ Token valid until {check['token_expires_at'].isoformat()}")
    print(f"✅ Disputes API reachable ({check['items_returned']} item returned)")
    return True


if __name__ == "__main__":
    ok = check_paypal_credentials(sys.argv[1] if len(sys.argv) > 1 else None)
    sys.exit(0 if ok else 1)
