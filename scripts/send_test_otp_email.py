#!/usr/bin/env python3
"""Send a test OTP email and print the result. Use to debug Mailgun/SendGrid delivery.
Usage: from project root, run:
  python scripts/send_test_otp_email.py
  python scripts/send_test_otp_email.py other@example.com
"""
import os
import sys

# Project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/send_test_otp_email.py you@example.com")
        return 2
    to_email = sys.argv[1].strip().lower()
    from pathlib import Path
    from app.config import _env_path, get_settings
    from app.models.otp_code import OtpPurpose
    from app.services.exceptions import SendFailedError
    from app.services.notifications import EmailSender

    s = get_settings()
    print("ApnaBook OTP email test")
    print(f"  .env path: {_env_path} (exists: {Path(_env_path).exists()})")
    print("  Config:")
    print(f"    MAILGUN_DOMAIN={repr(s.mailgun_domain) or '(empty)'}")
    print(f"    MAILGUN_FROM_EMAIL={repr(s.mailgun_from_email) or '(default)'}")
    print(f"    MAILGUN_API_KEY={'set (hidden)' if s.mailgun_api_key else '(empty)'}")
    print(f"    SENDGRID_API_KEY={'set (hidden)' if s.sendgrid_api_key else '(empty)'}")
    print(f"  Sending test code to: {to_email}")
    print("-" * 50)

    try:
        EmailSender(s).send_otp_email(to_email, "123456", OtpPurpose.verify, ttl_minutes=s.otp_ttl_minutes)
    except SendFailedError:
        print("Result: FAILED - See [Email]/[Mailgun]/[SendGrid] log lines above for cause.")
        print("  Fix .env (MAILGUN_API_KEY, MAILGUN_DOMAIN or SENDGRID_API_KEY), then run this script again.")
        return 1
    print("Result: SUCCESS - the provider accepted the message.")
    print("  If you do not receive it: check spam; if using a Mailgun sandbox domain, add this address as an authorized recipient.")
    return 0


if __name__ == "__main__":
    import logging

    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
