"""Subscription Platform - Backend + checkout client.

Users pick a plan tier and billing period, pay through the Razorpay gateway, and
wait in `pending_approval` until an admin activates the account.

Core flow:
- create-order: price comes from the shared plan catalog, never from the client
- verify-payment: HMAC signature check, then one transaction that updates the
  user's subscription and records the gateway payment id (replays are rejected)
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
