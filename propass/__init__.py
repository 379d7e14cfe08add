"""PROPASS: redemption-code pro entitlements with session and client reconciliation."""
