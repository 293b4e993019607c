"""Subscription tiers, user subscriptions and content entitlement checks."""
