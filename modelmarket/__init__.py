"""ModelMarket billing backend: Helio payments, subscriptions, usage metering."""
