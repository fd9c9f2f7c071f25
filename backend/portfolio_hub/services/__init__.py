"""Domain services: vault, classifier, currency, cache, aggregation and connections."""
