"""Provider adapters, request signing, fetching and pagination."""
