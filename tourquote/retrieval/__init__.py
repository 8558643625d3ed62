"""Evidence retrieval and itinerary drafting."""
