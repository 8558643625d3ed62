"""tourquote: survey-to-itinerary estimate generation for a tour-booking assistant."""

__version__ = "0.1.0"
